"""
Formula evaluation for CALCULATE actions.

The grammar is deliberately narrow: numbers, quoted strings, attribute
references, ``+ - * /``, unary minus and parentheses. Attribute references
are bare identifiers (``price``) or braced ids (``{unit price}``) and read
the working record. ``+`` concatenates when either operand is a non-numeric
string. Formulas are parsed, never passed to ``eval``.

    expression := term (("+" | "-") term)*
    term       := factor (("*" | "/") factor)*
    factor     := "-" factor | "(" expression ")" | NUMBER | STRING | REFERENCE
"""

import logging
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

from errors import FormulaEvaluationError

logger = logging.getLogger(__name__)

Number = Union[int, float]

TOKEN_PATTERN = re.compile(r"""
    \s*(?:
        (?P<number>\d+(?:\.\d*)?|\.\d+)
      | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
      | \{(?P<braced>[^{}]+)\}
      | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
      | (?P<op>[-+*/()])
    )""", re.VERBOSE)


class FormulaEvaluator:
    """Interface for pluggable formula evaluators."""

    def evaluate(self, formula: str, record: Dict[str, Any]) -> Any:
        """
        Evaluate formula against record.

        Raises:
            FormulaEvaluationError: If the formula cannot be evaluated
        """
        raise NotImplementedError


def _tokenize(formula: str) -> List[Tuple[str, str]]:
    tokens = []
    position = 0
    text = formula.rstrip()
    while position < len(text):
        match = TOKEN_PATTERN.match(text, position)
        if not match or match.end() == position:
            raise FormulaEvaluationError(
                f"Unexpected character at position {position} in formula: {formula!r}",
                details={"formula": formula, "position": position}
            )
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        position = match.end()
    return tokens


def _to_number(value: Any) -> Optional[Number]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            return None
    return None


class _Parser:
    """Recursive-descent parser that evaluates as it parses."""

    def __init__(self, formula: str, record: Dict[str, Any]):
        self.formula = formula
        self.record = record
        self.tokens = _tokenize(formula)
        self.index = 0

    def fail(self, message: str) -> FormulaEvaluationError:
        return FormulaEvaluationError(f"{message} in formula: {self.formula!r}", details={"formula": self.formula})

    def peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def take(self) -> Tuple[str, str]:
        token = self.peek()
        if token is None:
            raise self.fail("Unexpected end")
        self.index += 1
        return token

    def parse(self) -> Any:
        if not self.tokens:
            raise self.fail("Empty expression")
        value = self.expression()
        if self.peek() is not None:
            raise self.fail(f"Unexpected token '{self.peek()[1]}'")
        return value

    def expression(self) -> Any:
        value = self.term()
        while self.peek() in (("op", "+"), ("op", "-")):
            operator = self.take()[1]
            right = self.term()
            value = self.add(value, right) if operator == "+" else self.arithmetic(value, right, "-")
        return value

    def term(self) -> Any:
        value = self.factor()
        while self.peek() in (("op", "*"), ("op", "/")):
            operator = self.take()[1]
            value = self.arithmetic(value, self.factor(), operator)
        return value

    def factor(self) -> Any:
        kind, text = self.take()
        if kind == "op" and text == "-":
            operand = _to_number(self.factor())
            if operand is None:
                raise self.fail("Unary minus on a non-numeric value")
            return -operand
        if kind == "op" and text == "(":
            value = self.expression()
            if self.take() != ("op", ")"):
                raise self.fail("Missing closing parenthesis")
            return value
        if kind == "number":
            return _to_number(text)
        if kind == "string":
            return re.sub(r"\\(.)", r"\1", text[1:-1])
        if kind == "name":
            return self.record.get(text)
        if kind == "braced":
            return self.record.get(text.strip())
        raise self.fail(f"Unexpected token '{text}'")

    def add(self, left: Any, right: Any) -> Any:
        left_number, right_number = _to_number(left), _to_number(right)
        if left_number is not None and right_number is not None:
            return left_number + right_number
        if isinstance(left, str) or isinstance(right, str):
            return f"{'' if left is None else left}{'' if right is None else right}"
        raise self.fail(f"Cannot add {left!r} and {right!r}")

    def arithmetic(self, left: Any, right: Any, operator: str) -> Number:
        left_number, right_number = _to_number(left), _to_number(right)
        if left_number is None or right_number is None:
            raise self.fail(f"Non-numeric operand for '{operator}': {left!r}, {right!r}")
        if operator == "-":
            return left_number - right_number
        if operator == "*":
            return left_number * right_number
        if right_number == 0:
            raise self.fail("Division by zero")
        return left_number / right_number


class ArithmeticFormulaEvaluator(FormulaEvaluator):
    """Default evaluator for the narrow arithmetic grammar."""

    def evaluate(self, formula: str, record: Dict[str, Any]) -> Any:
        if not isinstance(formula, str):
            raise FormulaEvaluationError(f"Formula must be a string, got {type(formula).__name__}")
        result = _Parser(formula, record).parse()
        logger.debug(f"Evaluated formula {formula!r} -> {result!r}")
        return result
