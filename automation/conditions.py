"""
Condition evaluation for workflow rules.

Conditions are sorted by ``order`` and folded strictly left to right: each
condition's connector joins it to the running result of the ones before it,
so ``[A AND B, OR C]`` means ``(A AND B) OR C``. There is no precedence.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError

from automation.models import Condition, ConditionOperator, LogicalConnector, describe_validation_error, raw_order
from errors import UnknownOperator, AutomationError, RuleError

logger = logging.getLogger(__name__)


@dataclass
class ConditionEvaluation:
    """Result of evaluating a condition list against one record."""
    matched: bool
    results: List[bool] = field(default_factory=list)
    errors: List[AutomationError] = field(default_factory=list)


def as_number(value: Any) -> Optional[float]:
    """Return value as a float when it is (or parses as) a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def is_empty(value: Any) -> bool:
    """Missing attributes, blank strings and empty collections are empty."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


def _compare(actual: Any, expected: Any) -> int:
    """Three-way compare, numeric when both sides are numbers."""
    left, right = as_number(actual), as_number(expected)
    if left is None or right is None:
        left, right = _as_text(actual), _as_text(expected)
    return (left > right) - (left < right)


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (list, tuple, set)):
        return any(_compare(item, expected) == 0 for item in actual)
    return _as_text(expected) in _as_text(actual)


class ConditionEvaluator:
    """
    Evaluates ordered condition lists against a record.

    A condition with an unknown operator evaluates to False and is reported
    in the detailed result; it never aborts the whole evaluation.
    """

    def evaluate_condition(self, condition: Condition, record: Dict[str, Any]) -> bool:
        """
        Evaluate a single condition.

        Args:
            condition: Condition to evaluate
            record: Attribute id -> value mapping

        Returns:
            True if the condition holds

        Raises:
            UnknownOperator: If the operator is not recognised
        """
        actual = record.get(condition.attribute_id)
        expected = condition.value
        operator = condition.operator

        if operator == ConditionOperator.EQUALS:
            return _compare(actual, expected) == 0
        elif operator == ConditionOperator.NOT_EQUALS:
            return _compare(actual, expected) != 0
        elif operator == ConditionOperator.GREATER_THAN:
            return _compare(actual, expected) > 0
        elif operator == ConditionOperator.LESS_THAN:
            return _compare(actual, expected) < 0
        elif operator == ConditionOperator.CONTAINS:
            return _contains(actual, expected)
        elif operator == ConditionOperator.NOT_CONTAINS:
            return not _contains(actual, expected)
        elif operator == ConditionOperator.IS_EMPTY:
            return is_empty(actual)
        elif operator == ConditionOperator.IS_NOT_EMPTY:
            return not is_empty(actual)
        else:
            raise UnknownOperator(str(operator))

    def evaluate_detailed(
        self,
        conditions: Iterable[Union[Condition, Dict[str, Any]]],
        record: Dict[str, Any]
    ) -> ConditionEvaluation:
        """
        Fold conditions left to right and keep per-condition results.

        Args:
            conditions: Conditions in any order; sorted by ``order`` here
            record: Attribute id -> value mapping

        Returns:
            ConditionEvaluation; an empty list matches. A malformed item
            counts as a False condition joined with AND.
        """
        # (order, condition, validation error)
        entries: List[Tuple[int, Optional[Condition], Optional[RuleError]]] = []
        for item in conditions:
            if isinstance(item, Condition):
                entries.append((item.order, item, None))
                continue
            try:
                condition = Condition.model_validate(item)
                entries.append((condition.order, condition, None))
            except ValidationError as e:
                entries.append((raw_order(item), None, RuleError(f"Invalid condition: {describe_validation_error(e)}")))
        entries.sort(key=lambda entry: entry[0])

        evaluation = ConditionEvaluation(matched=True)

        for index, (_, condition, invalid) in enumerate(entries):
            connector = LogicalConnector.AND
            if condition is None:
                logger.warning(f"Condition skipped: {invalid}")
                evaluation.errors.append(invalid)
                result = False
            else:
                connector = condition.logical_connector
                try:
                    result = self.evaluate_condition(condition, record)
                except UnknownOperator as e:
                    logger.warning(f"Condition on '{condition.attribute_id}' skipped: {e}")
                    evaluation.errors.append(e)
                    result = False

            evaluation.results.append(result)

            if index == 0:
                evaluation.matched = result
            elif connector == LogicalConnector.OR:
                evaluation.matched = evaluation.matched or result
            else:
                evaluation.matched = evaluation.matched and result

        return evaluation

    def evaluate(self, conditions: Iterable[Condition], record: Dict[str, Any]) -> bool:
        return self.evaluate_detailed(conditions, record).matched


_evaluator = ConditionEvaluator()


def evaluate_conditions(conditions: Iterable[Condition], record: Dict[str, Any]) -> bool:
    """True when the ordered condition list holds for the record."""
    return _evaluator.evaluate(conditions, record)
