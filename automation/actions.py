"""
Action execution for workflow rules.

Actions are applied as a sequential fold in ``order`` over a working copy
of the record: each step produces a new mapping, so later actions see the
values written by earlier ones and the caller's record is never mutated.
Failures are isolated to the action that raised them.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError

from automation.conditions import is_empty
from automation.formula import ArithmeticFormulaEvaluator, FormulaEvaluator
from automation.models import Action, ActionKind, describe_validation_error, raw_order
from errors import (
    AutomationError,
    ErrorCode,
    FormulaEvaluationError,
    RuleError,
    UnknownActionKind,
    error_context,
)

logger = logging.getLogger(__name__)

# Legacy action type names accepted as aliases
ACTION_KIND_ALIASES = {
    "UPDATE_VALUE": ActionKind.SET_LITERAL,
}


@dataclass
class ActionResult:
    """
    Outcome of applying an action list to one record.

    Attributes:
        updated: The final working copy
        changed_attribute_ids: Ids whose final value differs from the input
        errors: Per-action failures, in action order
        applied_count: Number of actions that completed
    """
    updated: Dict[str, Any]
    changed_attribute_ids: List[str] = field(default_factory=list)
    errors: List[AutomationError] = field(default_factory=list)
    applied_count: int = 0

    @property
    def changes(self) -> Dict[str, Any]:
        """Only the changed attributes with their new values."""
        return {attribute_id: self.updated.get(attribute_id) for attribute_id in self.changed_attribute_ids}


class ActionExecutor:
    """Applies ordered actions to records."""

    def __init__(self, formula_evaluator: Optional[FormulaEvaluator] = None):
        self.formula_evaluator = formula_evaluator or ArithmeticFormulaEvaluator()

    def apply_action(self, action: Action, working: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply one action to the working record.

        Args:
            action: Action to apply
            working: Current working copy (not modified)

        Returns:
            A new mapping with the action applied

        Raises:
            RuleError: If the action cannot be applied
        """
        kind = action.kind
        if isinstance(kind, str) and not isinstance(kind, ActionKind):
            kind = ACTION_KIND_ALIASES.get(kind.strip().upper(), kind)
        target = action.target_attribute_id

        if kind == ActionKind.SET_LITERAL:
            value = action.value
        elif kind == ActionKind.SET_DEFAULT:
            if not is_empty(working.get(target)):
                return working
            value = action.value
        elif kind == ActionKind.COPY_FROM:
            if not action.source_attribute_id:
                raise RuleError(
                    f"COPY_FROM action on '{target}' has no source attribute",
                    ErrorCode.INVALID_RULE,
                    details={"target_attribute_id": target}
                )
            value = working.get(action.source_attribute_id)
        elif kind == ActionKind.CALCULATE:
            if not action.formula:
                raise FormulaEvaluationError(
                    f"CALCULATE action on '{target}' has no formula",
                    details={"target_attribute_id": target}
                )
            with error_context(
                component_name="ActionExecutor",
                operation=f"calculating '{target}'",
                error_class=FormulaEvaluationError,
                error_code=ErrorCode.FORMULA_EVALUATION_ERROR,
                logger=logger,
            ):
                value = self.formula_evaluator.evaluate(action.formula, dict(working))
        else:
            raise UnknownActionKind(str(kind))

        return {**working, target: value}

    def execute(
        self,
        actions: Iterable[Union[Action, Dict[str, Any]]],
        record: Dict[str, Any]
    ) -> ActionResult:
        """
        Apply actions in order to a copy of record.

        Args:
            actions: Actions in any order; sorted by ``order`` here
            record: The input record, left untouched

        Returns:
            ActionResult with the updated copy and the change-set. A
            malformed item is reported as a failed action.
        """
        # (order, action, validation error)
        entries: List[Tuple[int, Optional[Action], Optional[RuleError]]] = []
        for item in actions:
            if isinstance(item, Action):
                entries.append((item.order, item, None))
                continue
            try:
                action = Action.model_validate(item)
                entries.append((action.order, action, None))
            except ValidationError as e:
                entries.append((raw_order(item), None, RuleError(f"Invalid action: {describe_validation_error(e)}")))
        entries.sort(key=lambda entry: entry[0])

        working = dict(record)
        errors: List[AutomationError] = []
        applied = 0
        ordered: List[Action] = []

        for _, action, invalid in entries:
            if action is None:
                logger.warning(f"Action skipped: {invalid}")
                errors.append(invalid)
                continue
            ordered.append(action)
            try:
                working = self.apply_action(action, working)
                applied += 1
            except RuleError as e:
                # Prior successful actions stay applied
                logger.warning(f"Action on '{action.target_attribute_id}' failed: {e}")
                errors.append(e)

        changed: List[str] = []
        for action in ordered:
            target = action.target_attribute_id
            if target in changed:
                continue
            if target in working and (target not in record or record[target] != working[target]):
                changed.append(target)

        return ActionResult(updated=working, changed_attribute_ids=changed, errors=errors, applied_count=applied)


def execute_actions(
    actions: Iterable[Action],
    record: Dict[str, Any],
    formula_evaluator: Optional[FormulaEvaluator] = None
) -> ActionResult:
    """Apply actions to a copy of record and report the change-set."""
    return ActionExecutor(formula_evaluator).execute(actions, record)
