"""
Trigger resolution for workflow automations.

Each call to ``TriggerResolver.resolve_trigger`` walks one automation
through the run state machine:

    IDLE -> DUE -> EVALUATING -> (APPLIED | SKIPPED | FAILED) -> IDLE

A TICK makes a SCHEDULED workflow due once ``now >= next_run_at``; a
matching data-sync EVENT makes an EVENT_BASED workflow due; MANUAL makes
any workflow due. After a run the schedule state is updated and saved.
The resolver never raises: every failure is reported on the outcome.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from automation.actions import ActionExecutor
from automation.conditions import ConditionEvaluator
from automation.events import DataSyncCompleted
from automation.frequency import CanonicalFrequency
from automation.locks import LockRegistry
from automation.models import ScheduleState, TriggerType, Workflow, WorkflowStatus, comparable
from automation.next_run import CronStrategy, compute_next_run, initial_schedule_state
from automation.rate_limit import RateLimiter
from automation.stores import RecordStore, ScheduleStore
from errors import (
    AutomationError,
    ConcurrentRunConflict,
    ErrorCode,
    PersistenceError,
    error_context,
    handle_error,
)
from utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


class SignalKind(str, Enum):
    """Enumeration of trigger signal kinds."""
    TICK = "TICK"       # Periodic scheduler tick
    EVENT = "EVENT"     # External completion event
    MANUAL = "MANUAL"   # Explicit user invocation


class RunState(str, Enum):
    """States of the run state machine."""
    IDLE = "IDLE"
    DUE = "DUE"
    EVALUATING = "EVALUATING"
    APPLIED = "APPLIED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class OutcomeStatus(str, Enum):
    """Enumeration of trigger outcome statuses."""
    APPLIED = "APPLIED"              # At least one action succeeded
    SKIPPED = "SKIPPED"              # No record satisfied the conditions
    FAILED = "FAILED"                # Actions or persistence failed
    NOT_TRIGGERED = "NOT_TRIGGERED"  # Signal did not make the automation due
    CONFLICT = "CONFLICT"            # Another run for the automation is in flight


@dataclass
class TriggerSignal:
    """
    A request to consider running an automation.

    Attributes:
        kind: TICK, EVENT or MANUAL
        now: The instant the signal refers to
        event: The completion event for EVENT signals
        record_ids: Explicit target records; all records of the workflow's
            data model when None
    """
    kind: SignalKind
    now: datetime = field(default_factory=utc_now)
    event: Optional[DataSyncCompleted] = None
    record_ids: Optional[List[str]] = None

    @classmethod
    def tick(cls, now: Optional[datetime] = None) -> "TriggerSignal":
        return cls(SignalKind.TICK, now or utc_now())

    @classmethod
    def manual(cls, now: Optional[datetime] = None, record_ids: Optional[List[str]] = None) -> "TriggerSignal":
        return cls(SignalKind.MANUAL, now or utc_now(), record_ids=record_ids)

    @classmethod
    def from_event(cls, event: DataSyncCompleted, now: Optional[datetime] = None) -> "TriggerSignal":
        return cls(SignalKind.EVENT, now or event.completed_at, event=event)


@dataclass
class TriggerOutcome:
    """Result of resolving one trigger signal for one automation."""
    automation_id: str
    status: OutcomeStatus
    changed_attribute_ids: List[str] = field(default_factory=list)
    next_run_at: Optional[datetime] = None
    reason: Optional[str] = None
    transitions: List[RunState] = field(default_factory=list)
    record_changes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "automation_id": self.automation_id,
            "status": self.status.value,
            "changed_attribute_ids": list(self.changed_attribute_ids),
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "reason": self.reason,
            "transitions": [state.value for state in self.transitions],
            "record_changes": self.record_changes,
            "errors": list(self.errors),
        }


class TriggerResolver:
    """
    Runs workflows in response to trigger signals.

    All collaborators are injected; the resolver keeps no state of its own
    beyond the per-automation lock registry.
    """

    def __init__(
        self,
        record_store: RecordStore,
        schedule_store: ScheduleStore,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        action_executor: Optional[ActionExecutor] = None,
        lock_registry: Optional[LockRegistry] = None,
        rate_limiter: Optional[RateLimiter] = None,
        cron_strategy: Optional[CronStrategy] = None
    ):
        self.record_store = record_store
        self.schedule_store = schedule_store
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()
        self.action_executor = action_executor or ActionExecutor()
        self.lock_registry = lock_registry or LockRegistry()
        self.rate_limiter = rate_limiter
        self.cron_strategy = cron_strategy

    def resolve_trigger(self, automation: Workflow, signal: TriggerSignal) -> TriggerOutcome:
        """
        Resolve a trigger signal for an automation.

        Args:
            automation: The workflow to consider
            signal: TICK, EVENT or MANUAL signal

        Returns:
            TriggerOutcome describing what happened; never raises
        """
        run_id = self.lock_registry.try_acquire(automation.id)
        if run_id is None:
            conflict = ConcurrentRunConflict(automation.id)
            logger.warning(f"Rejected {signal.kind.value} run: {conflict}")
            return TriggerOutcome(
                automation_id=automation.id,
                status=OutcomeStatus.CONFLICT,
                reason=handle_error(conflict),
                transitions=[RunState.IDLE],
            )

        try:
            return self._resolve(automation, signal)
        except Exception as e:
            logger.error(f"Unexpected error resolving automation {automation.id}: {e}", exc_info=True)
            return TriggerOutcome(
                automation_id=automation.id,
                status=OutcomeStatus.FAILED,
                reason=handle_error(e),
                transitions=[RunState.IDLE, RunState.FAILED, RunState.IDLE],
            )
        finally:
            self.lock_registry.release(automation.id, run_id)

    def _load_state(self, automation: Workflow, now: datetime) -> ScheduleState:
        with error_context(
            component_name="TriggerResolver",
            operation=f"loading schedule state for {automation.id}",
            error_class=PersistenceError,
            error_code=ErrorCode.PERSISTENCE_ERROR,
            logger=logger,
        ):
            state = self.schedule_store.load_schedule_state(automation.id)

        if state is None:
            if automation.trigger_type == TriggerType.SCHEDULED:
                state = initial_schedule_state(automation.schedule, now, self.cron_strategy)
            else:
                state = ScheduleState()
            self._save_state(automation, state)
            logger.info(f"Created schedule state for {automation.id}, next run {state.next_run_at}")
        return state

    def _save_state(self, automation: Workflow, state: ScheduleState) -> None:
        with error_context(
            component_name="TriggerResolver",
            operation=f"saving schedule state for {automation.id}",
            error_class=PersistenceError,
            error_code=ErrorCode.PERSISTENCE_ERROR,
            logger=logger,
        ):
            self.schedule_store.save_schedule_state(automation.id, state)

    def _not_due_reason(self, automation: Workflow, state: ScheduleState, signal: TriggerSignal) -> Optional[str]:
        """Return why the signal leaves the automation idle, or None when it is due."""
        if signal.kind == SignalKind.MANUAL:
            return None

        if automation.status != WorkflowStatus.ACTIVE:
            return f"workflow is {automation.status.value}"
        if not state.is_active():
            return "schedule is disabled" if not state.enabled else f"schedule is {state.status.value}"

        if signal.kind == SignalKind.TICK:
            if automation.trigger_type != TriggerType.SCHEDULED:
                return f"{automation.trigger_type.value} workflows ignore ticks"
            if not state.is_due(signal.now):
                return "not due"
            return None

        if signal.kind == SignalKind.EVENT:
            subscription = automation.event_subscription
            event = signal.event
            if automation.trigger_type != TriggerType.EVENT_BASED or subscription is None:
                return f"{automation.trigger_type.value} workflows ignore events"
            if event is None:
                return "no event"
            if not subscription.matches_source(event.source_type, event.source_id):
                return f"not subscribed to {event.source_type}:{event.source_id}"
            if event.succeeded and not subscription.trigger_on_success:
                return "not triggered on success"
            if not event.succeeded and not subscription.trigger_on_failure:
                return "not triggered on failure"
            return None

        return f"unknown signal {signal.kind}"

    def _target_record_ids(self, automation: Workflow, signal: TriggerSignal) -> List[str]:
        if signal.record_ids is not None:
            return list(signal.record_ids)
        with error_context(
            component_name="TriggerResolver",
            operation=f"listing records of data model {automation.data_model_id}",
            error_class=PersistenceError,
            error_code=ErrorCode.PERSISTENCE_ERROR,
            logger=logger,
        ):
            return list(self.record_store.list_record_ids(automation.data_model_id))

    def _next_run_after(
        self,
        automation: Workflow,
        state: ScheduleState,
        signal: TriggerSignal,
        status: OutcomeStatus
    ) -> Optional[datetime]:
        """Compute next_run_at after a run, applying the retry policy on failure."""
        if automation.trigger_type != TriggerType.SCHEDULED:
            return None
        spec = automation.schedule
        if spec.frequency == CanonicalFrequency.ONCE:
            # A one-off schedule is spent by its first run, whatever triggered it
            state.retry_count = 0
            return None
        if signal.kind != SignalKind.TICK:
            # Manual runs of scheduled workflows leave the schedule alone
            return state.next_run_at

        regular = compute_next_run(spec, signal.now, last_run_at=signal.now, cron_strategy=self.cron_strategy)
        policy = automation.retry_policy

        if status != OutcomeStatus.FAILED:
            state.retry_count = 0
            return regular

        if policy is None or regular is None:
            return regular

        if state.retry_count >= policy.max_retries:
            logger.warning(f"Automation {automation.id} exhausted {policy.max_retries} retries")
            state.retry_count = 0
            return regular

        retry_at = signal.now + policy.delay_for(state.retry_count)
        state.retry_count += 1
        retry_cmp, regular_cmp = comparable(retry_at, regular)
        logger.info(f"Automation {automation.id} will retry ({state.retry_count}/{policy.max_retries})")
        return retry_at if retry_cmp < regular_cmp else regular

    def _resolve(self, automation: Workflow, signal: TriggerSignal) -> TriggerOutcome:
        outcome = TriggerOutcome(automation_id=automation.id, status=OutcomeStatus.NOT_TRIGGERED)
        outcome.transitions.append(RunState.IDLE)
        now = signal.now

        try:
            state = self._load_state(automation, now)
        except AutomationError as e:
            outcome.status = OutcomeStatus.FAILED
            outcome.reason = handle_error(e)
            outcome.transitions.extend([RunState.FAILED, RunState.IDLE])
            return outcome

        outcome.next_run_at = state.next_run_at

        reason = self._not_due_reason(automation, state, signal)
        if reason is not None:
            outcome.reason = reason
            logger.debug(f"Automation {automation.id} not triggered by {signal.kind.value}: {reason}")
            return outcome

        if self.rate_limiter is not None:
            allowed, retry_after = self.rate_limiter.is_allowed(automation.id)
            if not allowed:
                outcome.reason = "rate limited"
                logger.warning(f"Automation {automation.id} rate limited, window resets in {retry_after}s")
                return outcome

        outcome.transitions.extend([RunState.DUE, RunState.EVALUATING])
        logger.info(f"Running automation {automation.name} ({automation.id}) on {signal.kind.value}")

        status, reason = self._evaluate(automation, signal, outcome)

        # Terminal step
        state.last_run_at = now
        state.run_count += 1
        state.next_run_at = self._next_run_after(automation, state, signal, status)
        state.last_status = status.value
        state.last_error = reason if status == OutcomeStatus.FAILED else None

        try:
            self._save_state(automation, state)
        except AutomationError as e:
            status = OutcomeStatus.FAILED
            reason = handle_error(e)

        outcome.status = status
        outcome.reason = reason
        outcome.next_run_at = state.next_run_at
        outcome.transitions.extend([RunState(status.value), RunState.IDLE])

        logger.info(
            f"Automation {automation.id} {status.value}: "
            f"{len(outcome.changed_attribute_ids)} attribute(s) changed, next run {state.next_run_at}"
        )
        return outcome

    def _evaluate(self, automation: Workflow, signal: TriggerSignal, outcome: TriggerOutcome) -> tuple:
        """
        Evaluate conditions and apply actions for each target record.

        Returns:
            Tuple of (status, reason)
        """
        applied_any = False
        action_failures: List[str] = []
        conditions = automation.ordered_conditions()
        actions = automation.ordered_actions()

        try:
            record_ids = self._target_record_ids(automation, signal)
            for record_id in record_ids:
                with error_context(
                    component_name="TriggerResolver",
                    operation=f"loading record {record_id}",
                    error_class=PersistenceError,
                    error_code=ErrorCode.PERSISTENCE_ERROR,
                    logger=logger,
                ):
                    record = self.record_store.load_record(record_id)

                evaluation = self.condition_evaluator.evaluate_detailed(conditions, record)
                outcome.errors.extend(str(e) for e in evaluation.errors)
                if not evaluation.matched:
                    continue

                result = self.action_executor.execute(actions, record)
                outcome.errors.extend(str(e) for e in result.errors)
                if actions and result.applied_count == 0:
                    action_failures.append(record_id)
                    continue
                applied_any = True

                changes = result.changes
                if changes:
                    with error_context(
                        component_name="TriggerResolver",
                        operation=f"saving record {record_id}",
                        error_class=PersistenceError,
                        error_code=ErrorCode.PERSISTENCE_ERROR,
                        logger=logger,
                    ):
                        self.record_store.save_record(record_id, changes)
                    outcome.record_changes[record_id] = changes
                    for attribute_id in result.changed_attribute_ids:
                        if attribute_id not in outcome.changed_attribute_ids:
                            outcome.changed_attribute_ids.append(attribute_id)
        except AutomationError as e:
            logger.error(f"Automation {automation.id} failed: {e}")
            return OutcomeStatus.FAILED, handle_error(e)

        if applied_any:
            return OutcomeStatus.APPLIED, None
        if action_failures:
            return OutcomeStatus.FAILED, f"all actions failed for record(s): {', '.join(action_failures)}"
        return OutcomeStatus.SKIPPED, "no record satisfied the conditions"
