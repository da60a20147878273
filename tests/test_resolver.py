"""
Tests for the trigger resolver.

This module verifies the run state machine for scheduled ticks, data-sync
events and manual invocations, together with retry backoff, rate limiting,
persistence failures and the per-automation concurrency guard.
"""

import threading
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from automation.events import DataSyncCompleted
from automation.frequency import CanonicalFrequency
from automation.models import (
    Action, ActionKind, Condition, RetryPolicy, ScheduleSpec, ScheduleState,
    ScheduleStatus, TriggerType, Workflow, WorkflowStatus
)
from automation.rate_limit import RateLimiter
from automation.resolver import OutcomeStatus, RunState, TriggerResolver, TriggerSignal
from automation.stores import InMemoryRecordStore, ScheduleStore


class BlockingRecordStore(InMemoryRecordStore):
    """Record store whose loads wait until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def load_record(self, record_id):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().load_record(record_id)


def failing_workflow(**kwargs):
    """SCHEDULED hourly workflow whose only action always fails."""
    return Workflow(
        id="wf-failing",
        name="Broken calculation",
        data_model_id="customers",
        trigger_type=TriggerType.SCHEDULED,
        schedule=ScheduleSpec(frequency=CanonicalFrequency.DAILY, params={"hour": 9}),
        actions=[Action(target_attribute_id="ratio", kind=ActionKind.CALCULATE, formula="amount / 0")],
        **kwargs
    )


# Scheduled ticks

def test_tick_creates_state_and_waits_until_due(resolver, schedule_store, daily_workflow, now):
    outcome = resolver.resolve_trigger(daily_workflow, TriggerSignal.tick(now))

    assert outcome.status == OutcomeStatus.NOT_TRIGGERED
    assert outcome.reason == "not due"
    assert outcome.next_run_at == datetime(2024, 1, 2, 9, 0)
    assert schedule_store.load_schedule_state(daily_workflow.id).next_run_at == datetime(2024, 1, 2, 9, 0)


def test_due_tick_applies_actions(resolver, record_store, schedule_store, daily_workflow, now):
    resolver.resolve_trigger(daily_workflow, TriggerSignal.tick(now))

    due = datetime(2024, 1, 2, 9, 0)
    outcome = resolver.resolve_trigger(daily_workflow, TriggerSignal.tick(due))

    assert outcome.status == OutcomeStatus.APPLIED
    assert outcome.changed_attribute_ids == ["status"]
    assert outcome.record_changes == {"rec-1": {"status": "archived"}}
    assert outcome.transitions == [
        RunState.IDLE, RunState.DUE, RunState.EVALUATING, RunState.APPLIED, RunState.IDLE
    ]
    assert outcome.next_run_at == datetime(2024, 1, 3, 9, 0)

    # Only the matching record was written
    assert record_store.load_record("rec-1")["status"] == "archived"
    assert record_store.load_record("rec-2")["status"] == "closed"

    state = schedule_store.load_schedule_state(daily_workflow.id)
    assert state.last_run_at == due
    assert state.run_count == 1
    assert state.last_status == "APPLIED"

    # The same tick again is not due any more
    again = resolver.resolve_trigger(daily_workflow, TriggerSignal.tick(due))
    assert again.status == OutcomeStatus.NOT_TRIGGERED


def test_once_schedule_fires_once(resolver, schedule_store):
    start = datetime(2024, 1, 1, 12, 0)
    workflow = Workflow(
        id="wf-once",
        name="One-off import fix",
        data_model_id="customers",
        trigger_type=TriggerType.SCHEDULED,
        schedule=ScheduleSpec(frequency=CanonicalFrequency.ONCE, start_at=start),
        actions=[Action(target_attribute_id="migrated", value=True)],
    )

    outcome = resolver.resolve_trigger(workflow, TriggerSignal.tick(start))
    assert outcome.status == OutcomeStatus.APPLIED
    assert outcome.next_run_at is None

    later = resolver.resolve_trigger(workflow, TriggerSignal.tick(start + timedelta(days=30)))
    assert later.status == OutcomeStatus.NOT_TRIGGERED
    assert schedule_store.load_schedule_state("wf-once").run_count == 1


def test_manual_run_spends_once_schedule(resolver, schedule_store, now):
    start = datetime(2024, 1, 5, 12, 0)
    workflow = Workflow(
        id="wf-once",
        name="One-off import fix",
        data_model_id="customers",
        trigger_type=TriggerType.SCHEDULED,
        schedule=ScheduleSpec(frequency=CanonicalFrequency.ONCE, start_at=start),
        actions=[Action(target_attribute_id="migrated", value=True)],
    )

    outcome = resolver.resolve_trigger(workflow, TriggerSignal.manual(now))
    assert outcome.status == OutcomeStatus.APPLIED
    assert outcome.next_run_at is None
    assert schedule_store.load_schedule_state("wf-once").next_run_at is None

    # The original start time no longer fires it
    later = resolver.resolve_trigger(workflow, TriggerSignal.tick(start))
    assert later.status == OutcomeStatus.NOT_TRIGGERED
    assert schedule_store.load_schedule_state("wf-once").run_count == 1


def test_skipped_when_no_record_matches(resolver, schedule_store, now):
    workflow = Workflow(
        id="wf-none",
        name="Nothing matches",
        data_model_id="customers",
        trigger_type=TriggerType.SCHEDULED,
        schedule=ScheduleSpec(frequency=CanonicalFrequency.HOURLY),
        conditions=[Condition(attribute_id="status", operator="EQUALS", value="pending")],
        actions=[Action(target_attribute_id="status", value="done")],
    )
    schedule_store.save_schedule_state(workflow.id, ScheduleState(next_run_at=now))

    outcome = resolver.resolve_trigger(workflow, TriggerSignal.tick(now))

    assert outcome.status == OutcomeStatus.SKIPPED
    assert outcome.changed_attribute_ids == []
    assert outcome.next_run_at == datetime(2024, 1, 1, 11, 0)
    assert schedule_store.load_schedule_state(workflow.id).last_status == "SKIPPED"


def test_paused_and_inactive_workflows_ignore_ticks(resolver, schedule_store, daily_workflow, now):
    schedule_store.save_schedule_state(
        daily_workflow.id, ScheduleState(next_run_at=now, status=ScheduleStatus.PAUSED)
    )
    outcome = resolver.resolve_trigger(daily_workflow, TriggerSignal.tick(now))
    assert outcome.status == OutcomeStatus.NOT_TRIGGERED
    assert outcome.reason == "schedule is PAUSED"

    inactive = daily_workflow.model_copy(update={"status": WorkflowStatus.INACTIVE})
    schedule_store.save_schedule_state(inactive.id, ScheduleState(next_run_at=now))
    outcome = resolver.resolve_trigger(inactive, TriggerSignal.tick(now))
    assert outcome.reason == "workflow is INACTIVE"


def test_event_workflows_ignore_ticks(resolver, event_workflow, now):
    outcome = resolver.resolve_trigger(event_workflow, TriggerSignal.tick(now))
    assert outcome.status == OutcomeStatus.NOT_TRIGGERED


# Data-sync events

def test_event_from_other_sync_is_ignored(resolver, record_store, event_workflow, now):
    event = DataSyncCompleted(source_id="sync-99", completed_at=now)
    outcome = resolver.resolve_trigger(event_workflow, TriggerSignal.from_event(event))

    assert outcome.status == OutcomeStatus.NOT_TRIGGERED
    assert "total" not in record_store.load_record("rec-1")


def test_subscribed_event_runs_workflow(resolver, record_store, event_workflow, now):
    event = DataSyncCompleted(source_id="sync-42", completed_at=now)
    outcome = resolver.resolve_trigger(event_workflow, TriggerSignal.from_event(event))

    assert outcome.status == OutcomeStatus.APPLIED
    assert outcome.changed_attribute_ids == ["total"]
    assert outcome.next_run_at is None
    assert record_store.load_record("rec-1")["total"] == 10
    assert record_store.load_record("rec-2")["total"] == 24


def test_failed_sync_only_triggers_when_subscribed(resolver, event_workflow, now):
    failed = DataSyncCompleted(source_id="sync-42", succeeded=False, completed_at=now)
    outcome = resolver.resolve_trigger(event_workflow, TriggerSignal.from_event(failed))
    assert outcome.status == OutcomeStatus.NOT_TRIGGERED
    assert outcome.reason == "not triggered on failure"

    subscription = event_workflow.event_subscription.model_copy(update={"trigger_on_failure": True})
    listening = event_workflow.model_copy(update={"event_subscription": subscription})
    outcome = resolver.resolve_trigger(listening, TriggerSignal.from_event(failed))
    assert outcome.status == OutcomeStatus.APPLIED


# Manual invocation

def test_manual_run_targets_given_records(resolver, record_store, daily_workflow, now):
    outcome = resolver.resolve_trigger(daily_workflow, TriggerSignal.manual(now, record_ids=["rec-2"]))

    # rec-2 is closed, so the condition does not hold
    assert outcome.status == OutcomeStatus.SKIPPED
    assert record_store.load_record("rec-1")["status"] == "open"


def test_manual_run_keeps_schedule(resolver, schedule_store, daily_workflow, now):
    outcome = resolver.resolve_trigger(daily_workflow, TriggerSignal.manual(now))

    assert outcome.status == OutcomeStatus.APPLIED
    assert outcome.next_run_at == datetime(2024, 1, 2, 9, 0)
    state = schedule_store.load_schedule_state(daily_workflow.id)
    assert state.next_run_at == datetime(2024, 1, 2, 9, 0)
    assert state.run_count == 1


def test_manual_run_bypasses_pause(resolver, schedule_store, daily_workflow, now):
    schedule_store.save_schedule_state(daily_workflow.id, ScheduleState(status=ScheduleStatus.PAUSED))
    outcome = resolver.resolve_trigger(daily_workflow, TriggerSignal.manual(now))
    assert outcome.status == OutcomeStatus.APPLIED


# Failures and retries

def test_all_actions_failing_is_failed(resolver, schedule_store, now):
    workflow = failing_workflow()
    outcome = resolver.resolve_trigger(workflow, TriggerSignal.manual(now))

    assert outcome.status == OutcomeStatus.FAILED
    assert outcome.reason.startswith("all actions failed")
    assert outcome.errors
    assert schedule_store.load_schedule_state(workflow.id).last_error == outcome.reason


def test_retry_backoff_then_regular_schedule(resolver, schedule_store, now):
    workflow = failing_workflow(retry_policy=RetryPolicy(max_retries=2, retry_delay_seconds=60, backoff_multiplier=2))
    schedule_store.save_schedule_state(workflow.id, ScheduleState(next_run_at=now))

    first = resolver.resolve_trigger(workflow, TriggerSignal.tick(now))
    assert first.status == OutcomeStatus.FAILED
    assert first.next_run_at == now + timedelta(seconds=60)

    second = resolver.resolve_trigger(workflow, TriggerSignal.tick(first.next_run_at))
    assert second.next_run_at == first.next_run_at + timedelta(seconds=120)
    assert schedule_store.load_schedule_state(workflow.id).retry_count == 2

    # Retries exhausted: back to the regular daily schedule
    third = resolver.resolve_trigger(workflow, TriggerSignal.tick(second.next_run_at))
    assert third.next_run_at == datetime(2024, 1, 2, 9, 0)
    assert schedule_store.load_schedule_state(workflow.id).retry_count == 0


def test_failure_without_retry_policy_uses_regular_schedule(resolver, schedule_store, now):
    workflow = failing_workflow()
    schedule_store.save_schedule_state(workflow.id, ScheduleState(next_run_at=now))

    outcome = resolver.resolve_trigger(workflow, TriggerSignal.tick(now))
    assert outcome.status == OutcomeStatus.FAILED
    assert outcome.next_run_at == datetime(2024, 1, 2, 9, 0)


def test_missing_record_fails_run(resolver, daily_workflow, now):
    outcome = resolver.resolve_trigger(daily_workflow, TriggerSignal.manual(now, record_ids=["rec-404"]))

    assert outcome.status == OutcomeStatus.FAILED
    assert outcome.reason.startswith("RECORD_NOT_FOUND")


def test_record_store_errors_are_persistence_errors(schedule_store, daily_workflow, now):
    record_store = MagicMock()
    record_store.list_record_ids.side_effect = RuntimeError("connection reset")
    resolver = TriggerResolver(record_store, schedule_store)

    outcome = resolver.resolve_trigger(daily_workflow, TriggerSignal.manual(now))

    assert outcome.status == OutcomeStatus.FAILED
    assert outcome.reason.startswith("PERSISTENCE_ERROR")


def test_schedule_save_failure_fails_outcome(record_store, daily_workflow, now):
    schedule_store = MagicMock(spec=ScheduleStore)
    schedule_store.load_schedule_state.return_value = ScheduleState(next_run_at=now)
    schedule_store.save_schedule_state.side_effect = RuntimeError("disk full")
    resolver = TriggerResolver(record_store, schedule_store)

    outcome = resolver.resolve_trigger(daily_workflow, TriggerSignal.tick(now))

    assert outcome.status == OutcomeStatus.FAILED
    assert outcome.reason.startswith("PERSISTENCE_ERROR")


def test_unexpected_errors_never_escape(record_store, schedule_store, daily_workflow, now):
    evaluator = MagicMock()
    evaluator.evaluate_detailed.side_effect = RuntimeError("bug")
    resolver = TriggerResolver(record_store, schedule_store, condition_evaluator=evaluator)

    outcome = resolver.resolve_trigger(daily_workflow, TriggerSignal.manual(now))

    assert outcome.status == OutcomeStatus.FAILED
    assert not resolver.lock_registry.is_running(daily_workflow.id)


# Rate limiting and concurrency

def test_rate_limited_runs_are_not_triggered(record_store, schedule_store, daily_workflow, now):
    resolver = TriggerResolver(record_store, schedule_store, rate_limiter=RateLimiter(max_runs=1, window_seconds=60))

    first = resolver.resolve_trigger(daily_workflow, TriggerSignal.manual(now))
    second = resolver.resolve_trigger(daily_workflow, TriggerSignal.manual(now))

    assert first.status == OutcomeStatus.APPLIED
    assert second.status == OutcomeStatus.NOT_TRIGGERED
    assert second.reason == "rate limited"


def test_concurrent_run_is_rejected(schedule_store, daily_workflow, now):
    record_store = BlockingRecordStore()
    record_store.add_record("rec-1", {"status": "open"}, data_model_id="customers")
    resolver = TriggerResolver(record_store, schedule_store)

    results = {}
    runner = threading.Thread(
        target=lambda: results.setdefault("first", resolver.resolve_trigger(daily_workflow, TriggerSignal.manual(now)))
    )
    runner.start()
    assert record_store.entered.wait(timeout=5)

    conflict = resolver.resolve_trigger(daily_workflow, TriggerSignal.manual(now))
    assert conflict.status == OutcomeStatus.CONFLICT
    assert conflict.reason.startswith("CONCURRENT_RUN_CONFLICT")

    record_store.release.set()
    runner.join(timeout=5)

    assert results["first"].status == OutcomeStatus.APPLIED
    assert not resolver.lock_registry.is_running(daily_workflow.id)


def test_outcome_to_dict(resolver, daily_workflow, now):
    outcome = resolver.resolve_trigger(daily_workflow, TriggerSignal.manual(now))
    data = outcome.to_dict()

    assert data["status"] == "APPLIED"
    assert data["transitions"][0] == "IDLE"
    assert data["next_run_at"] == "2024-01-02T09:00:00"
