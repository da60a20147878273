"""
Tests for the automation models.
"""
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from automation.frequency import CanonicalFrequency
from automation.models import (
    EventSubscription, RetryPolicy, ScheduleSpec, ScheduleState, ScheduleStatus, TriggerType, Workflow
)


def test_scheduled_workflow_requires_schedule():
    with pytest.raises(ValidationError):
        Workflow(id="wf-1", name="No schedule", trigger_type=TriggerType.SCHEDULED)


def test_event_workflow_rejects_schedule():
    with pytest.raises(ValidationError):
        Workflow(
            id="wf-1",
            name="Both",
            trigger_type=TriggerType.EVENT_BASED,
            schedule=ScheduleSpec(frequency="DAILY"),
            event_subscription=EventSubscription(source_id="sync-1"),
        )


def test_schedule_spec_is_frozen():
    spec = ScheduleSpec(frequency="daily")
    assert spec.frequency == CanonicalFrequency.DAILY
    with pytest.raises(ValidationError):
        spec.frequency = CanonicalFrequency.HOURLY


def test_frequency_params_keep_unknown_keys():
    spec = ScheduleSpec(frequency="INTERVAL", params={"interval_value": "5", "custom": 1})
    assert spec.params.interval_value == "5"
    assert spec.params.model_extra == {"custom": 1}


def test_subscription_matching():
    specific = EventSubscription(source_id="sync-42")
    assert specific.matches_source("DATA_SYNC", "sync-42")
    assert not specific.matches_source("DATA_SYNC", "sync-99")
    assert not specific.matches_source("NOTEBOOK", "sync-42")

    assert EventSubscription().matches_source("DATA_SYNC", "sync-99")


def test_retry_policy_backoff():
    policy = RetryPolicy(retry_delay_seconds=30, backoff_multiplier=3)
    assert policy.delay_for(0) == timedelta(seconds=30)
    assert policy.delay_for(2) == timedelta(seconds=270)


def test_schedule_state_due():
    state = ScheduleState(next_run_at=datetime(2024, 1, 1, 9, 0))
    assert state.is_due(datetime(2024, 1, 1, 9, 0))
    assert not state.is_due(datetime(2024, 1, 1, 8, 59))

    # Naive and aware instants are compared in UTC
    assert state.is_due(datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc))

    state.status = ScheduleStatus.PAUSED
    assert not state.is_due(datetime(2024, 1, 2))

    assert not ScheduleState().is_due(datetime(2024, 1, 2))


def test_schedule_state_copy_is_independent():
    state = ScheduleState(run_count=1)
    copy = state.copy()
    copy.run_count = 2
    assert state.run_count == 1


def test_workflow_to_dict_keeps_order_fields():
    workflow = Workflow.model_validate({
        "id": "wf-1",
        "name": "Ordered",
        "conditions": [{"attribute_id": "a", "order": 3}],
        "actions": [{"target_attribute_id": "b", "order": 7}],
    })
    data = workflow.to_dict()

    assert data["conditions"][0]["order"] == 3
    assert data["actions"][0]["order"] == 7
    assert data["trigger_type"] == "MANUAL"
