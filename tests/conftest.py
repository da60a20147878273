"""
Pytest configuration and fixtures for the automation core tests.

This module provides shared fixtures for all tests: in-memory stores, a
fixed clock, sample workflows and an in-memory SQLite database.
"""
import os
import tempfile

# Keep log files and data directories out of the working tree
_TEST_ROOT = tempfile.mkdtemp(prefix="automation-tests-")
os.environ.setdefault("AUTOMATION_LOG_DIR", os.path.join(_TEST_ROOT, "logs"))
os.environ.setdefault("AUTOMATION_PATHS__DATA_DIR", os.path.join(_TEST_ROOT, "data"))
os.environ.setdefault("AUTOMATION_PATHS__PERSISTENT_DIR", os.path.join(_TEST_ROOT, "persistent"))
os.environ.setdefault("AUTOMATION_DATABASE__URI", "sqlite:///:memory:")

from datetime import datetime

import pytest

from automation.frequency import CanonicalFrequency
from automation.models import (
    Action, ActionKind, Condition, ConditionOperator, EventSubscription,
    ScheduleSpec, TriggerType, Workflow
)
from automation.resolver import TriggerResolver
from automation.stores import InMemoryRecordStore, InMemoryScheduleStore, InMemoryWorkflowRepository
from db import Database


@pytest.fixture
def now():
    """A fixed reference instant: Monday 2024-01-01 10:00."""
    return datetime(2024, 1, 1, 10, 0, 0)


@pytest.fixture
def record_store():
    """Record store with two customer records."""
    store = InMemoryRecordStore()
    store.add_record("rec-1", {"status": "open", "amount": 5, "priority": "high"}, data_model_id="customers")
    store.add_record("rec-2", {"status": "closed", "amount": 12, "priority": "low"}, data_model_id="customers")
    return store


@pytest.fixture
def schedule_store():
    return InMemoryScheduleStore()


@pytest.fixture
def resolver(record_store, schedule_store):
    return TriggerResolver(record_store, schedule_store)


@pytest.fixture
def daily_workflow():
    """SCHEDULED workflow closing open high-priority records daily at 09:00."""
    return Workflow(
        id="wf-daily",
        name="Close stale tickets",
        data_model_id="customers",
        trigger_type=TriggerType.SCHEDULED,
        schedule=ScheduleSpec(frequency=CanonicalFrequency.DAILY, params={"hour": 9, "minute": 0}),
        conditions=[
            Condition(attribute_id="status", operator=ConditionOperator.EQUALS, value="open", order=0),
        ],
        actions=[
            Action(target_attribute_id="status", kind=ActionKind.SET_LITERAL, value="archived", order=0),
        ],
    )


@pytest.fixture
def event_workflow():
    """EVENT_BASED workflow subscribed to data sync 'sync-42'."""
    return Workflow(
        id="wf-event",
        name="Recalculate after sync",
        data_model_id="customers",
        trigger_type=TriggerType.EVENT_BASED,
        event_subscription=EventSubscription(source_id="sync-42"),
        actions=[
            Action(target_attribute_id="total", kind=ActionKind.CALCULATE, formula="amount * 2", order=0),
        ],
    )


@pytest.fixture
def workflow_repository(daily_workflow, event_workflow):
    return InMemoryWorkflowRepository([daily_workflow, event_workflow])


@pytest.fixture
def database():
    """A fresh in-memory SQLite database."""
    # Import the ORM models so their tables are created
    import automation.sql_store  # noqa: F401
    return Database("sqlite:///:memory:")
