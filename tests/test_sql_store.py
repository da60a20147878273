"""
Tests for the SQLAlchemy-backed workflow repository and schedule store.
"""
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from automation.frequency import CanonicalFrequency
from automation.models import (
    Action, ActionKind, Condition, ScheduleSpec, ScheduleState, ScheduleStatus, TriggerType, Workflow
)
from automation.resolver import OutcomeStatus, TriggerResolver, TriggerSignal
from automation.sql_store import ScheduleStateRecord, SqlScheduleStore, SqlWorkflowRepository
from errors import PersistenceError


@pytest.fixture
def workflow():
    return Workflow(
        id="wf-sql",
        name="Stored workflow",
        data_model_id="customers",
        trigger_type=TriggerType.SCHEDULED,
        schedule=ScheduleSpec(
            frequency=CanonicalFrequency.MONTHLY,
            params={"day_of_month": 31, "hour": 6},
            timezone="Europe/Berlin",
            end_at=datetime(2025, 1, 1),
        ),
        conditions=[
            Condition(attribute_id="b", operator="EQUALS", value=2, logical_connector="OR", order=1),
            Condition(attribute_id="a", operator="GREATER_THAN", value=1, order=0),
        ],
        actions=[
            Action(target_attribute_id="total", kind=ActionKind.CALCULATE, formula="a + b", order=0),
        ],
    )


def test_workflow_round_trip(database, workflow):
    repository = SqlWorkflowRepository(database)
    repository.save_workflow(workflow)

    loaded = repository.get_workflow("wf-sql")

    assert loaded == workflow
    assert [c.order for c in loaded.conditions] == [1, 0]
    assert loaded.schedule.frequency == CanonicalFrequency.MONTHLY
    assert repository.get_workflow("wf-missing") is None


def test_save_replaces_definition(database, workflow):
    repository = SqlWorkflowRepository(database)
    repository.save_workflow(workflow)
    repository.save_workflow(workflow.model_copy(update={"name": "Renamed"}))

    workflows = repository.list_workflows()
    assert len(workflows) == 1
    assert workflows[0].name == "Renamed"


def test_save_inserts_new_rows_and_updates_existing(database, workflow):
    repository = SqlWorkflowRepository(database)

    with patch.object(database, "add", wraps=database.add) as add, \
            patch.object(database, "update", wraps=database.update) as update:
        repository.save_workflow(workflow)
        assert add.call_count == 1
        assert update.call_count == 0

        repository.save_workflow(workflow.model_copy(update={"name": "Renamed"}))
        assert add.call_count == 1
        assert update.call_count == 1


def test_schedule_state_round_trip(database):
    store = SqlScheduleStore(database)
    state = ScheduleState(
        last_run_at=datetime(2024, 1, 1, 9, 0),
        next_run_at=datetime(2024, 1, 2, 9, 0),
        status=ScheduleStatus.PAUSED,
        run_count=4,
        retry_count=1,
        last_status="FAILED",
        last_error="boom",
    )
    store.save_schedule_state("wf-1", state)

    assert store.load_schedule_state("wf-1") == state
    assert store.load_schedule_state("wf-2") is None

    # Saving again replaces the row
    state.run_count = 5
    store.save_schedule_state("wf-1", state)
    assert store.load_schedule_state("wf-1").run_count == 5


def test_list_due_ids(database):
    store = SqlScheduleStore(database)
    store.save_schedule_state("due", ScheduleState(next_run_at=datetime(2024, 1, 1, 9, 0)))
    store.save_schedule_state("later", ScheduleState(next_run_at=datetime(2024, 1, 2, 9, 0)))
    store.save_schedule_state("paused", ScheduleState(next_run_at=datetime(2024, 1, 1, 9, 0),
                                                      status=ScheduleStatus.PAUSED))
    store.save_schedule_state("never", ScheduleState())

    now = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
    assert store.list_due_ids(now) == ["due"]


def test_list_entity_ids(database):
    store = SqlScheduleStore(database)
    assert store.list_entity_ids() == []

    store.save_schedule_state("wf-1", ScheduleState())
    store.save_schedule_state("wf-2", ScheduleState(status=ScheduleStatus.PAUSED))
    assert sorted(store.list_entity_ids()) == ["wf-1", "wf-2"]


def test_next_run_column_is_naive_utc(database):
    store = SqlScheduleStore(database)
    store.save_schedule_state("aware", ScheduleState(
        next_run_at=datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
    ))

    record = database.get(ScheduleStateRecord, "aware")
    assert record.next_run_at == datetime(2024, 1, 1, 9, 0)
    assert store.load_schedule_state("aware").next_run_at.tzinfo is not None


def test_resolver_with_sql_schedule_store(database, record_store, daily_workflow, now):
    store = SqlScheduleStore(database)
    resolver = TriggerResolver(record_store, store)

    resolver.resolve_trigger(daily_workflow, TriggerSignal.tick(now))
    outcome = resolver.resolve_trigger(daily_workflow, TriggerSignal.tick(datetime(2024, 1, 2, 9, 0)))

    assert outcome.status == OutcomeStatus.APPLIED
    assert store.load_schedule_state(daily_workflow.id).next_run_at == datetime(2024, 1, 3, 9, 0)


def test_database_errors_are_persistence_errors(database):
    with pytest.raises(PersistenceError):
        database.query(object)
