"""
Tests for the unified schedule view.
"""
import json
from datetime import datetime, timezone

import pytest

from automation.frequency import CanonicalFrequency, FrequencyMapping, ScheduleFamily
from automation.models import ScheduledJob, ScheduleSpec, ScheduleState, ScheduleStatus, TriggerType, Workflow
from automation.schedule_view import build_schedule_view, export_schedule_view, upcoming_runs
from automation.stores import InMemoryScheduleStore


@pytest.fixture
def workflows():
    return [
        Workflow(
            id="wf-weekly",
            name="Weekly digest",
            trigger_type=TriggerType.SCHEDULED,
            schedule=ScheduleSpec(frequency="WEEKLY", params={"day_of_week": 5, "hour": 9}),
        ),
        Workflow(
            id="wf-hourly",
            name="Hourly rollup",
            trigger_type=TriggerType.SCHEDULED,
            schedule=ScheduleSpec(frequency="HOURLY"),
        ),
        # Manual workflows have no schedule to show
        Workflow(id="wf-manual", name="Manual"),
    ]


@pytest.fixture
def jobs():
    return [
        ScheduledJob(id="nb-1", name="Notebook refresh", family=ScheduleFamily.NOTEBOOK,
                     schedule_type="daily", params={"hour": 12}, timezone="America/New_York"),
        ScheduledJob(id="ds-1", name="CRM sync", family=ScheduleFamily.DATA_SYNC, schedule_type="MANUAL"),
        ScheduledJob(id="ds-2", name="Ledger sync", family=ScheduleFamily.DATA_SYNC,
                     schedule_type="MONTHLY", enabled=False),
    ]


def test_entries_sorted_by_next_run(workflows, jobs, now):
    entries = build_schedule_view(workflows, jobs, InMemoryScheduleStore(), now=now)

    assert [e.entity_id for e in entries] == ["wf-hourly", "ds-2", "nb-1", "wf-weekly", "ds-1"]
    assert entries[0].next_run_at == datetime(2024, 1, 1, 11, 0)
    # Unscheduled entities come last
    assert entries[-1].next_run_at is None


def test_job_schedule_types_are_normalized(workflows, jobs, now):
    entries = {e.entity_id: e for e in build_schedule_view(workflows, jobs, InMemoryScheduleStore(), now=now)}

    assert entries["nb-1"].frequency == CanonicalFrequency.DAILY
    assert entries["nb-1"].schedule_type == "daily"
    assert entries["ds-1"].frequency == CanonicalFrequency.ONCE
    # Data-sync MONTHLY keeps the legacy hourly mapping by default
    assert entries["ds-2"].frequency == CanonicalFrequency.HOURLY

    mapping = FrequencyMapping(overrides={"data_sync": {"MONTHLY": "MONTHLY"}})
    entries = {e.entity_id: e for e in build_schedule_view([], jobs, InMemoryScheduleStore(), now=now, mapping=mapping)}
    assert entries["ds-2"].frequency == CanonicalFrequency.MONTHLY


def test_stored_state_wins_and_is_not_written(workflows, now):
    store = InMemoryScheduleStore()
    stored = ScheduleState(next_run_at=datetime(2024, 1, 1, 10, 30), last_run_at=datetime(2024, 1, 1, 9, 30))
    store.save_schedule_state("wf-weekly", stored)

    entries = {e.entity_id: e for e in build_schedule_view(workflows, [], store, now=now)}

    assert entries["wf-weekly"].next_run_at == stored.next_run_at
    assert entries["wf-weekly"].last_run_at == stored.last_run_at
    # Computed states are only shown, never saved
    assert store.load_schedule_state("wf-hourly") is None


def test_active_only_and_window(workflows, jobs, now):
    store = InMemoryScheduleStore()
    store.save_schedule_state("wf-hourly", ScheduleState(next_run_at=datetime(2024, 1, 1, 11, 0),
                                                         status=ScheduleStatus.PAUSED))

    active = build_schedule_view(workflows, jobs, store, now=now, active_only=True)
    assert {e.entity_id for e in active} == {"wf-weekly", "nb-1", "ds-1"}

    window = build_schedule_view(
        workflows, jobs, store, now=now,
        start_time=datetime(2024, 1, 1, 12, 0),
        end_time=datetime(2024, 1, 3, 0, 0),
    )
    assert [e.entity_id for e in window] == ["nb-1"]


def test_limit(workflows, jobs, now):
    entries = build_schedule_view(workflows, jobs, InMemoryScheduleStore(), now=now, limit=2)
    assert [e.entity_id for e in entries] == ["wf-hourly", "ds-2"]


def test_upcoming_runs(workflows, jobs, now):
    entries = upcoming_runs(workflows, jobs, InMemoryScheduleStore(), now=now, hours=6)
    assert [e.entity_id for e in entries] == ["wf-hourly", "nb-1"]


def test_entry_to_dict_includes_local_time(jobs):
    now = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
    entry = build_schedule_view([], jobs[:1], InMemoryScheduleStore(), now=now)[0]
    data = entry.to_dict()

    assert data["family"] == "notebook"
    assert data["frequency"] == "DAILY"
    assert data["next_run_at"] == "2024-01-01T12:00:00+00:00"
    assert data["next_run_local"] == "2024-01-01T07:00:00-05:00"


def test_export_schedule_view(workflows, jobs, now):
    entries = build_schedule_view(workflows, jobs, InMemoryScheduleStore(), now=now, limit=1)
    exported = json.loads(export_schedule_view(entries, indent=None))

    assert exported == [entries[0].to_dict()]
    assert exported[0]["id"] == "wf-hourly"
    assert exported[0]["next_run_at"] == "2024-01-01T11:00:00"
