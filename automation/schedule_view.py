"""
Unified schedule view across workflows, notebook jobs and data-sync jobs.

A read-only composition: each entity's schedule is normalized, its stored
schedule state is read without locking (a stale snapshot is acceptable),
and entities without stored state get a next run computed on the fly. The
merged stream is ordered by next run ascending, with unscheduled entities
last.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

from automation.frequency import CanonicalFrequency, FrequencyMapping, ScheduleFamily, normalize
from automation.models import ScheduledJob, ScheduleSpec, ScheduleState, TriggerType, Workflow, WorkflowStatus
from automation.next_run import CronStrategy, initial_schedule_state
from automation.stores import ScheduleStore
from errors import ScheduleError
from serialization import to_json
from utils.timezone_utils import convert_from_utc, ensure_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ScheduleViewEntry:
    """One schedulable entity in the unified view."""
    entity_id: str
    name: str
    family: ScheduleFamily
    schedule_type: Optional[str]
    frequency: Union[CanonicalFrequency, str, None]
    timezone: str
    next_run_at: Optional[datetime]
    last_run_at: Optional[datetime] = None
    active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the entry to a dictionary.

        ``next_run_local`` is the next run in the entity's own timezone.
        """
        next_run_local = None
        if self.next_run_at is not None:
            try:
                next_run_local = convert_from_utc(self.next_run_at, self.timezone).isoformat()
            except ScheduleError:
                logger.debug(f"Entity {self.entity_id} has invalid timezone {self.timezone}")

        frequency = self.frequency.value if isinstance(self.frequency, CanonicalFrequency) else self.frequency
        return {
            "id": self.entity_id,
            "name": self.name,
            "family": self.family.value,
            "schedule_type": self.schedule_type,
            "frequency": frequency,
            "timezone": self.timezone,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "next_run_local": next_run_local,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "active": self.active,
        }


def _entry(
    entity_id: str,
    name: str,
    family: ScheduleFamily,
    schedule_type: Optional[str],
    spec: ScheduleSpec,
    state: Optional[ScheduleState],
    entity_active: bool,
    now: datetime,
    cron_strategy: Optional[CronStrategy]
) -> ScheduleViewEntry:
    if state is None:
        # Not persisted yet: show what the schedule would be, without saving it
        state = initial_schedule_state(spec, now, cron_strategy)
    return ScheduleViewEntry(
        entity_id=entity_id,
        name=name,
        family=family,
        schedule_type=schedule_type,
        frequency=spec.frequency,
        timezone=spec.timezone,
        next_run_at=state.next_run_at,
        last_run_at=state.last_run_at,
        active=entity_active and state.is_active(),
    )


def _sort_key(entry: ScheduleViewEntry):
    if entry.next_run_at is None:
        return (1, datetime.max, entry.name)
    return (0, ensure_utc(entry.next_run_at).replace(tzinfo=None), entry.name)


def build_schedule_view(
    workflows: Iterable[Workflow],
    jobs: Iterable[ScheduledJob],
    schedule_store: ScheduleStore,
    now: Optional[datetime] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    active_only: bool = False,
    limit: Optional[int] = None,
    mapping: Optional[FrequencyMapping] = None,
    cron_strategy: Optional[CronStrategy] = None
) -> List[ScheduleViewEntry]:
    """
    Merge all scheduled entities into one stream ordered by next run.

    Args:
        workflows: Workflows; only SCHEDULED ones have a schedule to show
        jobs: Notebook and data-sync jobs
        schedule_store: Source of stored schedule state
        now: Reference instant for entities without stored state
        start_time: Only include runs at or after this instant
        end_time: Only include runs at or before this instant
        active_only: Drop paused, disabled and non-ACTIVE entities
        limit: Maximum number of entries to return
        mapping: Frequency mapping for job schedule types
        cron_strategy: Strategy for cron-like schedules

    Returns:
        Entries sorted by next_run_at ascending, unscheduled entries last
    """
    now = now or utc_now()
    entries: List[ScheduleViewEntry] = []

    for workflow in workflows:
        if workflow.trigger_type != TriggerType.SCHEDULED or workflow.schedule is None:
            continue
        frequency = workflow.schedule.frequency
        entries.append(_entry(
            workflow.id,
            workflow.name,
            ScheduleFamily.WORKFLOW,
            frequency.value if isinstance(frequency, CanonicalFrequency) else frequency,
            workflow.schedule,
            schedule_store.load_schedule_state(workflow.id),
            workflow.status == WorkflowStatus.ACTIVE,
            now,
            cron_strategy,
        ))

    for job in jobs:
        spec = ScheduleSpec(
            frequency=normalize(job.schedule_type, job.family, mapping),
            params=job.params,
            timezone=job.timezone,
        )
        entries.append(_entry(
            job.id,
            job.name,
            job.family,
            job.schedule_type,
            spec,
            schedule_store.load_schedule_state(job.id),
            job.enabled,
            now,
            cron_strategy,
        ))

    if active_only:
        entries = [entry for entry in entries if entry.active]

    if start_time is not None or end_time is not None:
        window = []
        for entry in entries:
            if entry.next_run_at is None:
                continue
            next_run = ensure_utc(entry.next_run_at)
            if start_time is not None and next_run < ensure_utc(start_time):
                continue
            if end_time is not None and next_run > ensure_utc(end_time):
                continue
            window.append(entry)
        entries = window

    entries.sort(key=_sort_key)

    if limit is not None:
        entries = entries[:limit]

    logger.debug(f"Schedule view built with {len(entries)} entries")
    return entries


def upcoming_runs(
    workflows: Iterable[Workflow],
    jobs: Iterable[ScheduledJob],
    schedule_store: ScheduleStore,
    now: Optional[datetime] = None,
    hours: float = 24,
    limit: int = 10
) -> List[ScheduleViewEntry]:
    """Active entities due within the next ``hours`` hours."""
    now = now or utc_now()
    return build_schedule_view(
        workflows, jobs, schedule_store,
        now=now,
        start_time=now,
        end_time=now + timedelta(hours=hours),
        active_only=True,
        limit=limit,
    )


def export_schedule_view(entries: Iterable[ScheduleViewEntry], indent: Optional[int] = None) -> str:
    """
    Export schedule view entries as a JSON array.

    Args:
        entries: Entries as returned by build_schedule_view
        indent: JSON indentation (defaults to config.system.json_indent)

    Returns:
        JSON string
    """
    return to_json(list(entries), indent=indent)
