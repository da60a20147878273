"""
Store interfaces consumed by the automation core, with in-memory versions.

The core never talks to a database directly: records, schedule state,
workflows and scheduled jobs are read and written through these
collaborators. SQLAlchemy-backed versions live in ``automation.sql_store``.
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from automation.models import ScheduledJob, ScheduleState, Workflow
from errors import RecordNotFound

logger = logging.getLogger(__name__)


class RecordStore:
    """Attribute-value records grouped by data model."""

    def load_record(self, record_id: str) -> Dict[str, Any]:
        """
        Load a record's attribute values.

        Raises:
            RecordNotFound: If the record does not exist
        """
        raise NotImplementedError

    def save_record(self, record_id: str, changes: Dict[str, Any]) -> None:
        """Persist changed attribute values for a record."""
        raise NotImplementedError

    def list_record_ids(self, data_model_id: Optional[str]) -> List[str]:
        raise NotImplementedError


class ScheduleStore:
    """Schedule state keyed by schedulable entity id."""

    def load_schedule_state(self, entity_id: str) -> Optional[ScheduleState]:
        raise NotImplementedError

    def save_schedule_state(self, entity_id: str, state: ScheduleState) -> None:
        raise NotImplementedError


class WorkflowRepository:
    """Read access to workflow definitions."""

    def list_workflows(self) -> List[Workflow]:
        raise NotImplementedError

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        raise NotImplementedError


class JobRepository:
    """Read access to notebook and data-sync jobs."""

    def list_jobs(self) -> List[ScheduledJob]:
        raise NotImplementedError


class InMemoryRecordStore(RecordStore):
    """Thread-safe dict-backed record store."""

    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}
        self._models: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def add_record(self, record_id: str, values: Dict[str, Any], data_model_id: Optional[str] = None) -> None:
        with self._lock:
            self._records[record_id] = dict(values)
            if data_model_id is not None:
                ids = self._models.setdefault(data_model_id, [])
                if record_id not in ids:
                    ids.append(record_id)

    def load_record(self, record_id: str) -> Dict[str, Any]:
        with self._lock:
            if record_id not in self._records:
                raise RecordNotFound(record_id)
            return dict(self._records[record_id])

    def save_record(self, record_id: str, changes: Dict[str, Any]) -> None:
        with self._lock:
            if record_id not in self._records:
                raise RecordNotFound(record_id)
            self._records[record_id].update(changes)

    def list_record_ids(self, data_model_id: Optional[str]) -> List[str]:
        with self._lock:
            if data_model_id is None:
                return list(self._records)
            return list(self._models.get(data_model_id, []))


class InMemoryScheduleStore(ScheduleStore):
    """Thread-safe dict-backed schedule store; states are copied in and out."""

    def __init__(self):
        self._states: Dict[str, ScheduleState] = {}
        self._lock = threading.Lock()

    def load_schedule_state(self, entity_id: str) -> Optional[ScheduleState]:
        with self._lock:
            state = self._states.get(entity_id)
            return state.copy() if state else None

    def save_schedule_state(self, entity_id: str, state: ScheduleState) -> None:
        with self._lock:
            self._states[entity_id] = state.copy()


class InMemoryWorkflowRepository(WorkflowRepository):
    """Dict-backed workflow repository preserving insertion order."""

    def __init__(self, workflows: Optional[Iterable[Workflow]] = None):
        self._workflows: Dict[str, Workflow] = {}
        for workflow in workflows or []:
            self.save_workflow(workflow)

    def save_workflow(self, workflow: Workflow) -> None:
        self._workflows[workflow.id] = workflow

    def list_workflows(self) -> List[Workflow]:
        return list(self._workflows.values())

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        return self._workflows.get(workflow_id)


class InMemoryJobRepository(JobRepository):
    """List-backed repository of notebook and data-sync jobs."""

    def __init__(self, jobs: Optional[Iterable[ScheduledJob]] = None):
        self._jobs: List[ScheduledJob] = list(jobs or [])

    def add_job(self, job: ScheduledJob) -> None:
        self._jobs.append(job)

    def list_jobs(self) -> List[ScheduledJob]:
        return list(self._jobs)
