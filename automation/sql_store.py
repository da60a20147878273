"""
SQLAlchemy-backed workflow repository and schedule store.

Workflow definitions are stored verbatim as JSON, so conditions and
actions keep their order fields exactly. Schedule state is stored as JSON
next to an indexed UTC ``next_run_at`` column used for due queries.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import Column, DateTime, Index, JSON, String

from automation.models import ScheduleState, Workflow
from automation.stores import ScheduleStore, WorkflowRepository
from db import Base, Database, get_database
from errors import ErrorCode, PersistenceError, error_context
from utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


def _utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """UTC as a naive datetime, which every backend compares consistently."""
    return ensure_utc(dt).replace(tzinfo=None) if dt is not None else None


class WorkflowRecord(Base):
    """Stored workflow definition."""
    __tablename__ = "automation_workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    trigger_type = Column(String, nullable=False)
    status = Column(String, nullable=False)
    data_model_id = Column(String, nullable=True)
    definition = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=lambda: _utc_naive(utc_now()))
    updated_at = Column(DateTime, default=lambda: _utc_naive(utc_now()), onupdate=lambda: _utc_naive(utc_now()))

    __table_args__ = (
        Index("ix_automation_workflows_trigger_status", "trigger_type", "status"),
    )

    def to_workflow(self) -> Workflow:
        return Workflow.model_validate(self.definition)


class ScheduleStateRecord(Base):
    """Stored schedule state of one schedulable entity."""
    __tablename__ = "automation_schedule_states"

    entity_id = Column(String, primary_key=True)
    next_run_at = Column(DateTime, nullable=True, index=True)  # naive UTC
    state = Column(JSON, nullable=False)
    updated_at = Column(DateTime, default=lambda: _utc_naive(utc_now()), onupdate=lambda: _utc_naive(utc_now()))


class SqlWorkflowRepository(WorkflowRepository):
    """Workflow repository over the automation database."""

    def __init__(self, database: Optional[Database] = None):
        self.db = database or get_database()
        Base.metadata.create_all(self.db.engine)

    def save_workflow(self, workflow: Workflow) -> None:
        """Insert or replace a workflow definition."""
        existing = self.db.get(WorkflowRecord, workflow.id)
        record = WorkflowRecord(
            id=workflow.id,
            name=workflow.name,
            trigger_type=workflow.trigger_type.value,
            status=workflow.status.value,
            data_model_id=workflow.data_model_id,
            definition=workflow.to_dict(),
            created_at=existing.created_at if existing else _utc_naive(utc_now()),
        )
        if existing is None:
            self.db.add(record)
            logger.debug(f"Added workflow {workflow.id}")
        else:
            self.db.update(record)
            logger.debug(f"Updated workflow {workflow.id}")

    def list_workflows(self) -> List[Workflow]:
        records = self.db.query(WorkflowRecord)
        records.sort(key=lambda r: (r.created_at or datetime.min, r.id))
        return [record.to_workflow() for record in records]

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        record = self.db.get(WorkflowRecord, workflow_id)
        return record.to_workflow() if record else None


class SqlScheduleStore(ScheduleStore):
    """Schedule store over the automation database."""

    def __init__(self, database: Optional[Database] = None):
        self.db = database or get_database()
        Base.metadata.create_all(self.db.engine)

    def load_schedule_state(self, entity_id: str) -> Optional[ScheduleState]:
        record = self.db.get(ScheduleStateRecord, entity_id)
        return ScheduleState.from_dict(record.state) if record else None

    def save_schedule_state(self, entity_id: str, state: ScheduleState) -> None:
        self.db.update(ScheduleStateRecord(
            entity_id=entity_id,
            next_run_at=_utc_naive(state.next_run_at),
            state=state.to_dict(),
        ))

    def list_due_ids(self, now: datetime) -> List[str]:
        """Ids of entities whose next run is at or before now."""
        records = self.db.query(
            ScheduleStateRecord,
            ScheduleStateRecord.next_run_at.isnot(None),
            ScheduleStateRecord.next_run_at <= _utc_naive(now),
        )
        due = []
        for record in records:
            if ScheduleState.from_dict(record.state).is_active():
                due.append(record.entity_id)
        return due

    def list_entity_ids(self) -> List[str]:
        """Ids of every entity that has stored schedule state."""
        with error_context(
            component_name="SqlScheduleStore",
            operation="listing scheduled entities",
            error_class=PersistenceError,
            error_code=ErrorCode.PERSISTENCE_ERROR,
            logger=logger
        ):
            with self.db.get_session() as session:
                return [row.entity_id for row in session.query(ScheduleStateRecord.entity_id)]
