"""
Automation models for workflows, their rules and their schedules.

This module defines the in-memory representation of a Workflow: ordered
conditions over record attributes, ordered actions that write attributes,
a trigger mode, and the schedule value object plus the mutable schedule
state that the trigger resolver maintains.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from automation.frequency import CanonicalFrequency, ScheduleFamily

# Configure logger
logger = logging.getLogger(__name__)


class TriggerType(str, Enum):
    """Enumeration of workflow trigger types."""
    SCHEDULED = "SCHEDULED"       # Fires when its schedule is due
    EVENT_BASED = "EVENT_BASED"   # Fires on a subscribed external event
    MANUAL = "MANUAL"             # Fires only on explicit invocation


class WorkflowStatus(str, Enum):
    """Enumeration of workflow status values."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    PAUSED = "PAUSED"
    ERROR = "ERROR"


class ScheduleStatus(str, Enum):
    """Enumeration of schedule state status values."""
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"


class LogicalConnector(str, Enum):
    """Connector joining a condition to the running result of the previous ones."""
    AND = "AND"
    OR = "OR"


class ConditionOperator(str, Enum):
    """Enumeration of condition operators."""
    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    CONTAINS = "CONTAINS"
    NOT_CONTAINS = "NOT_CONTAINS"
    IS_EMPTY = "IS_EMPTY"
    IS_NOT_EMPTY = "IS_NOT_EMPTY"


class ActionKind(str, Enum):
    """Enumeration of action kinds."""
    SET_LITERAL = "SET_LITERAL"   # Assign value verbatim
    SET_DEFAULT = "SET_DEFAULT"   # Assign value only when the target is empty
    CALCULATE = "CALCULATE"       # Evaluate formula against the working record
    COPY_FROM = "COPY_FROM"       # Copy the current value of another attribute


def _coerce_enum(enum_cls, value: Any) -> Any:
    """Return the enum member for value, or value unchanged when unknown."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().upper())
        except ValueError:
            return value
    return value


class FrequencyParams(BaseModel):
    """
    Loosely-typed bag of frequency parameters.

    Fields irrelevant to the active frequency are ignored, not validated
    away. Malformed values are tolerated here; the next-run calculator
    replaces them with documented defaults.
    """
    model_config = ConfigDict(frozen=True, extra="allow")

    hour: Any = None
    minute: Any = None
    day_of_week: Any = None       # 0=Sunday ... 6=Saturday
    day_of_month: Any = None      # 1-31
    interval_value: Any = None
    interval_unit: Any = None     # "minutes" | "hours"
    time: Any = None              # "HH:MM" shorthand for hour/minute
    cron_expression: Any = None


class ScheduleSpec(BaseModel):
    """Immutable schedule value object embedded in a schedulable entity."""
    model_config = ConfigDict(frozen=True)

    frequency: Any
    params: FrequencyParams = Field(default_factory=FrequencyParams)
    timezone: str = "UTC"
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None

    @field_validator("frequency", mode="before")
    @classmethod
    def _canonical_frequency(cls, value: Any) -> Union[CanonicalFrequency, str]:
        # Unrecognised values are kept as opaque strings
        return _coerce_enum(CanonicalFrequency, value)

    @field_validator("params", mode="before")
    @classmethod
    def _params_from_dict(cls, value: Any) -> Any:
        return {} if value is None else value

    def to_dict(self) -> Dict[str, Any]:
        """Convert the schedule to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")


class EventSubscription(BaseModel):
    """Subscription of an event-based workflow to an external completion signal."""

    source_type: str = "DATA_SYNC"
    source_id: Optional[str] = None    # None subscribes to every source of the type
    trigger_on_success: bool = True
    trigger_on_failure: bool = False

    def matches_source(self, source_type: str, source_id: str) -> bool:
        return source_type == self.source_type and self.source_id in (None, source_id)


class RetryPolicy(BaseModel):
    """Backoff policy applied after a failed scheduled run."""

    max_retries: int = 3
    retry_delay_seconds: float = 300
    backoff_multiplier: float = 2.0

    def delay_for(self, retry_count: int) -> timedelta:
        """Delay before retry number retry_count + 1."""
        return timedelta(seconds=self.retry_delay_seconds * (self.backoff_multiplier ** retry_count))


class Condition(BaseModel):
    """A single condition over one record attribute."""

    attribute_id: str
    operator: Any = ConditionOperator.EQUALS
    value: Any = None
    logical_connector: LogicalConnector = LogicalConnector.AND
    order: int = 0

    @field_validator("operator", mode="before")
    @classmethod
    def _known_operator(cls, value: Any) -> Any:
        return _coerce_enum(ConditionOperator, value)

    @field_validator("logical_connector", mode="before")
    @classmethod
    def _upper_connector(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value


def describe_validation_error(error: ValidationError) -> str:
    """One-line summary of a pydantic validation error."""
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'value'}: {err['msg']}"
        for err in error.errors()
    )


def raw_order(item: Any) -> int:
    """Best-effort ``order`` of an item that failed validation."""
    if isinstance(item, dict):
        try:
            return int(item.get("order", 0))
        except (TypeError, ValueError):
            return 0
    return 0


class Action(BaseModel):
    """A single write to a target attribute."""

    target_attribute_id: str
    kind: Any = ActionKind.SET_LITERAL
    value: Any = None
    formula: Optional[str] = None
    source_attribute_id: Optional[str] = None
    order: int = 0

    @field_validator("kind", mode="before")
    @classmethod
    def _known_kind(cls, value: Any) -> Any:
        return _coerce_enum(ActionKind, value)


class Workflow(BaseModel):
    """
    A workflow automation: conditions + actions + a trigger mode.

    Exactly one of ``schedule``/``event_subscription`` is meaningful,
    selected by ``trigger_type``.
    """

    id: str
    name: str
    description: Optional[str] = None
    data_model_id: Optional[str] = None
    trigger_type: TriggerType = TriggerType.MANUAL
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    conditions: List[Condition] = Field(default_factory=list)
    actions: List[Action] = Field(default_factory=list)
    schedule: Optional[ScheduleSpec] = None
    event_subscription: Optional[EventSubscription] = None
    retry_policy: Optional[RetryPolicy] = None

    @model_validator(mode="after")
    def _check_trigger_shape(self) -> "Workflow":
        if self.trigger_type == TriggerType.EVENT_BASED:
            if self.schedule is not None:
                raise ValueError("EVENT_BASED workflows cannot carry a schedule")
            if self.event_subscription is None:
                raise ValueError("EVENT_BASED workflows need an event_subscription")
        if self.trigger_type == TriggerType.SCHEDULED and self.schedule is None:
            raise ValueError("SCHEDULED workflows need a schedule")
        return self

    def ordered_conditions(self) -> List[Condition]:
        return sorted(self.conditions, key=lambda c: c.order)

    def ordered_actions(self) -> List[Action]:
        return sorted(self.actions, key=lambda a: a.order)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the workflow to a dictionary.

        Returns:
            JSON-compatible dict preserving condition/action order fields
        """
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Workflow":
        """
        Create a Workflow from an external payload.

        Accepts snake_case, camelCase and legacy field names.
        """
        # Import here to avoid circular imports
        from automation.boundary import normalize_workflow_payload
        return cls.model_validate(normalize_workflow_payload(data))


class ScheduledJob(BaseModel):
    """
    A notebook or data-sync job as seen by the unified schedule view.

    ``schedule_type`` keeps the family's own surface value; it is
    normalized on read.
    """

    id: str
    name: str
    family: ScheduleFamily
    schedule_type: Optional[str] = None
    params: FrequencyParams = Field(default_factory=FrequencyParams)
    timezone: str = "UTC"
    enabled: bool = True

    @field_validator("params", mode="before")
    @classmethod
    def _params_from_dict(cls, value: Any) -> Any:
        return {} if value is None else value


@dataclass
class ScheduleState:
    """
    Mutable per-entity schedule state.

    ``next_run_at`` is derived: it is only ever written from the next-run
    calculator's output (or a retry backoff), never hand-set.
    """
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    enabled: bool = True
    status: ScheduleStatus = ScheduleStatus.ACTIVE
    run_count: int = 0
    retry_count: int = 0
    last_status: Optional[str] = None
    last_error: Optional[str] = None

    def is_active(self) -> bool:
        return self.enabled and self.status == ScheduleStatus.ACTIVE

    def is_due(self, now: datetime) -> bool:
        """True when the schedule is active and next_run_at has passed."""
        if not self.is_active() or self.next_run_at is None:
            return False
        next_run, current = comparable(self.next_run_at, now)
        return current >= next_run

    def copy(self) -> "ScheduleState":
        return ScheduleState(**asdict(self))

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the state to a dictionary.

        Returns:
            Dict with ISO formatted timestamps
        """
        return {
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "enabled": self.enabled,
            "status": self.status.value,
            "run_count": self.run_count,
            "retry_count": self.retry_count,
            "last_status": self.last_status,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduleState":
        """
        Create a ScheduleState from a dictionary.

        Args:
            data: Dictionary as produced by to_dict()

        Returns:
            ScheduleState instance
        """
        def parse(value: Any) -> Optional[datetime]:
            if value is None or isinstance(value, datetime):
                return value
            return datetime.fromisoformat(value)

        return cls(
            last_run_at=parse(data.get("last_run_at")),
            next_run_at=parse(data.get("next_run_at")),
            enabled=data.get("enabled", True),
            status=ScheduleStatus(data.get("status", ScheduleStatus.ACTIVE.value)),
            run_count=data.get("run_count", 0),
            retry_count=data.get("retry_count", 0),
            last_status=data.get("last_status"),
            last_error=data.get("last_error"),
        )


def comparable(a: datetime, b: datetime):
    """
    Return a and b in a form that can be compared.

    Mixed naive/aware pairs are compared in UTC, naive values being taken
    as UTC.
    """
    if (a.tzinfo is None) == (b.tzinfo is None):
        return a, b
    # Import here to avoid circular imports
    from utils.timezone_utils import ensure_utc
    return ensure_utc(a), ensure_utc(b)
