"""
Boundary mapping of external payloads onto the internal schema.

External callers send workflows and jobs with snake_case keys, camelCase
keys or the legacy field names (``logical_operator``, ``condition_order``,
``action_type``, ``new_value``, ``calculation_formula``, ``action_order``,
``schedule_type``, ``schedule_config``, ``trigger_on_sync`` ...). Everything
is mapped here, once, into the dict shape the pydantic models validate.
"""

import logging
import re
from typing import Any, Dict, Optional, Union

from automation.frequency import FrequencyMapping, ScheduleFamily, normalize

logger = logging.getLogger(__name__)

CONDITION_ALIASES = {
    "logical_operator": "logical_connector",
    "condition_order": "order",
}

ACTION_ALIASES = {
    "action_type": "kind",
    "new_value": "value",
    "calculation_formula": "formula",
    "action_order": "order",
}

SCHEDULE_ALIASES = {
    "schedule_type": "frequency",
    "schedule_config": "params",
    "start_date": "start_at",
    "end_date": "end_at",
}

WORKFLOW_ALIASES = {
    "retry": "retry_policy",
}

JOB_ALIASES = {
    "schedule_config": "params",
    "is_active": "enabled",
}

# schedule_config keys that configure a data-sync subscription, not a schedule
SYNC_TRIGGER_KEYS = (
    "trigger_on_sync",
    "trigger_on_sync_success",
    "trigger_on_sync_failure",
    "trigger_on_sync_schedule_id",
)


def to_snake(key: str) -> str:
    """Convert a camelCase key to snake_case; snake_case is unchanged."""
    return re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", key).lower()


def _canonical_keys(data: Dict[str, Any], aliases: Dict[str, str]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in data.items():
        snake = to_snake(key)
        canonical = aliases.get(snake, snake)
        # Canonical names win over aliases when both are present
        if canonical in result and snake != canonical:
            continue
        result[canonical] = value
    return result


def _blank_to_none(value: Any) -> Any:
    return None if isinstance(value, str) and not value.strip() else value


def normalize_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Map frequency parameters to the canonical names.

    ``interval_minutes``/``interval_hours`` become ``interval_value`` plus
    ``interval_unit``. Unknown keys are kept.
    """
    result = _canonical_keys(params or {}, {})
    for key in SYNC_TRIGGER_KEYS:
        result.pop(key, None)

    if result.get("interval_value") is None:
        if result.get("interval_minutes") is not None:
            result["interval_value"] = result.pop("interval_minutes")
            result["interval_unit"] = "minutes"
        elif result.get("interval_hours") is not None:
            result["interval_value"] = result.pop("interval_hours")
            result["interval_unit"] = "hours"
    return result


def normalize_schedule_payload(
    data: Optional[Dict[str, Any]],
    family: Union[ScheduleFamily, str] = ScheduleFamily.WORKFLOW,
    mapping: Optional[FrequencyMapping] = None
) -> Optional[Dict[str, Any]]:
    """Map a schedule payload onto the ScheduleSpec fields."""
    if data is None:
        return None
    result = _canonical_keys(data, SCHEDULE_ALIASES)
    result["frequency"] = normalize(result.get("frequency"), family, mapping)
    result["params"] = normalize_params(result.get("params"))
    result["start_at"] = _blank_to_none(result.get("start_at"))
    result["end_at"] = _blank_to_none(result.get("end_at"))
    if not result.get("timezone"):
        result.pop("timezone", None)
    return result


def _sync_subscription(schedule: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Extract a data-sync subscription from a legacy schedule_config."""
    config = _canonical_keys(schedule.get("schedule_config") or schedule.get("scheduleConfig") or {}, {})
    if not config.get("trigger_on_sync"):
        return None
    return {
        "source_type": "DATA_SYNC",
        # None subscribes to every data sync
        "source_id": _blank_to_none(config.get("trigger_on_sync_schedule_id")),
        "trigger_on_success": config.get("trigger_on_sync_success") is not False,
        "trigger_on_failure": bool(config.get("trigger_on_sync_failure")),
    }


def normalize_condition_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    return _canonical_keys(data, CONDITION_ALIASES)


def normalize_action_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    return _canonical_keys(data, ACTION_ALIASES)


def normalize_workflow_payload(
    data: Dict[str, Any],
    mapping: Optional[FrequencyMapping] = None
) -> Dict[str, Any]:
    """
    Map an external workflow payload onto the Workflow fields.

    Args:
        data: Payload with snake_case, camelCase or legacy keys
        mapping: Frequency mapping for the schedule type

    Returns:
        Dict ready for ``Workflow.model_validate``
    """
    result = _canonical_keys(data, WORKFLOW_ALIASES)

    result["conditions"] = [normalize_condition_payload(c) for c in result.get("conditions") or []]
    result["actions"] = [normalize_action_payload(a) for a in result.get("actions") or []]

    trigger_type = str(result.get("trigger_type") or "MANUAL").upper()
    result["trigger_type"] = trigger_type

    if "status" not in result and result.get("is_active") is False:
        result["status"] = "INACTIVE"
    result.pop("is_active", None)

    schedule = result.get("schedule")
    if trigger_type == "EVENT_BASED":
        if result.get("event_subscription") is None and schedule:
            result["event_subscription"] = _sync_subscription(schedule)
        elif isinstance(result.get("event_subscription"), dict):
            result["event_subscription"] = _canonical_keys(result["event_subscription"], {})
        # Event-based workflows never carry a schedule
        result["schedule"] = None
    elif trigger_type == "SCHEDULED":
        result["schedule"] = normalize_schedule_payload(schedule, ScheduleFamily.WORKFLOW, mapping)
        result.pop("event_subscription", None)
    else:
        result["schedule"] = None
        result.pop("event_subscription", None)

    retry_keys = ("max_retries", "retry_delay_seconds", "backoff_multiplier")
    if result.get("retry_policy") is None and any(key in result for key in retry_keys):
        result["retry_policy"] = {key: result[key] for key in retry_keys if key in result}
    elif isinstance(result.get("retry_policy"), dict):
        result["retry_policy"] = _canonical_keys(result["retry_policy"], {})
    for key in retry_keys:
        result.pop(key, None)

    return result


def normalize_job_payload(
    data: Dict[str, Any],
    family: Union[ScheduleFamily, str]
) -> Dict[str, Any]:
    """Map a notebook or data-sync job payload onto the ScheduledJob fields."""
    result = _canonical_keys(data, JOB_ALIASES)
    result["family"] = ScheduleFamily(family).value
    result["params"] = normalize_params(result.get("params"))
    if not result.get("timezone"):
        result.pop("timezone", None)
    return result

