"""
Next-run calculation for canonical frequencies.

Given a canonical frequency, its parameters and the current instant, compute
the next execution instant. The calculation is pure and total: malformed
parameters are logged and replaced by defaults, cron-like frequencies are
delegated to a swappable ``CronStrategy``, and nothing here raises.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional, Union

from dateutil.relativedelta import relativedelta

from automation.frequency import CanonicalFrequency
from automation.models import FrequencyParams, ScheduleSpec, ScheduleState, comparable
from errors import InvalidFrequencyParams

logger = logging.getLogger(__name__)

# Day names accepted for day_of_week, 0=Sunday
DAY_NAMES = {
    "sunday": 0, "monday": 1, "tuesday": 2, "wednesday": 3,
    "thursday": 4, "friday": 5, "saturday": 6,
}


class CronStrategy:
    """
    Computes next runs for CRON and unrecognised frequencies.

    Subclasses implement ``next_run``; the calculator never parses cron
    expressions itself.
    """

    def next_run(
        self,
        frequency: Union[CanonicalFrequency, str],
        params: FrequencyParams,
        now: datetime,
        last_run_at: Optional[datetime] = None
    ) -> Optional[datetime]:
        raise NotImplementedError


class UnsupportedCronStrategy(CronStrategy):
    """Default strategy: cron schedules never fire on their own."""

    def next_run(self, frequency, params, now, last_run_at=None):
        logger.debug(f"No cron strategy configured for '{frequency}', no next run")
        return None


def _param(params: Any, name: str) -> Any:
    if params is None:
        return None
    if isinstance(params, Mapping):
        return params.get(name)
    return getattr(params, name, None)


def _report(error: InvalidFrequencyParams, default: Any) -> Any:
    logger.warning(f"{error}; using default {default!r}")
    return default


def _int_param(params: Any, name: str, default: int, low: int, high: int) -> int:
    """Read an integer parameter within [low, high], falling back to default."""
    value = _param(params, name)
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return _report(InvalidFrequencyParams(
            f"Parameter '{name}' is not an integer: {value!r}", {"param": name, "value": value}
        ), default)
    if isinstance(value, float) and value != number:
        return _report(InvalidFrequencyParams(
            f"Parameter '{name}' is not a whole number: {value!r}", {"param": name, "value": value}
        ), default)
    if not low <= number <= high:
        return _report(InvalidFrequencyParams(
            f"Parameter '{name}' out of range [{low}, {high}]: {value!r}", {"param": name, "value": value}
        ), default)
    return number


def _time_of_day(params: Any) -> tuple:
    """
    Resolve hour and minute.

    Explicit ``hour``/``minute`` win over the ``time`` ("HH:MM") shorthand.
    """
    from config import config

    default_hour = config.scheduler.default_hour
    default_minute = config.scheduler.default_minute

    shorthand = _param(params, "time")
    if shorthand:
        try:
            hour_text, minute_text = str(shorthand).split(":")[:2]
            hour, minute = int(hour_text), int(minute_text)
            if 0 <= hour <= 23 and 0 <= minute <= 59:
                default_hour, default_minute = hour, minute
            else:
                raise ValueError("out of range")
        except ValueError:
            _report(InvalidFrequencyParams(
                f"Parameter 'time' is not HH:MM: {shorthand!r}", {"param": "time", "value": shorthand}
            ), f"{default_hour:02d}:{default_minute:02d}")

    hour = _int_param(params, "hour", default_hour, 0, 23)
    minute = _int_param(params, "minute", default_minute, 0, 59)
    return hour, minute


def _day_of_week(params: Any) -> int:
    """Target day as Python weekday (0=Monday), from a 0=Sunday parameter."""
    value = _param(params, "day_of_week")
    if isinstance(value, str) and value.strip().lower() in DAY_NAMES:
        day = DAY_NAMES[value.strip().lower()]
    else:
        day = _int_param(params, "day_of_week", 1, 0, 6)
    return (day - 1) % 7


def _interval(params: Any) -> timedelta:
    from config import config

    amount = _int_param(params, "interval_value", config.scheduler.default_interval_minutes, 1, 10 ** 6)
    unit = _param(params, "interval_unit")
    unit = str(unit).strip().lower() if unit else "minutes"

    if unit.startswith("hour"):
        return timedelta(hours=amount)
    if not unit.startswith("minute"):
        _report(InvalidFrequencyParams(
            f"Parameter 'interval_unit' is not minutes or hours: {unit!r}",
            {"param": "interval_unit", "value": unit}
        ), "minutes")
    return timedelta(minutes=amount)


def _coerce_frequency(frequency: Any) -> Any:
    if isinstance(frequency, str) and not isinstance(frequency, CanonicalFrequency):
        key = frequency.strip().upper()
        if key in CanonicalFrequency.__members__:
            return CanonicalFrequency(key)
    return frequency


def next_run(
    frequency: Union[CanonicalFrequency, str, None],
    params: Any,
    tz: Optional[str],
    now: datetime,
    last_run_at: Optional[datetime] = None,
    cron_strategy: Optional[CronStrategy] = None
) -> Optional[datetime]:
    """
    Calculate the next run instant for a frequency.

    Args:
        frequency: Canonical frequency, or an unrecognised raw value
        params: FrequencyParams or a plain mapping
        tz: Schedule timezone; advisory, wall-clock math is done on ``now``
            as given
        now: Current instant (naive or aware, tzinfo is preserved)
        last_run_at: Previous run, passed through to the cron strategy
        cron_strategy: Strategy for CRON and unrecognised frequencies

    Returns:
        The next run, strictly after ``now``, or None when the schedule
        never fires again
    """
    frequency = _coerce_frequency(frequency)

    if frequency is None or frequency == CanonicalFrequency.ONCE:
        return None

    if frequency == CanonicalFrequency.HOURLY:
        return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)

    if frequency == CanonicalFrequency.INTERVAL:
        return now + _interval(params)

    if frequency in (CanonicalFrequency.DAILY, CanonicalFrequency.WEEKLY, CanonicalFrequency.MONTHLY):
        hour, minute = _time_of_day(params)
        time_components = {"hour": hour, "minute": minute, "second": 0, "microsecond": 0}

        if frequency == CanonicalFrequency.DAILY:
            candidate = now.replace(**time_components)
            if candidate <= now:
                candidate += timedelta(days=1)
            return candidate

        if frequency == CanonicalFrequency.WEEKLY:
            target_day = _day_of_week(params)
            days_ahead = (target_day - now.weekday()) % 7
            candidate = now.replace(**time_components) + timedelta(days=days_ahead)
            if candidate <= now:
                candidate += timedelta(days=7)
            return candidate

        # MONTHLY: relativedelta(day=n) clamps to the last valid day
        target_day = _int_param(params, "day_of_month", 1, 1, 31)
        month_start = now.replace(day=1, **time_components)
        candidate = month_start + relativedelta(day=target_day)
        if candidate <= now:
            candidate = month_start + relativedelta(months=1, day=target_day)
        return candidate

    # CRON and unrecognised pass-through values
    strategy = cron_strategy or UnsupportedCronStrategy()
    try:
        return strategy.next_run(frequency, params, now, last_run_at)
    except Exception as e:
        logger.warning(f"Cron strategy failed for '{frequency}' (tz={tz}): {e}", exc_info=True)
        return None


def compute_next_run(
    spec: ScheduleSpec,
    now: datetime,
    last_run_at: Optional[datetime] = None,
    cron_strategy: Optional[CronStrategy] = None
) -> Optional[datetime]:
    """
    Calculate the next run for a schedule, honouring its active window.

    A result before ``start_at`` is moved to ``start_at``; a result after
    ``end_at`` means the schedule has ended.
    """
    result = next_run(spec.frequency, spec.params, spec.timezone, now, last_run_at, cron_strategy)
    if result is None:
        return None

    if spec.start_at is not None:
        start_at, candidate = comparable(spec.start_at, result)
        if candidate < start_at:
            result = spec.start_at

    if spec.end_at is not None:
        end_at, candidate = comparable(spec.end_at, result)
        if candidate > end_at:
            logger.debug(f"Next run {result} is past schedule end {spec.end_at}")
            return None

    return result


def initial_schedule_state(
    spec: ScheduleSpec,
    now: datetime,
    cron_strategy: Optional[CronStrategy] = None
) -> ScheduleState:
    """Create the schedule state for a new entity with next_run_at computed."""
    state = ScheduleState(next_run_at=compute_next_run(spec, now, cron_strategy=cron_strategy))
    if spec.frequency == CanonicalFrequency.ONCE and spec.start_at is not None:
        # A one-off schedule fires at its start time
        state.next_run_at = spec.start_at
    return state
