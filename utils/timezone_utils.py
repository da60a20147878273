"""
Timezone utilities for consistent datetime handling.

All instants exchanged with stores are UTC. Schedule timezones are advisory
metadata: callers that need wall-clock rollover in a specific zone convert
``now`` with these helpers before asking the calculator for a next run.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import pytz

from config import config
from errors import ScheduleError, ErrorCode

logger = logging.getLogger(__name__)

# Common abbreviations mapped to IANA names
TIMEZONE_ALIASES = {
    "EST": "America/New_York",
    "EDT": "America/New_York",
    "CST": "America/Chicago",
    "CDT": "America/Chicago",
    "MST": "America/Denver",
    "MDT": "America/Denver",
    "PST": "America/Los_Angeles",
    "PDT": "America/Los_Angeles",
    "GMT": "UTC",
    "Z": "UTC",
}


def utc_now() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def get_default_timezone() -> str:
    """
    Get the configured default timezone.

    Returns:
        A valid IANA timezone name, falling back to UTC when the configured
        value is not recognised
    """
    tz_name = config.system.timezone
    tz_name = TIMEZONE_ALIASES.get(tz_name.upper(), tz_name) if tz_name else "UTC"
    if tz_name in pytz.all_timezones_set:
        return tz_name

    logger.warning(f"Invalid default timezone in config: {config.system.timezone}, using UTC")
    return "UTC"


def validate_timezone(tz_name: Optional[str]) -> str:
    """
    Validate a timezone name and return its canonical IANA form.

    Args:
        tz_name: IANA timezone name or common abbreviation

    Returns:
        Canonical IANA timezone name (the default timezone when empty)

    Raises:
        ScheduleError: If the timezone is not recognised
    """
    if not tz_name:
        return get_default_timezone()

    alias = TIMEZONE_ALIASES.get(tz_name.upper())
    if alias:
        return alias

    if tz_name in pytz.all_timezones_set:
        return tz_name

    raise ScheduleError(
        f"Invalid timezone: {tz_name}",
        ErrorCode.INVALID_TIMEZONE,
        {"timezone": tz_name}
    )


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure a datetime is timezone-aware and in UTC.

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def convert_to_timezone(dt: datetime, tz_name: str, from_tz: Optional[str] = None) -> datetime:
    """
    Convert a datetime into the given timezone.

    Args:
        dt: Datetime to convert
        tz_name: Target timezone name
        from_tz: Timezone to assume for naive input (defaults to UTC)

    Returns:
        Aware datetime in the target timezone
    """
    target = pytz.timezone(validate_timezone(tz_name))
    if dt.tzinfo is None:
        source = pytz.timezone(validate_timezone(from_tz or "UTC"))
        dt = source.localize(dt)
    return dt.astimezone(target)


def convert_from_utc(dt: datetime, tz_name: str) -> datetime:
    """Convert a UTC datetime (aware or naive) into local time in tz_name."""
    return convert_to_timezone(ensure_utc(dt), tz_name)


def convert_to_utc(dt: datetime, tz_name: Optional[str] = None) -> datetime:
    """
    Convert a local datetime to UTC.

    Args:
        dt: Datetime to convert; naive values are interpreted in tz_name
        tz_name: Timezone of naive input (defaults to UTC)

    Returns:
        Aware UTC datetime
    """
    if dt.tzinfo is None:
        local_tz = pytz.timezone(validate_timezone(tz_name or "UTC"))
        dt = local_tz.localize(dt)
    return dt.astimezone(timezone.utc)
