"""
Base schema definitions for configuration models.

These are the core schema models used throughout the application to
ensure type safety and validation of configuration values.
"""

from typing import Dict, Optional
from pydantic import BaseModel, Field


class PathConfig(BaseModel):
    """Path configuration settings."""

    data_dir: str = Field(
        default="data",
        description="Directory for data storage"
    )
    persistent_dir: str = Field(
        default="persistent",
        description="Directory for persistent storage such as error logs"
    )


class DatabaseConfig(BaseModel):
    """Database configuration settings."""

    uri: str = Field(
        default="sqlite:///data/automation.db",
        description="Database connection URI"
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL commands for debugging"
    )
    pool_recycle: int = Field(
        default=3600,
        description="Connection recycle time in seconds"
    )


class SchedulerConfig(BaseModel):
    """Scheduler polling, worker pool and schedule default settings."""

    check_interval: float = Field(
        default=60.0,
        description="Seconds between scheduler polls for due automations"
    )
    max_workers: int = Field(
        default=5,
        description="Maximum number of automations resolved concurrently"
    )
    default_timezone: str = Field(
        default="UTC",
        description="Timezone recorded on schedules that do not specify one (advisory metadata)"
    )
    default_hour: int = Field(
        default=9,
        description="Hour of day used when a DAILY/WEEKLY/MONTHLY schedule has no hour"
    )
    default_minute: int = Field(
        default=0,
        description="Minute used when a DAILY/WEEKLY/MONTHLY schedule has no minute"
    )
    default_interval_minutes: int = Field(
        default=60,
        description="Interval used when an INTERVAL schedule has no value"
    )
    rate_limit_runs: int = Field(
        default=0,
        description="Maximum runs per automation within rate_limit_window (0 disables rate limiting)"
    )
    rate_limit_window: int = Field(
        default=60,
        description="Rate limit window in seconds"
    )
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for shared rate limit counters (in-process counters when unset)"
    )
    frequency_overrides: Dict[str, Dict[str, str]] = Field(
        default_factory=dict,
        description="Per-family overrides of the schedule type mapping, e.g. {'data_sync': {'MONTHLY': 'MONTHLY'}}"
    )


class SystemConfig(BaseModel):
    """System-level configuration settings."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    timezone: str = Field(
        default="UTC",
        description="Default timezone for date/time operations (must be a valid IANA timezone name like 'America/New_York', 'Europe/London')"
    )
    json_indent: int = Field(
        default=2,
        description="Indentation level for JSON output"
    )
