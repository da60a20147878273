"""
Schedule type normalization.

Each schedulable-entity family (workflows, notebook jobs, data-sync jobs)
has its own frequency vocabulary. This module maps those surface values onto
the one canonical frequency vocabulary used by the next-run calculator.

The mapping tables are explicit data, not code branches, and every family
table can be overridden from configuration (``scheduler.frequency_overrides``)
or by passing a ``FrequencyMapping`` explicitly.
"""

import logging
from enum import Enum
from typing import Dict, Mapping, Optional, Union

from errors import ConfigError, ErrorCode

logger = logging.getLogger(__name__)


class CanonicalFrequency(str, Enum):
    """The shared frequency vocabulary all families normalize into."""
    ONCE = "ONCE"             # Fire once, never again
    HOURLY = "HOURLY"         # Top of every hour
    DAILY = "DAILY"           # Every day at hour:minute
    WEEKLY = "WEEKLY"         # Every week on day_of_week at hour:minute
    MONTHLY = "MONTHLY"       # Every month on day_of_month at hour:minute
    INTERVAL = "INTERVAL"     # Every N minutes/hours
    CRON = "CRON"             # Opaque cron expression, handled by a cron strategy


class ScheduleFamily(str, Enum):
    """Families of schedulable entities."""
    WORKFLOW = "workflow"
    NOTEBOOK = "notebook"
    DATA_SYNC = "data_sync"


class WorkflowScheduleType(str, Enum):
    """Surface vocabulary of workflow schedules."""
    ONCE = "ONCE"
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    INTERVAL = "INTERVAL"
    CUSTOM_CRON = "CUSTOM_CRON"


class NotebookScheduleType(str, Enum):
    """Surface vocabulary of notebook job schedules."""
    ONCE = "once"
    INTERVAL = "interval"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CRON = "cron"


class DataSyncScheduleType(str, Enum):
    """Surface vocabulary of data-sync schedules (no monthly variant)."""
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    CUSTOM_CRON = "CUSTOM_CRON"
    MANUAL = "MANUAL"


F = CanonicalFrequency

# Keys are upper-cased surface values; lookups are case-insensitive.
DEFAULT_MAPPINGS: Dict[ScheduleFamily, Dict[str, CanonicalFrequency]] = {
    ScheduleFamily.WORKFLOW: {
        "ONCE": F.ONCE,
        "HOURLY": F.HOURLY,
        "DAILY": F.DAILY,
        "WEEKLY": F.WEEKLY,
        "MONTHLY": F.MONTHLY,
        "INTERVAL": F.INTERVAL,
        "CUSTOM_CRON": F.CRON,
    },
    ScheduleFamily.NOTEBOOK: {
        "ONCE": F.ONCE,
        "INTERVAL": F.INTERVAL,
        "HOURLY": F.HOURLY,
        "DAILY": F.DAILY,
        "WEEKLY": F.WEEKLY,
        "MONTHLY": F.MONTHLY,
        "CRON": F.CRON,
    },
    ScheduleFamily.DATA_SYNC: {
        "HOURLY": F.HOURLY,
        "DAILY": F.DAILY,
        "WEEKLY": F.WEEKLY,
        "CUSTOM_CRON": F.CRON,
        "MANUAL": F.ONCE,
        # Lossy: data syncs have no monthly cadence, nearest analog kept from
        # the legacy scheduler. Override via scheduler.frequency_overrides.
        "MONTHLY": F.HOURLY,
    },
}


def _key(value: str) -> str:
    return value.strip().upper()


class FrequencyMapping:
    """
    Explicit family -> surface type -> canonical frequency tables.

    Unknown surface values pass through unchanged so that canonicalization
    failures surface downstream (callers treat them as opaque CRON-like data).
    """

    def __init__(
        self,
        tables: Optional[Mapping[ScheduleFamily, Mapping[str, CanonicalFrequency]]] = None,
        overrides: Optional[Mapping[str, Mapping[str, str]]] = None
    ):
        """
        Initialize the mapping.

        Args:
            tables: Base tables (defaults to DEFAULT_MAPPINGS)
            overrides: family name -> surface value -> canonical name

        Raises:
            ConfigError: If an override names an unknown family or frequency
        """
        source = tables if tables is not None else DEFAULT_MAPPINGS
        self._tables: Dict[ScheduleFamily, Dict[str, CanonicalFrequency]] = {
            ScheduleFamily(family): {_key(raw): CanonicalFrequency(canon) for raw, canon in table.items()}
            for family, table in source.items()
        }

        for family_name, table in (overrides or {}).items():
            try:
                family = ScheduleFamily(family_name)
                resolved = {_key(raw): CanonicalFrequency(_key(canon)) for raw, canon in table.items()}
            except ValueError as e:
                raise ConfigError(
                    f"Invalid frequency override for '{family_name}': {e}",
                    ErrorCode.INVALID_CONFIG,
                    {"family": family_name}
                )
            self._tables.setdefault(family, {}).update(resolved)
            logger.info(f"Applied {len(resolved)} frequency override(s) for family '{family.value}'")

    @classmethod
    def from_config(cls) -> "FrequencyMapping":
        """Build the mapping with the overrides from application config."""
        from config import config
        return cls(overrides=config.scheduler.frequency_overrides)

    def table(self, family: Union[ScheduleFamily, str]) -> Dict[str, CanonicalFrequency]:
        """Return a copy of one family's table."""
        return dict(self._tables.get(ScheduleFamily(family), {}))

    def normalize(
        self,
        schedule_type: Union[str, Enum, None],
        family: Union[ScheduleFamily, str]
    ) -> Union[CanonicalFrequency, str, None]:
        """
        Map a family-specific schedule type onto the canonical vocabulary.

        Args:
            schedule_type: Surface value, e.g. "CUSTOM_CRON" or "daily"
            family: "workflow", "notebook" or "data_sync"

        Returns:
            The canonical frequency, or the input unchanged when it is not
            recognised for the family
        """
        if isinstance(schedule_type, CanonicalFrequency) or schedule_type is None:
            return schedule_type

        raw = schedule_type.value if isinstance(schedule_type, Enum) else schedule_type
        if not isinstance(raw, str):
            return schedule_type

        try:
            table = self._tables.get(ScheduleFamily(family), {})
        except ValueError:
            logger.warning(f"Unknown schedule family '{family}', passing '{raw}' through")
            return raw

        canonical = table.get(_key(raw))
        if canonical is None:
            logger.debug(f"Unrecognised {family} schedule type '{raw}', passing through")
            return raw
        return canonical


_default_mapping: Optional[FrequencyMapping] = None


def get_frequency_mapping() -> FrequencyMapping:
    """Get the configured mapping, building it on first use."""
    global _default_mapping
    if _default_mapping is None:
        _default_mapping = FrequencyMapping.from_config()
    return _default_mapping


def normalize(
    schedule_type: Union[str, Enum, None],
    family: Union[ScheduleFamily, str],
    mapping: Optional[FrequencyMapping] = None
) -> Union[CanonicalFrequency, str, None]:
    """Normalize a schedule type using the given or configured mapping."""
    return (mapping or get_frequency_mapping()).normalize(schedule_type, family)


def is_canonical(value: object) -> bool:
    """True when value is one of the seven canonical frequencies."""
    if isinstance(value, CanonicalFrequency):
        return True
    return isinstance(value, str) and value in CanonicalFrequency.__members__
