"""Time mode logic.

Decides whether a board shows its AM or PM feeding schedule:

1. A manual override (AM or PM) wins while ``override_until`` lies in the
   future.
2. Otherwise the mode follows the local hour in the board's timezone:
   04:00-11:59 is AM, 12:00-03:59 is PM.

Shared by the server (time-mode endpoint) and the client board store.
"""

import logging
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from feedboard.models.enums import TimeMode

logger = logging.getLogger(__name__)

AM_START_HOUR = 4
PM_START_HOUR = 12
DEFAULT_OVERRIDE_MINUTES = 60


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def validate_timezone(value: str) -> str:
    """Return ``value`` if it names a known IANA timezone, else raise ValueError."""
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {value}") from e
    return value


def hour_in_timezone(now: datetime, timezone: str) -> int:
    """Get the hour (0-23) of ``now`` in ``timezone``; unknown zones fall back to UTC."""
    try:
        tz = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {timezone!r}, using UTC")
        tz = ZoneInfo("UTC")
    return _as_utc(now).astimezone(tz).hour


def time_mode_for_hour(hour: int) -> TimeMode:
    """AM for hours 4-11, PM for everything else."""
    return TimeMode.AM if AM_START_HOUR <= hour < PM_START_HOUR else TimeMode.PM


def get_effective_time_mode(
    mode: TimeMode | str,
    override_until: datetime | None,
    timezone: str,
    now: datetime | None = None,
) -> TimeMode:
    """Calculate the effective time mode (AM or PM).

    Args:
        mode: The configured time mode (AUTO, AM or PM)
        override_until: When a manual override expires (None if no override)
        timezone: IANA timezone name, e.g. ``Australia/Sydney``
        now: Current time, injectable for testing

    Returns:
        TimeMode.AM or TimeMode.PM
    """
    mode = TimeMode(mode)
    now = _as_utc(now or datetime.now(UTC))

    if mode.is_override() and override_until is not None and now < _as_utc(override_until):
        return mode

    return time_mode_for_hour(hour_in_timezone(now, timezone))


def calculate_override_expiry(
    now: datetime | None = None, minutes: int = DEFAULT_OVERRIDE_MINUTES
) -> datetime:
    """Expiry of a new manual override."""
    return _as_utc(now or datetime.now(UTC)) + timedelta(minutes=minutes)


def is_override_expired(override_until: datetime | None, now: datetime | None = None) -> bool:
    """Check if an override has expired (no override counts as expired)."""
    if override_until is None:
        return True
    return _as_utc(override_until) <= _as_utc(now or datetime.now(UTC))
