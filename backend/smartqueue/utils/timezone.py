"""
Timezone utilities for converting between UTC and local times.

All stored timestamps are UTC. Time-of-day rules (peak hours, lunch,
weekends) are evaluated in the queue site's local timezone.
"""

from datetime import datetime

import pytz

UTC_TZ = pytz.UTC


def utc_now() -> datetime:
    """Get current time in UTC (timezone-aware)."""
    return datetime.now(UTC_TZ)


def as_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to timezone-aware UTC.

    Naive datetimes are assumed to already be in UTC.
    """
    if dt.tzinfo is None:
        return UTC_TZ.localize(dt)
    return dt.astimezone(UTC_TZ)


def to_utc(local_dt: datetime, timezone: str = "UTC") -> datetime:
    """
    Convert a local datetime to UTC.

    Args:
        local_dt: Datetime in local timezone (can be naive or aware)
        timezone: Timezone name used when local_dt is naive

    Returns:
        Timezone-naive datetime in UTC (for database storage)
    """
    tz = pytz.timezone(timezone)

    if local_dt.tzinfo is None:
        # Naive datetime - assume it's in the specified timezone
        local_dt = tz.localize(local_dt)

    utc_dt = local_dt.astimezone(UTC_TZ)
    return utc_dt.replace(tzinfo=None)


def from_utc(utc_dt: datetime, timezone: str = "UTC") -> datetime:
    """
    Convert a UTC datetime to local timezone.

    Args:
        utc_dt: Datetime in UTC (can be naive or aware)
        timezone: Target timezone name

    Returns:
        Timezone-aware datetime in local timezone
    """
    tz = pytz.timezone(timezone)
    return as_utc(utc_dt).astimezone(tz)
