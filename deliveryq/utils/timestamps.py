"""Timestamp utilities for UTC handling and the injectable clock.

This module provides utilities for working with timestamps in UTC:
- Getting current UTC time (the default clock for every component)
- Converting timezone-naive to timezone-aware UTC
- Formatting timestamps for logs and for database storage

Database timestamps are stored as fixed-width ISO 8601 strings so that
lexicographic comparison in SQL matches chronological order.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

# A clock is any zero-argument callable returning an aware UTC datetime.
Clock = Callable[[], datetime]

DB_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current UTC time with timezone info

    Example:
        >>> now = utc_now()
        >>> now.tzinfo == timezone.utc
        True
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware and in UTC.

    If the datetime is timezone-naive, it's treated as UTC.
    If the datetime has a different timezone, it's converted to UTC.

    Args:
        dt: Datetime to convert (can be None)

    Returns:
        Timezone-aware datetime in UTC, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime, include_microseconds: bool = False) -> str:
    """Format a datetime as ISO 8601 string in UTC.

    Args:
        dt: Datetime to format
        include_microseconds: Whether to include microseconds in output

    Returns:
        ISO 8601 formatted string with 'Z' suffix

    Example:
        >>> dt = datetime(2026, 11, 4, 12, 0, 0, tzinfo=timezone.utc)
        >>> format_timestamp(dt)
        '2026-11-04T12:00:00Z'
    """
    dt_utc = ensure_utc(dt)
    if dt_utc is None:
        return ""

    if include_microseconds:
        return dt_utc.strftime(DB_TIMESTAMP_FORMAT)
    return dt_utc.strftime("%Y-%m-%dT%H:%M:%SZ")


def to_db_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime for database storage (fixed width, sortable)."""
    if dt is None:
        return None
    return format_timestamp(dt, include_microseconds=True)


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value is None or value == "":
        return None

    raw = value.rstrip("Z")
    try:
        dt = datetime.strptime(raw, "%Y-%m-%dT%H:%M:%S.%f")
    except ValueError:
        dt = datetime.strptime(raw, "%Y-%m-%dT%H:%M:%S")

    return dt.replace(tzinfo=timezone.utc)
