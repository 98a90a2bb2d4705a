"""Utility functions for time handling."""

from .timestamps import (
    Clock,
    ensure_utc,
    format_timestamp,
    from_db_timestamp,
    to_db_timestamp,
    utc_now,
)

__all__ = [
    "Clock",
    "utc_now",
    "ensure_utc",
    "format_timestamp",
    "to_db_timestamp",
    "from_db_timestamp",
]
