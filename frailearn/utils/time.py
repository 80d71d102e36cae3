"""
Time helpers.

All timestamps are stored as naive UTC datetimes so SQLite and PostgreSQL
compare them the same way.
"""

from __future__ import annotations

from datetime import UTC, date, datetime


def utcnow() -> datetime:
    """Current UTC time without tzinfo."""
    return datetime.now(UTC).replace(tzinfo=None)


def days_between(earlier: date | datetime, later: date | datetime) -> int:
    """Whole calendar days from `earlier` to `later`, ignoring time of day."""
    if isinstance(earlier, datetime):
        earlier = earlier.date()
    if isinstance(later, datetime):
        later = later.date()
    return (later - earlier).days
