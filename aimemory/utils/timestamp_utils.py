"""
Timestamp utilities for consistent time handling across the system.

Storage keeps timestamps as UTC text in SQLite's ``datetime('now')`` format so that
SQL-side comparisons and Python-side comparisons agree.
"""

from datetime import datetime, timezone
from typing import Optional

STORAGE_FORMAT = '%Y-%m-%d %H:%M:%S'


def utc_now() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_storage_str(moment: Optional[datetime] = None) -> str:
    """Convert a datetime to the storage text format.

    Args:
        moment: Naive UTC or aware datetime (optional, uses current time if None)

    Returns:
        Timestamp string such as ``2024-01-31 12:00:00``
    """
    if moment is None:
        moment = utc_now()
    elif moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.strftime(STORAGE_FORMAT)


def from_storage_str(value: Optional[str]) -> Optional[datetime]:
    """Parse a storage timestamp, accepting ISO-8601 as written by exports.

    Args:
        value: Timestamp text or None

    Returns:
        Naive UTC datetime, or None when the value is empty or unparseable
    """
    if not value:
        return None
    try:
        return datetime.strptime(value, STORAGE_FORMAT)
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
