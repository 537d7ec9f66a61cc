"""
Timestamp utilities for consistent time handling across the system.

All timestamps are timezone-aware UTC. Stored timestamps use a fixed-width
ISO 8601 format so that range filters compare correctly.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

ISO_FORMAT = '%Y-%m-%dT%H:%M:%S.%fZ'


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to the stored ISO string format.

    Args:
        value: datetime to convert; naive values are treated as UTC

    Returns:
        ISO string, or None when value is None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(ISO_FORMAT)


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO string back into an aware UTC datetime.

    Args:
        value: ISO string as written by to_iso (other ISO 8601 forms are accepted)

    Returns:
        datetime, or None when value is empty
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        return datetime.strptime(value, ISO_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def days_ago(now: datetime, days: int) -> datetime:
    return now - timedelta(days=days)


def start_of_month(now: datetime) -> datetime:
    """Return midnight UTC on the first day of now's month."""
    now = now.astimezone(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
