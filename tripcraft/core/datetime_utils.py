"""
Datetime utilities for handling timezone-aware datetimes
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as naive UTC, the form stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Convert a timezone-aware datetime to naive UTC for storage compatibility

    Args:
        value: datetime, aware or naive. Naive values are assumed to be UTC already.

    Returns:
        Naive UTC datetime, or None
    """
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
