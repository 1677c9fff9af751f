"""Datetime helpers for timezone-aware UTC timestamps.

Usage:
    from src.utils.datetime_utils import utc_now, to_iso

    created_at = Column(DateTime, default=utc_now)
    payload["reversed_at"] = to_iso(batch.reversed_at)
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime to ISO-8601, passing None through."""
    if value is None:
        return None
    return value.isoformat()
