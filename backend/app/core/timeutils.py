"""
Datetime helpers.

Timestamps are written as naive UTC (datetime.utcnow()). PostgreSQL hands
timestamptz columns back as aware values and SQLite as naive ones, so
comparisons go through as_naive_utc().
"""

from datetime import datetime, timezone
from typing import Optional


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def is_past(value: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """Whether value lies before now. None never expires."""
    if value is None:
        return False
    return as_naive_utc(value) < (now or datetime.utcnow())
