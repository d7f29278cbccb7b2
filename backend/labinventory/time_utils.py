from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Optional


SECONDS_PER_DAY = 24 * 60 * 60


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def days_until(target: datetime, now: datetime) -> int:
    """Whole days from now until target, rounded up (negative once target has passed)."""
    return math.ceil((target - now).total_seconds() / SECONDS_PER_DAY)


def days_after(now: datetime, days: int) -> datetime:
    return now + timedelta(days=days)
