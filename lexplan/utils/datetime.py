"""Time utilities with timezone-aware defaults."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

ONE_DAY = timedelta(days=1)


def utc_now() -> datetime:
    """Return current UTC time with tzinfo."""

    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes coming back from the store."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_until(end: datetime, now: datetime) -> int:
    """Whole days left until ``end``, rounded up and never negative."""

    delta = ensure_utc(end) - ensure_utc(now)
    return max(0, math.ceil(delta / ONE_DAY))


__all__ = ["ONE_DAY", "days_until", "ensure_utc", "utc_now"]
