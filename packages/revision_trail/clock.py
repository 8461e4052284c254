"""UTC clock helpers for revision validity timestamps."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime | None) -> datetime | None:
    """Treat naive timestamps as UTC; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def read_clock(clock: Clock) -> datetime:
    """Call ``clock`` and normalize its result to aware UTC."""
    value = clock()
    if not isinstance(value, datetime):
        raise TypeError(f"clock must return a datetime, got {type(value).__name__}")
    return ensure_aware(value)
