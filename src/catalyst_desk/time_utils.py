"""
Time utilities with an injectable clock.

Components that reason about age or staleness (the TTL cache, the verification
scheduler, signal expiry) take a ``Clock`` instead of calling
``datetime.now()`` directly, so that replays and tests can pin time.

Usage:
    from catalyst_desk.time_utils import SystemClock, FrozenClock, now

    clock = SystemClock()
    current_time = clock.now()

    frozen = FrozenClock(datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc))
    frozen.advance(minutes=90)
"""

from __future__ import annotations

import time as _real_time
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock, always timezone-aware UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """A clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = ensure_utc(start) if start else datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, dt: datetime) -> None:
        self._now = ensure_utc(dt)

    def advance(self, **delta) -> datetime:
        """Move forward by ``timedelta(**delta)`` and return the new time."""
        self._now = self._now + timedelta(**delta)
        return self._now


def now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def sleep(seconds: float) -> None:
    if seconds <= 0:
        return
    _real_time.sleep(seconds)


def monotonic() -> float:
    return _real_time.monotonic()


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_ts(value) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (or pass through a datetime) into aware UTC.

    Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    from dateutil import parser as dtparser

    try:
        return ensure_utc(dtparser.isoparse(str(value)))
    except (ValueError, OverflowError):
        try:
            return ensure_utc(dtparser.parse(str(value)))
        except (ValueError, OverflowError):
            return None


def iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")
