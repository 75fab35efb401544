"""Injectable wall-clock sources. All times are timezone-aware UTC."""

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Reads the real wall clock."""

    def now(self) -> datetime:
        return utcnow()


class ManualClock:
    """
    A clock that only moves when told to. Used to make expiry and consent
    windows deterministic in tests.
    """

    def __init__(self, start: Optional[datetime] = None):
        start = start or utcnow()
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **delta) -> datetime:
        """Move forward by a timedelta given as keyword arguments (days=, hours=, ...)."""
        with self._lock:
            self._now = self._now + timedelta(**delta)
            return self._now

    def set(self, when: datetime) -> None:
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        with self._lock:
            self._now = when
