"""
Clock Sources

All window-boundary math reads time through a Clock so that calendar
crossings can be reproduced exactly in tests.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Optional


class Clock(ABC):
    """Source of the current instant (tz-aware, UTC)."""

    @abstractmethod
    def now(self) -> datetime:
        pass


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """
    Manually controlled clock for tests.

    Holds a single instant until it is moved with set() or advance().
    Naive datetimes are taken to be UTC.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = _as_utc(start or datetime.now(timezone.utc))
        self._lock = Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, instant: datetime) -> None:
        with self._lock:
            self._now = _as_utc(instant)

    def advance(self, **delta) -> datetime:
        """Move forward by a timedelta given as keyword arguments (days=1, hours=3...)."""
        with self._lock:
            self._now = self._now + timedelta(**delta)
            return self._now


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)
