"""
Injectable time source.

Every "now" comparison in the engine (hold expiry, deposit grace period)
goes through a Clock so tests can pin and advance time deterministically.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock(Clock):
    """Clock pinned to a fixed instant until moved explicitly."""

    def __init__(self, fixed_time: datetime | None = None):
        self._now = fixed_time or datetime.now(timezone.utc)
        if self._now.tzinfo is None:
            self._now = self._now.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, new_time: datetime) -> None:
        self._now = new_time

    def advance(self, **delta: float) -> datetime:
        """Move forward by timedelta keyword arguments, e.g. advance(minutes=16)."""
        self._now = self._now + timedelta(**delta)
        return self._now
