"""
Timestamp source for the record engine.

Every persisted timestamp goes through a Clock so tests can pin time and so
timestamps issued by one engine never run backwards, even if the wall clock
is adjusted between two writes.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"


def format_timestamp(moment: datetime) -> str:
    """Render a datetime in the upstream form: 2024-01-31T09:15:02.123Z."""
    moment = moment.astimezone(timezone.utc)
    return f"{moment.strftime(TIMESTAMP_FORMAT)}.{moment.microsecond // 1000:03d}Z"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Clock:
    """
    Monotonic UTC clock with millisecond resolution.

    Parameters
    ----------
    source : callable, optional
        Returns the current aware datetime. Defaults to the system clock.
    """

    def __init__(self, source: Optional[Callable[[], datetime]] = None) -> None:
        self._source = source or _utcnow
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            current = self._source()
            current = current.replace(microsecond=current.microsecond - current.microsecond % 1000)
            if self._last is not None and current < self._last:
                current = self._last
            self._last = current
            return current

    def timestamp(self) -> str:
        """Current time rendered with format_timestamp."""
        return format_timestamp(self.now())


class FrozenClock(Clock):
    """Clock pinned to a start time, advancing a fixed step on every read."""

    def __init__(self, start: datetime, step: timedelta = timedelta(milliseconds=1)) -> None:
        self._current = start
        self._step = step
        super().__init__(source=self._tick)

    def _tick(self) -> datetime:
        value = self._current
        self._current = value + self._step
        return value


__all__ = ["Clock", "FrozenClock", "format_timestamp"]
