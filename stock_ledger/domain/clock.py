"""
Clock -- injectable time source.

Ledger entries are timestamped by the writer from an injected Clock, never
from caller input and never from a direct ``datetime.now()`` call in
service code.  Tests inject DeterministicClock to get reproducible
``occurred_at`` values and ordering.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class Clock(ABC):
    """Source of ``occurred_at``: ``now()`` is timezone-aware UTC."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock.

    Returns ``start`` until moved with ``advance()`` or ``set_time()``.
    With ``auto_advance`` set, each ``now()`` first steps forward by that
    many seconds, so every entry written gets a distinct timestamp.  Safe
    to share between threads.
    """

    def __init__(self, start: datetime | None = None, auto_advance: float = 0):
        self._current = _aware(start or DEFAULT_TEST_TIME)
        self._step = timedelta(seconds=auto_advance)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            self._current += self._step
            return self._current

    def advance(self, seconds: float = 1) -> None:
        with self._lock:
            self._current += timedelta(seconds=seconds)

    def set_time(self, value: datetime) -> None:
        with self._lock:
            self._current = _aware(value)
