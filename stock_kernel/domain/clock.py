"""
Injectable time source.

Services and selectors take a ``Clock`` instead of calling ``datetime.now()``
so lot ages, transfer timestamps and analytics windows are reproducible in
tests.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Returns timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    A clock that only moves when told to.

    Guarantees:
        - Repeated ``now()`` calls return the same instant.
        - ``advance(n)`` moves it forward exactly ``n`` seconds.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        self._current = moment

    def advance(self, seconds: float = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current
