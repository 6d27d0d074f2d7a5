"""
Injectable time source.

Services never read the wall clock themselves; they are handed a Clock so
that claim, validation, rejection and delivery timestamps can be pinned in
tests.  SystemClock is the only place the kernel asks the OS for the time.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

_DEFAULT_START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Returns timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime: ...


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    A clock that only moves when told to.

    Repeated ``now()`` calls return the same instant; ``advance()`` moves it
    forward and returns the new reading.
    """

    def __init__(self, fixed_time: datetime | None = None):
        start = fixed_time or _DEFAULT_START
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start time")
        self._current = start.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current
