"""
Injectable time source.

Reset-epoch checks, YEAR/MONTH/FY token rendering, document-date checks and
every ``last_reset_at`` / ``generated_at`` / ``posted_at`` stamp read the
time from a Clock handed to the service, never from ``datetime.now()``.
SystemClock is the only place the real time enters the kernel.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of the current instant, always timezone-aware UTC."""

    @abstractmethod
    def now_utc(self) -> datetime:
        ...


class SystemClock(Clock):
    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock frozen at a chosen instant until moved explicitly.

    Defaults to 2025-01-15 10:00 UTC.  Lets tests step across month, year
    and fiscal-year boundaries without waiting for them.
    """

    DEFAULT_TIME = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)

    def __init__(self, fixed_time: datetime | None = None):
        self._current = self._checked(fixed_time or self.DEFAULT_TIME)

    @staticmethod
    def _checked(moment: datetime) -> datetime:
        if moment.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware datetime")
        return moment.astimezone(timezone.utc)

    def now_utc(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = self._checked(time)

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)
