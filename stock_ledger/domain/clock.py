"""
Injectable time source for the stock ledger.

Movement ``created_at``, reservation expiry checks, status changes and
divergence detection times all come from a Clock passed to the service
constructors.  Services never read the system time themselves, so tests
can pin and step time with DeterministicClock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock time in UTC.  The ledger's only direct read of system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock frozen at ``start`` until advanced.

    Repeated ``now()`` calls return the same instant, so every movement
    written between two ``advance()`` calls carries the same timestamp.
    """

    def __init__(self, start: datetime | None = None):
        start = start or DEFAULT_TEST_EPOCH
        if start.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware start")
        self._current = start.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float | timedelta = 1) -> datetime:
        """Move the clock forward and return the new instant."""
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        if step < timedelta(0):
            raise ValueError("DeterministicClock cannot move backwards")
        self._current += step
        return self._current
