"""
Injectable time source.

The ledger engine stamps transactions and ``last_*_at`` counters with
``clock.now()``, and the PM due-set query compares against it; neither calls
``datetime.now()`` itself.  Production wires SystemClock, tests wire
DeterministicClock and move it forward explicitly.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta


class Clock(ABC):
    """Source of aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """Frozen clock; only ``advance`` and ``advance_days`` move it."""

    def __init__(self, start: datetime):
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs an aware datetime")
        self._current = start.astimezone(UTC)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current

    def advance_days(self, days: int) -> datetime:
        return self.advance(days * 86400)
