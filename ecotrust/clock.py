"""Injectable time source for staleness checks and timestamps."""
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of the current instant (timezone-aware UTC)."""

    @abstractmethod
    def now(self) -> datetime:
        pass


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock frozen at a given instant. Used in tests."""

    def __init__(self, instant: datetime = None):
        if instant is None:
            instant = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime):
        self._instant = instant

    def advance(self, **delta):
        """Move forward, e.g. clock.advance(days=8)."""
        self._instant = self._instant + timedelta(**delta)
