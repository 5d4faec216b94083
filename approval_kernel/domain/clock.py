"""
Injectable time source for the approval kernel.

Auto-approval, escalation and reminder windows are all measured against
``Clock.now()``; nothing in the kernel, engines or scheduler reads the
wall clock directly.  ``SystemClock`` is the only place real time enters.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime: ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Manually driven clock for tests and replays.

    Time stands still until the test moves it, so a request created "now"
    and a timeout check made "now" see the same instant.
    """

    def __init__(self, start: datetime | None = None):
        start = start or DEFAULT_TEST_EPOCH
        if start.tzinfo is None:
            raise ValueError("DeterministicClock requires an aware datetime")
        self._current = start

    def now(self) -> datetime:
        return self._current

    def advance_hours(self, hours: float) -> None:
        """Jump forward, e.g. past an auto-approval window."""
        self._current += timedelta(hours=hours)
