"""
Clock abstraction.
The core never reads wall-clock time directly; callers resolve "now" through a Clock.
"""
from datetime import datetime
from typing import Protocol

import pytz


class Clock(Protocol):
    def now(self) -> datetime:
        """Return the current instant as a timezone-aware UTC datetime."""
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(pytz.UTC)


class FixedClock:
    """Clock pinned to a given instant. Tests move it with `set` or `advance`."""

    def __init__(self, fixed_time: datetime):
        self.set(fixed_time)

    def set(self, fixed_time: datetime) -> None:
        if fixed_time.tzinfo is None:
            fixed_time = fixed_time.replace(tzinfo=pytz.UTC)
        self._now = fixed_time.astimezone(pytz.UTC)

    def advance(self, delta) -> datetime:
        self._now = self._now + delta
        return self._now

    def now(self) -> datetime:
        return self._now
