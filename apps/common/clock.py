"""
Injectable wall clock.

Deadlines are business data compared against "now"; services take a Clock so
tests can pin "now" to any instant instead of patching timezone.now().
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone as dt_timezone

from django.utils import timezone


class Clock:
    def now(self) -> datetime:
        return timezone.now()


class FrozenClock(Clock):
    """A clock that only moves when told to."""

    def __init__(self, at: datetime):
        if timezone.is_naive(at):
            at = timezone.make_aware(at, dt_timezone.utc)
        self._now = at

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, at: datetime) -> None:
        self._now = at


system_clock = Clock()
