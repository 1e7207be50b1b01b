"""
arena/core/clock.py
Time sources for the engine.

Every status and lifecycle decision is a pure function of (entity, now), so
services never call datetime directly; they ask an injected clock. All
timestamps are naive UTC to match what SQLite stores.
"""
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp (the convention used by every DateTime column)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Clock:
    """Interface: supplies the current time."""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall clock."""

    def now(self) -> datetime:
        return utcnow()


class FixedClock(Clock):
    """
    Manually driven clock.

    Used by the CLI's --at option and by tests to control deadlines and
    cache expiry deterministically.
    """

    def __init__(self, current: datetime):
        self.current = current

    def now(self) -> datetime:
        return self.current

    def set(self, current: datetime) -> None:
        self.current = current

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.current = self.current + timedelta(seconds=seconds, **kwargs)
        return self.current
