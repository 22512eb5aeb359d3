from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


def as_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from stores that drop tzinfo (SQLite)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime: ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self._now = as_utc(start) if start else datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, value: datetime) -> None:
        self._now = as_utc(value)
