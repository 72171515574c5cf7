"""Time helpers; every service takes a clock so tests can pin time."""

from collections.abc import Callable
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def business_day(now: datetime, tz_name: str) -> date:
    """Calendar day of `now` in the gym's local timezone."""

    return as_utc(now).astimezone(ZoneInfo(tz_name)).date()
