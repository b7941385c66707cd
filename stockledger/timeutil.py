"""Time helpers. Timestamps are stored as naive UTC."""

from collections.abc import Callable
from datetime import date, datetime, time, timedelta, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max)


def days_between(start: date, end: date) -> list[date]:
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]
