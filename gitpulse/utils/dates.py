"""Date window helpers. All sync windows are in UTC."""

from datetime import date, datetime, time, timedelta, timezone


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def end_of_day(day: date) -> datetime:
    """Last representable instant of ``day``."""
    return start_of_day(day) + timedelta(days=1) - timedelta(microseconds=1)
