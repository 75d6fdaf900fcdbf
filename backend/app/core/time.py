"""Time utilities for timezone-aware UTC datetimes and billing weeks."""

from datetime import UTC, date, datetime, time, timedelta


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime for defaults and onupdate hooks."""
    return datetime.now(UTC)


def week_start(value: date) -> date:
    """Return the Monday of the calendar week containing ``value``."""
    if isinstance(value, datetime):
        value = value.date()
    return value - timedelta(days=value.weekday())


def week_end(value: date) -> date:
    """Return the Sunday closing the week that contains ``value``."""
    return week_start(value) + timedelta(days=6)


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def minutes_between(start: time, end: time) -> int:
    return minutes_of_day(end) - minutes_of_day(start)
