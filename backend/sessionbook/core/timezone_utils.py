"""
Timezone utilities for the session booking engine.

All persisted instants are UTC. Availability rules are wall-clock times in
the instructor profile's timezone and are converted here.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Tuple

import pytz

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive values are assumed to already be UTC (SQLite drops tzinfo on read).
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def get_timezone(name: str) -> pytz.BaseTzInfo:
    """
    Get a pytz timezone by IANA name.

    Args:
        name: IANA timezone name, e.g. "America/Sao_Paulo"

    Returns:
        pytz timezone object
    """
    return pytz.timezone(name)


def localize(day: date, wall_time: time, tz_name: str) -> datetime:
    """
    Combine a local calendar day and wall-clock time and return it in UTC.

    pytz picks the standard-time interpretation for ambiguous wall times
    and shifts non-existent ones forward.
    """
    tz = get_timezone(tz_name)
    local = tz.normalize(tz.localize(datetime.combine(day, wall_time), is_dst=False))
    return local.astimezone(timezone.utc)


def local_day_bounds(day: date, tz_name: str) -> Tuple[datetime, datetime]:
    """Return the UTC instants bounding a local calendar day as [start, end)."""
    start = localize(day, time(0, 0), tz_name)
    end = localize(day + timedelta(days=1), time(0, 0), tz_name)
    return start, end


def to_local_date(dt: datetime, tz_name: str) -> date:
    """Return the calendar date of an instant in the given timezone."""
    return ensure_utc(dt).astimezone(get_timezone(tz_name)).date()


def sunday_based_weekday(day: date) -> int:
    """Weekday numbered 0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7
