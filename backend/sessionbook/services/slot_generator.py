# backend/sessionbook/services/slot_generator.py
"""
Slot generation.

Turns an availability profile into concrete bookable slots for a date range.
Everything here is a pure function of its inputs: no database access, no
clock reads, no side effects. Callers pass ``now`` explicitly.

Per local calendar day in the range:
1. A date override replaces the recurring rules for that day. An
   unavailable override yields no slots; an available one is the day's
   only window.
2. Otherwise every active recurring rule for the weekday is a window.
3. Each window is tiled into ``slot_duration_hours`` chunks from its start,
   advancing by the slot length plus ``buffer_minutes``; a chunk running
   past the window end is dropped.
4. Chunks starting before ``now + min_advance_booking_hours`` are dropped.
5. Chunks overlapping an active booking are dropped.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Iterator, List, Optional, Sequence, Tuple, Union

from ..core.exceptions import ValidationException
from ..core.timezone_utils import ensure_utc, localize, sunday_based_weekday, to_local_date
from .conflict_checker import Interval, has_overlap

DateLike = Union[date, datetime]


@dataclass(frozen=True)
class Slot:
    """A candidate bookable window, in UTC."""

    start_at: datetime
    end_at: datetime

    @property
    def duration_hours(self) -> float:
        return (self.end_at - self.start_at).total_seconds() / 3600

    def to_dict(self) -> dict:
        return {
            "start_at": self.start_at.isoformat(),
            "end_at": self.end_at.isoformat(),
            "duration_hours": self.duration_hours,
        }


def _as_local_date(value: DateLike, tz_name: str) -> date:
    if isinstance(value, datetime):
        return to_local_date(value, tz_name)
    return value


def resolve_period(
    profile: Any,
    period_start: Optional[DateLike],
    period_end: Optional[DateLike],
    now: datetime,
) -> Tuple[date, date]:
    """
    Normalize a requested period to local calendar days.

    A missing start means today; a missing end means the booking horizon
    (``now + max_advance_booking_days``).
    """
    tz_name = profile.timezone
    start_day = _as_local_date(period_start, tz_name) if period_start else to_local_date(now, tz_name)
    if period_end:
        end_day = _as_local_date(period_end, tz_name)
    else:
        end_day = to_local_date(now + timedelta(days=profile.max_advance_booking_days), tz_name)

    if end_day < start_day:
        raise ValidationException(
            "Period end must not be before period start",
            details={"period_start": start_day.isoformat(), "period_end": end_day.isoformat()},
        )
    return start_day, end_day


def _days(start_day: date, end_day: date) -> Iterator[date]:
    current = start_day
    while current <= end_day:
        yield current
        current += timedelta(days=1)


def windows_for_day(profile: Any, day: date) -> List[Tuple[time, time]]:
    """Local wall-clock availability windows for one calendar day."""
    override = profile.override_for(day)
    if override is not None:
        if not override.available:
            return []
        return [(override.start_time, override.end_time)]

    weekday = sunday_based_weekday(day)
    return [
        (rule.start_time, rule.end_time)
        for rule in profile.rules
        if rule.active and rule.weekday == weekday
    ]


def tile_window(
    window_start: datetime,
    window_end: datetime,
    slot_duration: timedelta,
    buffer: timedelta,
) -> Iterator[Slot]:
    """Consecutive fixed-length chunks of a window, separated by the buffer."""
    cursor = window_start
    while cursor + slot_duration <= window_end:
        yield Slot(start_at=cursor, end_at=cursor + slot_duration)
        cursor = cursor + slot_duration + buffer


def generate_slots(
    profile: Any,
    period_start: Optional[DateLike],
    period_end: Optional[DateLike],
    bookings: Sequence[Interval],
    now: datetime,
) -> List[Slot]:
    """
    Free, bookable slots of ``profile`` within the period.

    Args:
        profile: Availability profile (timezone, rules, overrides, policy knobs)
        period_start: First day (date, or instant read in the profile timezone)
        period_end: Last day, inclusive; defaults to the booking horizon
        bookings: The instructor's scheduled/in-progress bookings
        now: Current instant

    Returns:
        Slots ordered by start time
    """
    if not profile.active:
        return []

    now = ensure_utc(now)
    start_day, end_day = resolve_period(profile, period_start, period_end, now)
    tz_name = profile.timezone
    slot_duration = timedelta(hours=profile.slot_duration_hours)
    buffer = timedelta(minutes=profile.buffer_minutes)
    earliest_start = now + timedelta(hours=profile.min_advance_booking_hours)

    seen = set()
    slots: List[Slot] = []
    for day in _days(start_day, end_day):
        for start_time, end_time in windows_for_day(profile, day):
            window_start = localize(day, start_time, tz_name)
            window_end = localize(day, end_time, tz_name)
            for slot in tile_window(window_start, window_end, slot_duration, buffer):
                if slot.start_at < earliest_start:
                    continue
                if has_overlap(slot.start_at, slot.end_at, bookings):
                    continue
                if slot.start_at in seen:
                    continue
                seen.add(slot.start_at)
                slots.append(slot)

    slots.sort(key=lambda s: s.start_at)
    return slots
