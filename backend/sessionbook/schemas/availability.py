# backend/sessionbook/schemas/availability.py
"""
Availability schemas.

Recurring rules and date overrides are wall-clock windows in the profile's
timezone. Policy knobs are a fixed, validated record rather than an open map.
"""

from datetime import date, datetime, time
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
import pytz

from .base import StandardizedModel, StrictRequestModel


def _parse_time(value: object) -> object:
    """Accept "HH:MM" (or "HH:MM:SS") strings as times."""
    if isinstance(value, str):
        parts = value.strip().split(":")
        try:
            if len(parts) not in (2, 3):
                raise ValueError
            hour, minute = int(parts[0]), int(parts[1])
            second = int(parts[2]) if len(parts) == 3 else 0
            return time(hour, minute, second)
        except ValueError:
            raise ValueError(f"Invalid time format: {value}. Expected HH:MM format.")
    return value


class TimeWindowModel(StrictRequestModel):
    start_time: time
    end_time: time

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_time_string(cls, v: object) -> object:
        return _parse_time(v)

    @model_validator(mode="after")
    def validate_time_order(self) -> "TimeWindowModel":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class RecurringRuleCreate(TimeWindowModel):
    """Weekly window; weekday 0 is Sunday."""

    weekday: int = Field(..., ge=0, le=6, description="0=Sunday .. 6=Saturday")
    active: bool = True


class DateOverrideCreate(TimeWindowModel):
    date: date
    available: bool = True
    reason: Optional[str] = Field(None, max_length=255)

    @field_validator("reason")
    @classmethod
    def clean_reason(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v


class AvailabilityPolicyUpdate(StrictRequestModel):
    """Partial update of profile policy; omitted fields are left unchanged."""

    timezone: Optional[str] = None
    min_advance_booking_hours: Optional[int] = Field(None, ge=0)
    max_advance_booking_days: Optional[int] = Field(None, ge=1)
    slot_duration_hours: Optional[float] = Field(None, ge=0.5)
    buffer_minutes: Optional[int] = Field(None, ge=0)
    active: Optional[bool] = None

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {v}")
        return v


class AvailabilityProfileUpsert(AvailabilityPolicyUpdate):
    """
    Create-or-update payload.

    When ``rules`` or ``overrides`` is given it replaces the stored set;
    when omitted the stored set is kept.
    """

    rules: Optional[List[RecurringRuleCreate]] = None
    overrides: Optional[List[DateOverrideCreate]] = None

    @model_validator(mode="after")
    def validate_unique_entries(self) -> "AvailabilityProfileUpsert":
        if self.rules:
            keys = [(r.weekday, r.start_time, r.end_time) for r in self.rules]
            if len(keys) != len(set(keys)):
                raise ValueError("Duplicate recurring rule")
        if self.overrides:
            days = [o.date for o in self.overrides]
            if len(days) != len(set(days)):
                raise ValueError("Only one override per date is allowed")
        return self


class RecurringRuleResponse(StandardizedModel):
    id: Optional[str] = None
    weekday: int
    start_time: time
    end_time: time
    active: bool


class DateOverrideResponse(StandardizedModel):
    id: Optional[str] = None
    date: date
    start_time: time
    end_time: time
    available: bool
    reason: Optional[str] = None


class AvailabilityProfileResponse(StandardizedModel):
    id: Optional[str] = None
    instructor_id: str
    course_id: Optional[str] = None
    timezone: str
    min_advance_booking_hours: int
    max_advance_booking_days: int
    slot_duration_hours: float
    buffer_minutes: int
    active: bool
    rules: List[RecurringRuleResponse] = Field(default_factory=list)
    overrides: List[DateOverrideResponse] = Field(default_factory=list)


class SlotResponse(StandardizedModel):
    start_at: datetime
    end_at: datetime
    duration_hours: float
