# backend/sessionbook/schemas/booking.py
"""
Booking schemas.

Bookings carry their own UTC start instant and duration; they do not point
back at the availability slot they were picked from.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator, model_validator

from ..models.booking import (
    CANCEL_REASON_MAX_LENGTH,
    MAX_DURATION_HOURS,
    MIN_DURATION_HOURS,
    NOTES_MAX_LENGTH,
    BookingKind,
    BookingStatus,
)
from .base import StandardizedModel, StrictRequestModel


class BookingCreate(StrictRequestModel):
    """
    Request to book a session.

    ``fixed_price`` only applies to single-session bookings; when omitted the
    course's single-session price is used.
    """

    course_id: str = Field(..., min_length=1)
    student_id: str = Field(..., min_length=1)
    start_at: datetime
    duration_hours: float = Field(1.0, ge=MIN_DURATION_HOURS, le=MAX_DURATION_HOURS)
    kind: BookingKind = Field(BookingKind.FULL_COURSE, validate_default=True)
    fixed_price: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = Field(None, max_length=NOTES_MAX_LENGTH)

    @field_validator("start_at")
    @classmethod
    def normalize_start(cls, v: datetime) -> datetime:
        """Naive datetimes are read as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_validator("notes")
    @classmethod
    def clean_notes(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v

    @model_validator(mode="after")
    def validate_price_kind(self) -> "BookingCreate":
        if self.fixed_price is not None and self.kind != BookingKind.SINGLE_SESSION.value:
            raise ValueError("fixed_price only applies to single_session bookings")
        return self


class BookingCancel(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=CANCEL_REASON_MAX_LENGTH)

    @field_validator("reason")
    @classmethod
    def clean_reason(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v


class BookingListFilters(StrictRequestModel):
    status: Optional[BookingStatus] = None
    course_id: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)

    @model_validator(mode="after")
    def validate_range(self) -> "BookingListFilters":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self


class BookingResponse(StandardizedModel):
    id: str
    course_id: str
    student_id: str
    instructor_id: str
    start_at: datetime
    end_at: datetime
    duration_hours: float
    kind: str
    status: str
    notes: Optional[str] = None
    credits_spent: int
    refunded: bool = False
    refund_amount: int = 0
    student_joined: bool = False
    instructor_joined: bool = False
    cancelled_by_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    room_join_url_instructor: Optional[str] = None
    room_join_url_student: Optional[str] = None


class PaginatedBookings(StandardizedModel):
    items: List[BookingResponse]
    page: int
    limit: int
    total: int
    total_pages: int


class CancellationResult(StandardizedModel):
    booking: BookingResponse
    refund_amount: int
    refund_percent: Optional[int] = None  # None when the booking was already cancelled
    already_cancelled: bool = False


class CalendarSummary(StandardizedModel):
    total: int
    completed: int
    upcoming: int
    cancelled: int


class CalendarResponse(StandardizedModel):
    month: int
    year: int
    events: List[BookingResponse]
    summary: CalendarSummary

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
