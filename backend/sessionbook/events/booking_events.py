"""Booking domain events, used as notification payloads."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional


def _serialize(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in payload.items()
    }


@dataclass
class BookingCreated:
    """Fired after a booking is successfully created."""

    kind: ClassVar[str] = "booking_created"

    booking_id: str
    course_id: str
    student_id: str
    instructor_id: str
    start_at: datetime
    duration_hours: float
    credits_spent: int
    room_join_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class BookingCancelled:
    """Fired after a booking is cancelled."""

    kind: ClassVar[str] = "booking_cancelled"

    booking_id: str
    cancelled_by: str  # 'student' or 'instructor'
    cancelled_at: datetime
    refund_amount: int = 0
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class BookingReminder:
    """Fired when a session is about to start."""

    kind: ClassVar[str] = "booking_reminder"

    booking_id: str
    start_at: datetime
    minutes_until_start: int
    reminder_type: str = "upcoming_session"
    room_join_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class BookingCompleted:
    """Fired after a booking is marked complete."""

    kind: ClassVar[str] = "booking_completed"

    booking_id: str
    completed_at: datetime
    credits_transferred: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))


@dataclass
class BookingMissed:
    """Fired when the sweep marks an unattended session as missed."""

    kind: ClassVar[str] = "booking_missed"

    booking_id: str
    start_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(asdict(self))
