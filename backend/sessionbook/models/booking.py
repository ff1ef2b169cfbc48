# backend/sessionbook/models/booking.py
"""
Booking model for the session booking engine.

A Booking is one scheduled session between a student and an instructor for
a course. Bookings store their own start/end instants, so they persist as
commitments regardless of later availability changes. Terminal bookings are
kept for history and never deleted.
"""

from datetime import datetime, timedelta
from enum import Enum
import logging
from typing import Any, Dict, FrozenSet, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
import ulid

from ..core.exceptions import InvalidStateException
from ..database import Base
from .types import UTCDateTime, now_utc

logger = logging.getLogger(__name__)

MIN_DURATION_HOURS = 0.5
MAX_DURATION_HOURS = 4.0
NOTES_MAX_LENGTH = 1000
CANCEL_REASON_MAX_LENGTH = 500


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    MISSED = "missed"


class BookingKind(str, Enum):
    """How the session is paid for."""

    FULL_COURSE = "full_course"  # Requires an active enrollment
    SINGLE_SESSION = "single_session"  # One-off at a fixed price


ACTIVE_STATUSES: FrozenSet[str] = frozenset(
    {BookingStatus.SCHEDULED.value, BookingStatus.IN_PROGRESS.value}
)
TERMINAL_STATUSES: FrozenSet[str] = frozenset(
    {BookingStatus.COMPLETED.value, BookingStatus.CANCELLED.value, BookingStatus.MISSED.value}
)
HISTORY_STATUSES = TERMINAL_STATUSES

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    BookingStatus.SCHEDULED.value: frozenset(
        {
            BookingStatus.IN_PROGRESS.value,
            BookingStatus.COMPLETED.value,
            BookingStatus.CANCELLED.value,
            BookingStatus.MISSED.value,
        }
    ),
    BookingStatus.IN_PROGRESS.value: frozenset(
        {BookingStatus.COMPLETED.value, BookingStatus.CANCELLED.value}
    ),
    BookingStatus.COMPLETED.value: frozenset(),
    BookingStatus.CANCELLED.value: frozenset(),
    BookingStatus.MISSED.value: frozenset(),
}


def _status_value(status: Any) -> str:
    return status.value if isinstance(status, BookingStatus) else str(status)


class Booking(Base):
    """Scheduled session between a student and an instructor."""

    __tablename__ = "bookings"

    # Primary key
    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    # Core references
    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False, index=True)
    student_id = Column(String(26), nullable=False, index=True)
    instructor_id = Column(String(26), nullable=False, index=True)

    # Self-contained timing
    start_at = Column(UTCDateTime, nullable=False, index=True)
    end_at = Column(UTCDateTime, nullable=False)
    duration_hours = Column(Float, nullable=False)
    kind = Column(String(20), nullable=False, default=BookingKind.FULL_COURSE.value)

    status = Column(String(20), nullable=False, default=BookingStatus.SCHEDULED.value, index=True)
    notes = Column(Text, nullable=True)

    # Credits
    credits_spent = Column(Integer, nullable=False)
    refunded = Column(Boolean, nullable=False, default=False)
    refund_amount = Column(Integer, nullable=False, default=0)

    # Attendance
    student_joined = Column(Boolean, nullable=False, default=False)
    instructor_joined = Column(Boolean, nullable=False, default=False)
    student_joined_at = Column(UTCDateTime, nullable=True)
    instructor_joined_at = Column(UTCDateTime, nullable=True)

    # Cancellation tracking
    cancelled_by_id = Column(String(26), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)

    completed_at = Column(UTCDateTime, nullable=True)
    missed_at = Column(UTCDateTime, nullable=True)

    # Session room, filled in after creation when provisioning succeeds
    room_join_url_instructor = Column(String(512), nullable=True)
    room_join_url_student = Column(String(512), nullable=True)

    # Timestamps
    created_at = Column(UTCDateTime, nullable=False, default=now_utc)
    updated_at = Column(UTCDateTime, nullable=True, onupdate=now_utc)

    course = relationship("Course")
    reminders = relationship(
        "BookingReminder", back_populates="booking", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('scheduled', 'in_progress', 'completed', 'cancelled', 'missed')",
            name="ck_bookings_status",
        ),
        CheckConstraint("kind IN ('full_course', 'single_session')", name="ck_bookings_kind"),
        CheckConstraint(
            "duration_hours >= 0.5 AND duration_hours <= 4", name="check_duration_range"
        ),
        CheckConstraint("credits_spent >= 1", name="check_credits_spent_positive"),
        CheckConstraint("refund_amount >= 0", name="check_refund_non_negative"),
        CheckConstraint("start_at < end_at", name="check_time_order"),
        Index("ix_booking_instructor_status_start", "instructor_id", "status", "start_at"),
        Index("ix_booking_student_status_start", "student_id", "status", "start_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Booking {self.id}: student={self.student_id}, "
            f"instructor={self.instructor_id}, start={self.start_at}, "
            f"duration={self.duration_hours}h, status={self.status}>"
        )

    @staticmethod
    def end_for(start_at: datetime, duration_hours: float) -> datetime:
        return start_at + timedelta(hours=duration_hours)

    # State machine

    def can_transition_to(self, target: Any) -> bool:
        return _status_value(target) in ALLOWED_TRANSITIONS.get(self.status, frozenset())

    def _transition(self, target: BookingStatus, action: str) -> None:
        if not self.can_transition_to(target):
            raise InvalidStateException(current_status=self.status, action=action)
        self.status = target.value

    def cancel(
        self,
        cancelled_by_user_id: str,
        refund_amount: int,
        reason: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> None:
        """Cancel this booking and record the refund decision."""
        self._transition(BookingStatus.CANCELLED, "cancel")
        self.cancelled_at = at or now_utc()
        self.cancelled_by_id = cancelled_by_user_id
        self.cancellation_reason = reason
        self.refunded = refund_amount > 0
        self.refund_amount = refund_amount
        logger.info(f"Booking {self.id} cancelled by user {cancelled_by_user_id}")

    def complete(self, at: Optional[datetime] = None) -> None:
        """Mark booking as completed."""
        self._transition(BookingStatus.COMPLETED, "complete")
        self.completed_at = at or now_utc()
        logger.info(f"Booking {self.id} marked as completed")

    def mark_joined(self, user_id: str, at: Optional[datetime] = None) -> bool:
        """
        Record that a participant joined.

        Returns True when this call moved the booking to in_progress.
        """
        if self.status not in ACTIVE_STATUSES:
            raise InvalidStateException(current_status=self.status, action="mark attendance for")
        joined_at = at or now_utc()
        if user_id == self.student_id and not self.student_joined:
            self.student_joined = True
            self.student_joined_at = joined_at
        if user_id == self.instructor_id and not self.instructor_joined:
            self.instructor_joined = True
            self.instructor_joined_at = joined_at

        if (
            self.student_joined
            and self.instructor_joined
            and self.status == BookingStatus.SCHEDULED.value
        ):
            self.status = BookingStatus.IN_PROGRESS.value
            return True
        return False

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.student_id, self.instructor_id)

    def hours_until_start(self, now: datetime) -> float:
        return (self.start_at - now).total_seconds() / 3600

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "course_id": self.course_id,
            "student_id": self.student_id,
            "instructor_id": self.instructor_id,
            "start_at": self.start_at.isoformat() if self.start_at else None,
            "end_at": self.end_at.isoformat() if self.end_at else None,
            "duration_hours": self.duration_hours,
            "kind": self.kind,
            "status": self.status,
            "notes": self.notes,
            "credits_spent": self.credits_spent,
            "refund": {"refunded": bool(self.refunded), "amount": self.refund_amount or 0},
            "attendance": {
                "student_joined": bool(self.student_joined),
                "instructor_joined": bool(self.instructor_joined),
                "student_joined_at": (
                    self.student_joined_at.isoformat() if self.student_joined_at else None
                ),
                "instructor_joined_at": (
                    self.instructor_joined_at.isoformat() if self.instructor_joined_at else None
                ),
            },
            "cancellation": {
                "by": self.cancelled_by_id,
                "reason": self.cancellation_reason,
                "at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            },
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "room_join_url_instructor": self.room_join_url_instructor,
            "room_join_url_student": self.room_join_url_student,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ReminderType(str, Enum):
    UPCOMING_SESSION = "upcoming_session"


class BookingReminder(Base):
    """One sent (or claimed) reminder per recipient per booking."""

    __tablename__ = "booking_reminders"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(
        String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    recipient_id = Column(String(26), nullable=False)
    reminder_type = Column(
        String(32), nullable=False, default=ReminderType.UPCOMING_SESSION.value
    )
    sent_at = Column(UTCDateTime, nullable=False, default=now_utc)

    booking = relationship("Booking", back_populates="reminders")

    __table_args__ = (
        UniqueConstraint(
            "booking_id", "recipient_id", "reminder_type", name="uq_booking_reminder_recipient"
        ),
    )

    def __repr__(self) -> str:
        return f"<BookingReminder booking={self.booking_id} recipient={self.recipient_id}>"
