"""
Database models for the session booking engine.

Importing this package registers every table on ``Base.metadata``:
- Availability profiles, recurring rules and date overrides
- Bookings and sent reminders
- Credit accounts and ledger entries
- Catalog read models (courses, enrollments)
"""

from .availability import GENERAL_SCOPE, AvailabilityProfile, DateOverride, RecurringRule
from .booking import (
    ACTIVE_STATUSES,
    Booking,
    BookingKind,
    BookingReminder,
    BookingStatus,
    ReminderType,
)
from .course import Course, CourseStatus, Enrollment, EnrollmentStatus
from .credit import CreditAccount, CreditTransaction, CreditTransactionType

__all__ = [
    "ACTIVE_STATUSES",
    "GENERAL_SCOPE",
    "AvailabilityProfile",
    "Booking",
    "BookingKind",
    "BookingReminder",
    "BookingStatus",
    "Course",
    "CourseStatus",
    "CreditAccount",
    "CreditTransaction",
    "CreditTransactionType",
    "DateOverride",
    "Enrollment",
    "EnrollmentStatus",
    "RecurringRule",
    "ReminderType",
]
