"""Domain events emitted by the booking engine."""

from .booking_events import (
    BookingCancelled,
    BookingCompleted,
    BookingCreated,
    BookingMissed,
    BookingReminder,
)

__all__ = [
    "BookingCancelled",
    "BookingCompleted",
    "BookingCreated",
    "BookingMissed",
    "BookingReminder",
]
