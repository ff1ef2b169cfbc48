# backend/sessionbook/schemas/__init__.py
"""
Pydantic schemas for the session booking engine.
"""

from .availability import (
    AvailabilityPolicyUpdate,
    AvailabilityProfileResponse,
    AvailabilityProfileUpsert,
    DateOverrideCreate,
    DateOverrideResponse,
    RecurringRuleCreate,
    RecurringRuleResponse,
    SlotResponse,
)
from .base import StandardizedModel, StrictRequestModel, parse_request
from .booking import (
    BookingCancel,
    BookingCreate,
    BookingListFilters,
    BookingResponse,
    CalendarResponse,
    CalendarSummary,
    CancellationResult,
    PaginatedBookings,
)

__all__ = [
    "AvailabilityPolicyUpdate",
    "AvailabilityProfileResponse",
    "AvailabilityProfileUpsert",
    "BookingCancel",
    "BookingCreate",
    "BookingListFilters",
    "BookingResponse",
    "CalendarResponse",
    "CalendarSummary",
    "CancellationResult",
    "DateOverrideCreate",
    "DateOverrideResponse",
    "PaginatedBookings",
    "RecurringRuleCreate",
    "RecurringRuleResponse",
    "SlotResponse",
    "StandardizedModel",
    "StrictRequestModel",
    "parse_request",
]
