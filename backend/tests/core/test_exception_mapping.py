# backend/tests/core/test_exception_mapping.py
"""Domain exceptions carry stable codes and map onto HTTP errors."""

import pytest

from sessionbook.core.exceptions import (
    BookingInProgressException,
    BusinessRuleException,
    DailyLimitExceededException,
    ExternalServiceException,
    InsufficientCreditsException,
    InvalidStateException,
    LeadTimeViolationException,
    NotFoundException,
    PermissionDeniedException,
    SlotUnavailableException,
    ValidationException,
)


@pytest.mark.parametrize(
    "exc, status_code, code",
    [
        (ValidationException("bad"), 400, "ValidationException"),
        (NotFoundException("gone"), 404, "NotFoundException"),
        (PermissionDeniedException(), 403, "PERMISSION_DENIED"),
        (SlotUnavailableException(), 409, "SLOT_UNAVAILABLE"),
        (InvalidStateException("completed", "cancel"), 409, "INVALID_STATE"),
        (BookingInProgressException(["instructor:1"], 10.0), 409, "BOOKING_IN_PROGRESS"),
        (InsufficientCreditsException(4, 3), 422, "INSUFFICIENT_CREDITS"),
        (LeadTimeViolationException(2, 1.5), 422, "LEAD_TIME_VIOLATION"),
        (DailyLimitExceededException(5, "2030-01-08"), 422, "DAILY_LIMIT_EXCEEDED"),
        (ExternalServiceException("notifier", timed_out=True), 503, "EXTERNAL_SERVICE_ERROR"),
    ],
)
def test_status_and_code(exc, status_code, code):
    http_exc = exc.to_http_exception()

    assert http_exc.status_code == status_code
    assert http_exc.detail["code"] == code
    assert http_exc.detail["message"] == exc.message


def test_business_rule_exception_accepts_custom_code():
    exc = BusinessRuleException("closed", code="COURSE_INACTIVE", details={"course_id": "c1"})

    assert exc.code == "COURSE_INACTIVE"
    assert exc.to_http_exception().detail["details"] == {"course_id": "c1"}


def test_details_are_rounded_and_named():
    lead = LeadTimeViolationException(required_hours=2, provided_hours=1.23456)
    state = InvalidStateException(current_status="missed", action="complete")

    assert lead.details == {"required_hours": 2, "provided_hours": 1.23}
    assert state.message == "Cannot complete a booking with status 'missed'"


def test_external_service_attributes():
    exc = ExternalServiceException("room_provisioning", timed_out=True)

    assert exc.service == "room_provisioning"
    assert exc.timed_out is True
    assert exc.message == "room_provisioning is unavailable"
