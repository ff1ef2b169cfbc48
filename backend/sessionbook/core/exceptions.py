# backend/sessionbook/core/exceptions.py
"""
Domain-specific exceptions for the session booking engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately by the application layer.
Validation and business-rule errors are never retried automatically.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Convert to an HTTPException carrying code and details."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised for malformed times/dates or non-chronological ranges."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a course, booking or profile is absent."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


# Specific business exceptions


class BookingConflictException(ConflictException):
    """Raised when a booking conflicts with existing bookings."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot conflicts with an existing booking",
            code="BOOKING_CONFLICT",
            details=details or {},
        )


class SlotUnavailableException(BookingConflictException):
    """Raised when the requested interval overlaps an active booking."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message or "This time slot is not available", details=details)
        self.code = "SLOT_UNAVAILABLE"


class BookingInProgressException(ConflictException):
    """Raised when another request holds the booking critical section for too long."""

    def __init__(self, keys: list[str], waited_seconds: float):
        super().__init__(
            message="Another booking request is in progress, please retry",
            code="BOOKING_IN_PROGRESS",
            details={"keys": keys, "waited_seconds": round(waited_seconds, 3)},
        )


class InsufficientCreditsException(BusinessRuleException):
    """Raised when a student's balance cannot cover the booking."""

    def __init__(self, required: int, available: Optional[int] = None):
        message = f"Insufficient credits. Required: {required}"
        if available is not None:
            message += f", available: {available}"
        super().__init__(
            message=message,
            code="INSUFFICIENT_CREDITS",
            details={"required": required, "available": available},
        )


class LeadTimeViolationException(BusinessRuleException):
    """Raised when booking doesn't meet minimum advance notice."""

    def __init__(self, required_hours: int, provided_hours: float):
        super().__init__(
            message=f"Bookings must be made at least {required_hours} hours in advance",
            code="LEAD_TIME_VIOLATION",
            details={
                "required_hours": required_hours,
                "provided_hours": round(provided_hours, 2),
            },
        )


class BookingHorizonException(BusinessRuleException):
    """Raised when a session starts beyond the instructor's booking horizon."""

    def __init__(self, max_advance_days: int, latest_start: str):
        super().__init__(
            message=f"Bookings can be made at most {max_advance_days} days in advance",
            code="BOOKING_HORIZON_EXCEEDED",
            details={"max_advance_days": max_advance_days, "latest_start": latest_start},
        )


class DailyLimitExceededException(BusinessRuleException):
    """Raised when a student already holds the maximum bookings for a day."""

    def __init__(self, limit: int, day: str):
        super().__init__(
            message=f"You have reached the limit of {limit} sessions per day",
            code="DAILY_LIMIT_EXCEEDED",
            details={"limit": limit, "day": day},
        )


class PermissionDeniedException(ForbiddenException):
    """Raised when the requester is not a permitted party of the booking."""

    def __init__(self, message: str = "You don't have permission to perform this action"):
        super().__init__(message=message, code="PERMISSION_DENIED")


class InvalidStateException(ConflictException):
    """Raised when a transition is attempted from a state that does not allow it."""

    def __init__(self, current_status: str, action: str):
        super().__init__(
            message=f"Cannot {action} a booking with status '{current_status}'",
            code="INVALID_STATE",
            details={"current_status": current_status, "action": action},
        )


class ExternalServiceException(DomainException):
    """Raised when a collaborator (ledger, room provisioning, notifier) fails or times out."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(
        self,
        service: str,
        message: Optional[str] = None,
        *,
        timed_out: bool = False,
    ):
        super().__init__(
            message=message or f"{service} is unavailable",
            code="EXTERNAL_SERVICE_ERROR",
            details={"service": service, "timed_out": timed_out},
        )
        self.service = service
        self.timed_out = timed_out


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
