# backend/sessionbook/services/booking_service.py
"""
Booking Service for the session booking engine.

Handles all booking-related business logic including:
- Creating bookings against a student's credit balance
- Cancelling with time-based refunds
- Completion and instructor payout
- Attendance marking
- Booking listings, history and calendar views

Creation runs as one synchronous sequence of fallible steps under a single
transaction, serialized per instructor and per student. Room provisioning
and notifications happen after commit and never undo a booking.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
import logging
import math
from typing import Any, Iterable, List, Mapping, Optional, Union

from sqlalchemy.orm import Session
import ulid

from ..core.booking_lock import (
    booking_critical_section,
    booking_key,
    instructor_key,
    student_key,
)
from ..core.config import settings
from ..core.exceptions import (
    BookingHorizonException,
    BusinessRuleException,
    DailyLimitExceededException,
    DomainException,
    InsufficientCreditsException,
    InvalidStateException,
    LeadTimeViolationException,
    NotFoundException,
    PermissionDeniedException,
    ValidationException,
)
from ..core.external_calls import call_with_timeout
from ..core.timezone_utils import Clock, local_day_bounds, to_local_date
from ..events import BookingCancelled, BookingCompleted, BookingCreated
from ..models.booking import (
    ACTIVE_STATUSES,
    HISTORY_STATUSES,
    Booking,
    BookingKind,
    BookingStatus,
)
from ..models.credit import CreditTransactionType
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import (
    BookingCancel,
    BookingCreate,
    BookingListFilters,
    BookingResponse,
    CalendarResponse,
    CalendarSummary,
    CancellationResult,
    PaginatedBookings,
)
from ..schemas.base import parse_request
from .availability_service import AvailabilityService
from .base import BaseService
from .cancellation_policy import CancellationPolicy
from .catalog_service import CatalogService
from .conflict_checker import ConflictChecker
from .credit_service import CreditService
from .notifier import LoggingNotifier
from .ports import CatalogLookup, CourseInfo, CreditLedger, Notifier, RoomProvisioner

logger = logging.getLogger(__name__)

ROOM_SERVICE_NAME = "room_provisioning"
NOTIFIER_SERVICE_NAME = "notifier"


def calculate_credits_needed(
    course: CourseInfo,
    kind: str,
    duration_hours: float,
    fixed_price: Optional[int] = None,
) -> int:
    """
    Credits a booking costs.

    Single sessions cost the caller's fixed price (falling back to the
    course's single-session price); full-course sessions cost
    ``ceil(duration * price_per_hour)``.
    """
    if kind == BookingKind.SINGLE_SESSION.value:
        price = fixed_price if fixed_price is not None else course.single_session_price
        if price is None:
            raise ValidationException(
                "A fixed price is required for single-session bookings",
                details={"course_id": course.id},
            )
        return int(price)

    # Rounded first so float noise (0.7 * 10 = 7.000000000000001) cannot add a credit
    return int(math.ceil(round(duration_hours * course.price_per_hour, 6)))


class BookingService(BaseService):
    """
    Service layer for booking operations.

    Collaborators are injected; anything omitted falls back to the SQL
    catalog and ledger, the logging notifier and no room provisioning.
    """

    def __init__(
        self,
        db: Session,
        catalog: Optional[CatalogLookup] = None,
        ledger: Optional[CreditLedger] = None,
        room_provisioner: Optional[RoomProvisioner] = None,
        notifier: Optional[Notifier] = None,
        cancellation_policy: Optional[CancellationPolicy] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize booking service.

        Args:
            db: Database session
            catalog: Course and enrollment lookup
            ledger: Credit ledger sharing ``db``'s unit of work
            room_provisioner: Optional session-room provisioning
            notifier: Notification dispatch
            cancellation_policy: Refund rules
            clock: Injectable "now"
        """
        super().__init__(db, clock)
        self.repository = RepositoryFactory.create_booking_repository(db)
        self.catalog = catalog or CatalogService(db)
        self.ledger = ledger or CreditService(db)
        self.room_provisioner = room_provisioner
        self.notifier = notifier or LoggingNotifier()
        self.cancellation_policy = cancellation_policy or CancellationPolicy()
        self.conflict_checker = ConflictChecker(db, repository=self.repository)
        self.availability_service = AvailabilityService(db, catalog=self.catalog, clock=self.clock)

    # Creation

    @BaseService.measure_operation("create_booking")
    def create_booking(self, data: Union[BookingCreate, Mapping[str, Any]]) -> Booking:
        """
        Book a session and debit the student.

        Args:
            data: Booking request

        Returns:
            The persisted booking (status scheduled)

        Raises:
            ValidationException: Malformed request or missing price
            NotFoundException: Course does not exist
            BusinessRuleException: Course inactive
            PermissionDeniedException: Full-course booking without enrollment
            InsufficientCreditsException: Balance below the session cost
            LeadTimeViolationException: Start too close to now
            SlotUnavailableException: Instructor already booked
            DailyLimitExceededException: Student's daily cap reached
            BookingInProgressException: Critical section busy
            ExternalServiceException: Credit ledger or booking lock store failure
        """
        kind = BookingKind.FULL_COURSE.value
        try:
            booking_data = parse_request(BookingCreate, data)
            kind = booking_data.kind
            booking = self._create_booking(booking_data)
        except DomainException as exc:
            prometheus_metrics.record_booking(kind, exc.code)
            raise

        prometheus_metrics.record_booking(kind, "created")
        self._post_create_actions(booking)
        return booking

    def _create_booking(self, booking_data: BookingCreate) -> Booking:
        # Short read transaction: no database lock may be held while waiting for the section
        with self.transaction():
            course = self.catalog.get_course(booking_data.course_id)
        if course is None:
            raise NotFoundException(
                "Course not found", details={"course_id": booking_data.course_id}
            )

        keys = [instructor_key(course.instructor_id), student_key(booking_data.student_id)]
        with booking_critical_section(keys):
            with self.transaction():
                booking = self._create_booking_locked(booking_data, course)

        self.log_operation(
            "create_booking",
            booking_id=booking.id,
            student_id=booking.student_id,
            instructor_id=booking.instructor_id,
            credits_spent=booking.credits_spent,
        )
        return booking

    def _create_booking_locked(self, booking_data: BookingCreate, course: CourseInfo) -> Booking:
        now = self.now()
        start_at = booking_data.start_at
        end_at = Booking.end_for(start_at, booking_data.duration_hours)

        # 1-2. Course and enrollment
        self._validate_course_access(booking_data, course)

        # 3-4. Price and balance
        credits_needed = calculate_credits_needed(
            course, booking_data.kind, booking_data.duration_hours, booking_data.fixed_price
        )
        balance = self.ledger.get_balance(booking_data.student_id)
        if balance < credits_needed:
            raise InsufficientCreditsException(required=credits_needed, available=balance)

        # 5. Lead time and horizon from the profile governing this course
        profile = self.availability_service.resolve_booking_profile(course.instructor_id, course.id)
        self._validate_lead_time(start_at, now, profile.min_advance_booking_hours)
        self._validate_horizon(start_at, now, profile)

        # 6. Instructor conflicts, serialized per instructor in the database
        self.repository.lock_instructor_schedule(course.instructor_id)
        self.conflict_checker.ensure_available(course.instructor_id, start_at, end_at)

        # 7. Per-student daily cap
        self._validate_daily_limit(booking_data.student_id, start_at)

        # 8-9. Debit and persist together
        booking_id = str(ulid.ULID())
        self.ledger.debit(
            booking_data.student_id,
            credits_needed,
            memo=f"Session booking {booking_id}",
            booking_id=booking_id,
        )
        return self.repository.create(
            id=booking_id,
            course_id=course.id,
            student_id=booking_data.student_id,
            instructor_id=course.instructor_id,
            start_at=start_at,
            end_at=end_at,
            duration_hours=booking_data.duration_hours,
            kind=booking_data.kind,
            status=BookingStatus.SCHEDULED.value,
            notes=booking_data.notes,
            credits_spent=credits_needed,
            created_at=now,
        )

    def _validate_course_access(self, booking_data: BookingCreate, course: CourseInfo) -> None:
        if not course.is_active:
            raise BusinessRuleException(
                "This course is not accepting bookings",
                code="COURSE_INACTIVE",
                details={"course_id": course.id, "status": course.status},
            )
        if booking_data.student_id == course.instructor_id:
            raise ValidationException("Instructors cannot book their own course")
        if booking_data.kind == BookingKind.FULL_COURSE.value and not self.catalog.is_enrolled(
            booking_data.student_id, course.id
        ):
            raise PermissionDeniedException("An active enrollment is required to book this course")

    @staticmethod
    def _validate_lead_time(start_at: datetime, now: datetime, min_advance_hours: int) -> None:
        provided_hours = (start_at - now).total_seconds() / 3600
        if provided_hours <= 0 or provided_hours < min_advance_hours:
            raise LeadTimeViolationException(
                required_hours=min_advance_hours, provided_hours=provided_hours
            )

    @staticmethod
    def _validate_horizon(start_at: datetime, now: datetime, profile: Any) -> None:
        # Day-granular, matching the last day slot generation offers
        horizon_end = now + timedelta(days=profile.max_advance_booking_days)
        last_day = to_local_date(horizon_end, profile.timezone)
        if to_local_date(start_at, profile.timezone) > last_day:
            raise BookingHorizonException(
                max_advance_days=profile.max_advance_booking_days,
                latest_start=last_day.isoformat(),
            )

    def _validate_daily_limit(self, student_id: str, start_at: datetime) -> None:
        day = to_local_date(start_at, settings.booking_day_timezone)
        day_start, day_end = local_day_bounds(day, settings.booking_day_timezone)
        count = self.repository.count_student_active_between(student_id, day_start, day_end)
        if count >= settings.max_bookings_per_day:
            raise DailyLimitExceededException(
                limit=settings.max_bookings_per_day, day=day.isoformat()
            )

    def _post_create_actions(self, booking: Booking) -> None:
        """Best-effort room provisioning and notifications; failures are logged."""
        if self.room_provisioner is not None:
            try:
                links = call_with_timeout(
                    ROOM_SERVICE_NAME,
                    self.room_provisioner.create_room,
                    booking.id,
                    booking.instructor_id,
                    booking.student_id,
                )
                with self.transaction():
                    booking.room_join_url_instructor = links.join_url_instructor
                    booking.room_join_url_student = links.join_url_student
            except DomainException as exc:
                self.logger.warning(
                    f"Room provisioning failed for booking {booking.id}: {exc.message}",
                    extra={"booking_id": booking.id, "error_code": exc.code},
                )

        for recipient_id, join_url in (
            (booking.student_id, booking.room_join_url_student),
            (booking.instructor_id, booking.room_join_url_instructor),
        ):
            event = BookingCreated(
                booking_id=booking.id,
                course_id=booking.course_id,
                student_id=booking.student_id,
                instructor_id=booking.instructor_id,
                start_at=booking.start_at,
                duration_hours=booking.duration_hours,
                credits_spent=booking.credits_spent,
                room_join_url=join_url,
            )
            self._notify(recipient_id, event.kind, event.to_dict())

    def _notify(self, user_id: str, kind: str, payload: dict) -> bool:
        try:
            call_with_timeout(NOTIFIER_SERVICE_NAME, self.notifier.notify, user_id, kind, payload)
            return True
        except DomainException as exc:
            self.logger.warning(
                f"Notification {kind} to {user_id} failed: {exc.message}",
                extra={"user_id": user_id, "notification_kind": kind},
            )
            return False

    # Lifecycle

    def _get_booking_or_404(self, booking_id: str, for_update: bool = False) -> Booking:
        booking = self.repository.get_booking(booking_id, for_update=for_update)
        if booking is None:
            raise NotFoundException("Booking not found", details={"booking_id": booking_id})
        return booking

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self,
        booking_id: str,
        requester_id: str,
        reason: Optional[str] = None,
    ) -> CancellationResult:
        """
        Cancel a booking and refund the student per the cancellation policy.

        Cancelling an already-cancelled booking is a no-op that reports the
        original refund and moves no credits.

        Raises:
            NotFoundException: If booking not found
            PermissionDeniedException: Requester is neither student nor instructor
            InvalidStateException: Booking is completed or missed
        """
        cancel_data = parse_request(BookingCancel, {"reason": reason})

        with booking_critical_section([booking_key(booking_id)]):
            with self.transaction():
                booking = self._get_booking_or_404(booking_id, for_update=True)
                if not booking.is_participant(requester_id):
                    raise PermissionDeniedException(
                        "You don't have permission to cancel this booking"
                    )

                if booking.status == BookingStatus.CANCELLED.value:
                    self.logger.info(f"Booking {booking_id} already cancelled; nothing to do")
                    return CancellationResult(
                        booking=BookingResponse.model_validate(booking),
                        refund_amount=booking.refund_amount or 0,
                        refund_percent=None,
                        already_cancelled=True,
                    )

                now = self.now()
                by_instructor = requester_id == booking.instructor_id
                decision = self.cancellation_policy.evaluate(
                    booking.hours_until_start(now), by_instructor, booking.credits_spent
                )
                booking.cancel(requester_id, decision.amount, cancel_data.reason, at=now)

                if decision.amount > 0:
                    self.ledger.credit(
                        booking.student_id,
                        decision.amount,
                        memo=f"Refund for cancelled booking {booking.id}",
                        booking_id=booking.id,
                        transaction_type=CreditTransactionType.CANCELLATION_REFUND.value,
                    )
                self.repository.flush()

        initiator = "instructor" if by_instructor else "student"
        prometheus_metrics.record_transition(BookingStatus.CANCELLED.value)
        prometheus_metrics.inc_credits_refunded(decision.amount, initiator)
        self.log_operation(
            "cancel_booking",
            booking_id=booking.id,
            cancelled_by=initiator,
            refund_amount=decision.amount,
            refund_percent=decision.percent,
        )

        event = BookingCancelled(
            booking_id=booking.id,
            cancelled_by=initiator,
            cancelled_at=booking.cancelled_at,
            refund_amount=decision.amount,
            reason=booking.cancellation_reason,
        )
        other_party = booking.student_id if by_instructor else booking.instructor_id
        self._notify(other_party, event.kind, event.to_dict())

        return CancellationResult(
            booking=BookingResponse.model_validate(booking),
            refund_amount=decision.amount,
            refund_percent=decision.percent,
        )

    @BaseService.measure_operation("complete_booking")
    def complete_booking(self, booking_id: str, requester_id: str) -> Booking:
        """
        Mark a session completed and pay its credits to the instructor.

        Raises:
            NotFoundException: If booking not found
            PermissionDeniedException: Requester is not the instructor
            InvalidStateException: Booking is not scheduled or in progress
        """
        with booking_critical_section([booking_key(booking_id)]):
            with self.transaction():
                booking = self._get_booking_or_404(booking_id, for_update=True)
                if requester_id != booking.instructor_id:
                    raise PermissionDeniedException(
                        "Only the instructor can mark a session as completed"
                    )

                booking.complete(at=self.now())
                self.ledger.credit(
                    booking.instructor_id,
                    booking.credits_spent,
                    memo=f"Payout for completed booking {booking.id}",
                    booking_id=booking.id,
                    transaction_type=CreditTransactionType.SESSION_PAYOUT.value,
                )
                self.repository.flush()

        prometheus_metrics.record_transition(BookingStatus.COMPLETED.value)
        self.log_operation(
            "complete_booking", booking_id=booking.id, credits_transferred=booking.credits_spent
        )

        event = BookingCompleted(
            booking_id=booking.id,
            completed_at=booking.completed_at,
            credits_transferred=booking.credits_spent,
        )
        self._notify(booking.student_id, event.kind, event.to_dict())
        return booking

    @BaseService.measure_operation("mark_attendance")
    def mark_attendance(self, booking_id: str, user_id: str) -> Booking:
        """
        Record that a participant joined the session.

        When both student and instructor have joined, a scheduled booking
        moves to in_progress.

        Raises:
            NotFoundException: If booking not found
            PermissionDeniedException: User is not a participant
            InvalidStateException: Booking is already terminal
        """
        with booking_critical_section([booking_key(booking_id)]):
            with self.transaction():
                booking = self._get_booking_or_404(booking_id, for_update=True)
                if not booking.is_participant(user_id):
                    raise PermissionDeniedException(
                        "Only participants can mark attendance for this booking"
                    )
                started = booking.mark_joined(user_id, at=self.now())
                self.repository.flush()

        if started:
            prometheus_metrics.record_transition(BookingStatus.IN_PROGRESS.value)
            self.log_operation("session_started", booking_id=booking.id)
        return booking

    # Queries

    @BaseService.measure_operation("get_booking_for_user")
    def get_booking_for_user(self, booking_id: str, user_id: str) -> Booking:
        """
        Raises:
            NotFoundException: If booking not found
            PermissionDeniedException: User is not a participant
        """
        booking = self._get_booking_or_404(booking_id)
        if not booking.is_participant(user_id):
            raise PermissionDeniedException("You don't have permission to view this booking")
        return booking

    def _paginate(
        self,
        user_id: str,
        *,
        page: int,
        limit: int,
        statuses: Optional[Iterable[str]] = None,
        course_id: Optional[str] = None,
        start_from: Optional[datetime] = None,
        start_until: Optional[datetime] = None,
        newest_first: bool = False,
    ) -> PaginatedBookings:
        bookings, total = self.repository.get_bookings_for_user(
            user_id,
            statuses=statuses,
            course_id=course_id,
            start_from=start_from,
            start_until=start_until,
            newest_first=newest_first,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return PaginatedBookings(
            items=[BookingResponse.model_validate(b) for b in bookings],
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    @BaseService.measure_operation("get_bookings_for_user")
    def get_bookings_for_user(
        self,
        user_id: str,
        filters: Union[BookingListFilters, Mapping[str, Any], None] = None,
    ) -> PaginatedBookings:
        """Bookings where the user is student or instructor, soonest first."""
        criteria = parse_request(BookingListFilters, filters or {})
        tz_name = settings.booking_day_timezone

        start_from = local_day_bounds(criteria.date_from, tz_name)[0] if criteria.date_from else None
        start_until = local_day_bounds(criteria.date_to, tz_name)[1] if criteria.date_to else None

        return self._paginate(
            user_id,
            page=criteria.page,
            limit=criteria.limit,
            statuses=[criteria.status] if criteria.status else None,
            course_id=criteria.course_id,
            start_from=start_from,
            start_until=start_until,
        )

    @BaseService.measure_operation("get_upcoming_bookings")
    def get_upcoming_bookings(self, user_id: str, limit: int = 10) -> List[Booking]:
        if limit < 1:
            raise ValidationException("limit must be at least 1")
        bookings, _ = self.repository.get_bookings_for_user(
            user_id,
            statuses=[BookingStatus.SCHEDULED.value],
            start_from=self.now(),
            limit=limit,
        )
        return bookings

    @BaseService.measure_operation("get_booking_history")
    def get_booking_history(self, user_id: str, page: int = 1, limit: int = 20) -> PaginatedBookings:
        """Completed, cancelled and missed bookings, newest first."""
        criteria = parse_request(BookingListFilters, {"page": page, "limit": limit})
        return self._paginate(
            user_id,
            page=criteria.page,
            limit=criteria.limit,
            statuses=sorted(HISTORY_STATUSES),
            newest_first=True,
        )

    @BaseService.measure_operation("get_user_calendar")
    def get_user_calendar(self, user_id: str, month: int, year: int) -> CalendarResponse:
        """
        All of a user's bookings starting in a calendar month, with counts.

        The month is read in ``booking_day_timezone``.
        """
        if not 1 <= month <= 12:
            raise ValidationException("month must be between 1 and 12", details={"month": month})
        if not 1970 <= year <= 9998:
            raise ValidationException("year is out of range", details={"year": year})

        tz_name = settings.booking_day_timezone
        first_day = date(year, month, 1)
        next_month = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
        month_start = local_day_bounds(first_day, tz_name)[0]
        month_end = local_day_bounds(next_month, tz_name)[0]

        bookings, _ = self.repository.get_bookings_for_user(
            user_id, start_from=month_start, start_until=month_end
        )
        now = self.now()
        summary = CalendarSummary(
            total=len(bookings),
            completed=sum(1 for b in bookings if b.status == BookingStatus.COMPLETED.value),
            upcoming=sum(
                1 for b in bookings if b.status in ACTIVE_STATUSES and b.start_at >= now
            ),
            cancelled=sum(1 for b in bookings if b.status == BookingStatus.CANCELLED.value),
        )
        return CalendarResponse(
            month=month,
            year=year,
            events=[BookingResponse.model_validate(b) for b in bookings],
            summary=summary,
        )
