# backend/tests/services/test_booking_creation.py
"""
Booking creation: pricing, every rejection rule, atomicity of the debit and
the booking write, and best-effort side effects.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from sessionbook.core.config import settings
from sessionbook.core.exceptions import (
    BookingHorizonException,
    BusinessRuleException,
    DailyLimitExceededException,
    ExternalServiceException,
    InsufficientCreditsException,
    LeadTimeViolationException,
    NotFoundException,
    PermissionDeniedException,
    RepositoryException,
    SlotUnavailableException,
    ValidationException,
)
from sessionbook.models import Booking, BookingStatus, CourseStatus, CreditTransaction
from sessionbook.monitoring.prometheus_metrics import prometheus_metrics
from sessionbook.repositories.booking_repository import BookingRepository
from sessionbook.services.availability_service import AvailabilityService
from sessionbook.services.booking_service import BookingService, calculate_credits_needed
from sessionbook.services.conflict_checker import ConflictChecker
from sessionbook.services.credit_service import CreditService
from sessionbook.services.ports import CourseInfo
from tests.support import FIXED_NOW, FailingNotifier, FakeRoomProvisioner, balance_of, fund

START = FIXED_NOW + timedelta(hours=48)


def request(course, student_id, start_at=START, duration_hours=1.5, **extra):
    data = {
        "course_id": course.id,
        "student_id": student_id,
        "start_at": start_at,
        "duration_hours": duration_hours,
    }
    data.update(extra)
    return data


def booking_count(db) -> int:
    return db.query(Booking).count()


class TestCalculateCreditsNeeded:
    course = CourseInfo(
        id="c1", instructor_id="i1", price_per_hour=2, status="active", single_session_price=3
    )

    @pytest.mark.parametrize(
        "duration, expected", [(0.5, 1), (1.0, 2), (1.5, 3), (2.0, 4), (4.0, 8)]
    )
    def test_full_course_price(self, duration, expected):
        assert calculate_credits_needed(self.course, "full_course", duration) == expected

    def test_fractional_cost_rounds_up(self):
        course = CourseInfo(id="c", instructor_id="i", price_per_hour=3, status="active")

        assert calculate_credits_needed(course, "full_course", 0.5) == 2

    def test_float_noise_does_not_add_a_credit(self):
        course = CourseInfo(id="c", instructor_id="i", price_per_hour=10, status="active")

        assert calculate_credits_needed(course, "full_course", 0.7) == 7

    def test_single_session_uses_fixed_price_then_course_price(self):
        assert calculate_credits_needed(self.course, "single_session", 2.0, fixed_price=5) == 5
        assert calculate_credits_needed(self.course, "single_session", 2.0) == 3

    def test_single_session_without_any_price_raises(self):
        course = CourseInfo(id="c", instructor_id="i", price_per_hour=2, status="active")

        with pytest.raises(ValidationException):
            calculate_credits_needed(course, "single_session", 1.0)


class TestCreateBookingSuccess:
    def test_books_and_debits(self, booking_service, db, course, funded_student, instructor_id):
        booking = booking_service.create_booking(request(course, funded_student))

        assert booking.status == BookingStatus.SCHEDULED.value
        assert booking.instructor_id == instructor_id
        assert booking.credits_spent == 3
        assert booking.start_at == START
        assert booking.end_at == START + timedelta(hours=1.5)
        assert booking.created_at == FIXED_NOW
        assert balance_of(db, funded_student) == 17

        debit = db.query(CreditTransaction).filter_by(booking_id=booking.id).one()
        assert debit.amount == -3
        assert debit.transaction_type == "booking_debit"

    def test_room_links_and_notifications(
        self, booking_service, course, funded_student, instructor_id, notifier, room_provisioner
    ):
        booking = booking_service.create_booking(request(course, funded_student))

        assert room_provisioner.calls == [(booking.id, instructor_id, funded_student)]
        assert booking.room_join_url_student.endswith("?role=guest")
        assert booking.room_join_url_instructor.endswith("?role=host")

        assert notifier.kinds_for(funded_student) == ["booking_created"]
        assert notifier.kinds_for(instructor_id) == ["booking_created"]
        payloads = {user: payload for user, _, payload in notifier.sent}
        assert payloads[funded_student]["room_join_url"] == booking.room_join_url_student
        assert payloads[instructor_id]["room_join_url"] == booking.room_join_url_instructor
        assert payloads[funded_student]["start_at"] == START.isoformat()

    def test_default_kind_is_stored_as_plain_value(self, booking_service, course, funded_student):
        with patch.object(prometheus_metrics, "record_booking") as record:
            booking = booking_service.create_booking(request(course, funded_student))

        assert type(booking.kind) is str
        assert booking.kind == "full_course"
        record.assert_called_once_with("full_course", "created")

    def test_exact_lead_time_boundary_is_allowed(self, booking_service, course, funded_student):
        booking = booking_service.create_booking(
            request(course, funded_student, start_at=FIXED_NOW + timedelta(hours=2))
        )

        assert booking.status == BookingStatus.SCHEDULED.value

    def test_naive_start_is_read_as_utc(self, booking_service, course, funded_student):
        naive = START.replace(tzinfo=None)

        booking = booking_service.create_booking(request(course, funded_student, start_at=naive))

        assert booking.start_at == START

    def test_touching_bookings_are_allowed(
        self, booking_service, booking_factory, course, funded_student
    ):
        booking_factory(start_at=START - timedelta(hours=1), duration_hours=1.0)
        booking_factory(start_at=START + timedelta(hours=1.5), duration_hours=1.0)

        booking = booking_service.create_booking(request(course, funded_student))

        assert booking.id is not None

    def test_single_session_needs_no_enrollment(
        self, booking_service, db, course, other_user_id
    ):
        fund(db, other_user_id, 10)

        booking = booking_service.create_booking(
            request(course, other_user_id, kind="single_session", duration_hours=2.0)
        )

        assert booking.kind == "single_session"
        assert booking.credits_spent == 3
        assert balance_of(db, other_user_id) == 7

    def test_single_session_fixed_price(self, booking_service, db, course, other_user_id):
        fund(db, other_user_id, 10)

        booking = booking_service.create_booking(
            request(course, other_user_id, kind="single_session", fixed_price=6)
        )

        assert booking.credits_spent == 6
        assert balance_of(db, other_user_id) == 4


class TestCreateBookingRejections:
    def test_insufficient_credits(self, booking_service, db, course, enrollment, student_id):
        fund(db, student_id, 3)

        with pytest.raises(InsufficientCreditsException) as exc_info:
            booking_service.create_booking(request(course, student_id, duration_hours=2.0))

        assert exc_info.value.details == {"required": 4, "available": 3}
        assert booking_count(db) == 0
        assert balance_of(db, student_id) == 3
        assert db.query(CreditTransaction).count() == 0

    def test_balance_is_checked_before_lead_time(
        self, booking_service, db, course, enrollment, student_id
    ):
        fund(db, student_id, 1)

        with pytest.raises(InsufficientCreditsException):
            booking_service.create_booking(
                request(course, student_id, start_at=FIXED_NOW + timedelta(minutes=5))
            )

    @pytest.mark.parametrize(
        "offset", [timedelta(hours=1, minutes=59), timedelta(0), timedelta(hours=-3)]
    )
    def test_lead_time_violation(self, booking_service, db, course, funded_student, offset):
        with pytest.raises(LeadTimeViolationException) as exc_info:
            booking_service.create_booking(
                request(course, funded_student, start_at=FIXED_NOW + offset)
            )

        assert exc_info.value.details["required_hours"] == 2
        assert balance_of(db, funded_student) == 20

    def test_course_profile_lead_time_applies(
        self, booking_service, db, fixed_clock, course, funded_student, instructor_id
    ):
        AvailabilityService(db, clock=fixed_clock).upsert_profile(
            instructor_id, {"min_advance_booking_hours": 24}, course_id=course.id
        )

        with pytest.raises(LeadTimeViolationException):
            booking_service.create_booking(
                request(course, funded_student, start_at=FIXED_NOW + timedelta(hours=10))
            )

    def test_start_beyond_horizon(self, booking_service, db, course, funded_student):
        with pytest.raises(BookingHorizonException) as exc_info:
            booking_service.create_booking(
                request(course, funded_student, start_at=FIXED_NOW + timedelta(days=360))
            )

        assert exc_info.value.details["max_advance_days"] == 60
        assert booking_count(db) == 0
        assert balance_of(db, funded_student) == 20

    def test_last_horizon_day_is_bookable(self, booking_service, course, funded_student):
        booking = booking_service.create_booking(
            request(course, funded_student, start_at=FIXED_NOW + timedelta(days=60))
        )

        assert booking.status == BookingStatus.SCHEDULED.value

    def test_course_profile_horizon_applies(
        self, booking_service, db, fixed_clock, course, funded_student, instructor_id
    ):
        AvailabilityService(db, clock=fixed_clock).upsert_profile(
            instructor_id, {"max_advance_booking_days": 7}, course_id=course.id
        )

        with pytest.raises(BookingHorizonException):
            booking_service.create_booking(
                request(course, funded_student, start_at=FIXED_NOW + timedelta(days=10))
            )

    def test_overlap_with_instructor_booking(
        self, booking_service, booking_factory, db, course, funded_student, other_user_id
    ):
        booking_factory(start_at=START + timedelta(minutes=30), student=other_user_id)

        with pytest.raises(SlotUnavailableException):
            booking_service.create_booking(request(course, funded_student))

        assert booking_count(db) == 1
        assert balance_of(db, funded_student) == 20

    def test_cancelled_booking_does_not_block(
        self, booking_service, booking_factory, course, funded_student
    ):
        booking_factory(start_at=START, status=BookingStatus.CANCELLED.value)

        assert booking_service.create_booking(request(course, funded_student)).id

    def test_daily_cap(
        self, booking_service, booking_factory, db, course, funded_student, monkeypatch
    ):
        monkeypatch.setattr(settings, "max_bookings_per_day", 2)
        day = datetime(2030, 1, 8, 6, 0, tzinfo=timezone.utc)
        booking_factory(start_at=day)
        booking_factory(start_at=day + timedelta(hours=3))
        booking_factory(start_at=day + timedelta(hours=5), status=BookingStatus.CANCELLED.value)

        with pytest.raises(DailyLimitExceededException) as exc_info:
            booking_service.create_booking(
                request(course, funded_student, start_at=day + timedelta(hours=8))
            )

        assert exc_info.value.details == {"limit": 2, "day": "2030-01-08"}
        # A different day is fine
        assert booking_service.create_booking(
            request(course, funded_student, start_at=day + timedelta(days=1))
        ).id

    def test_full_course_requires_enrollment(self, booking_service, db, course, other_user_id):
        fund(db, other_user_id, 20)

        with pytest.raises(PermissionDeniedException):
            booking_service.create_booking(request(course, other_user_id))

    def test_inactive_course(self, booking_service, db, course, funded_student):
        course.status = CourseStatus.DRAFT.value
        db.commit()

        with pytest.raises(BusinessRuleException) as exc_info:
            booking_service.create_booking(request(course, funded_student))

        assert exc_info.value.code == "COURSE_INACTIVE"

    def test_unknown_course(self, booking_service, funded_student):
        with pytest.raises(NotFoundException):
            booking_service.create_booking(
                {
                    "course_id": "01NOTAREALCOURSE0000000000",
                    "student_id": funded_student,
                    "start_at": START,
                }
            )

    def test_instructor_cannot_book_own_course(
        self, booking_service, db, course, instructor_id
    ):
        fund(db, instructor_id, 20)

        with pytest.raises(ValidationException):
            booking_service.create_booking(
                request(course, instructor_id, kind="single_session")
            )

    def test_single_session_without_price(self, booking_service, db, course, other_user_id):
        course.single_session_price = None
        db.commit()
        fund(db, other_user_id, 20)

        with pytest.raises(ValidationException):
            booking_service.create_booking(request(course, other_user_id, kind="single_session"))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"duration_hours": 0.25},
            {"duration_hours": 4.5},
            {"kind": "group"},
            {"fixed_price": 5},
            {"fixed_price": 0, "kind": "single_session"},
            {"notes": "x" * 1001},
            {"surprise": True},
        ],
    )
    def test_invalid_request(self, booking_service, db, course, funded_student, overrides):
        with pytest.raises(ValidationException):
            booking_service.create_booking(request(course, funded_student, **overrides))

        assert booking_count(db) == 0


class TestCreateBookingAtomicity:
    def test_ledger_failure_leaves_nothing(self, booking_service, db, course, funded_student):
        with patch.object(
            CreditService,
            "debit",
            side_effect=ExternalServiceException("credit_ledger", "ledger down"),
        ):
            with pytest.raises(ExternalServiceException):
                booking_service.create_booking(request(course, funded_student))

        assert booking_count(db) == 0
        assert balance_of(db, funded_student) == 20

    def test_failed_booking_write_rolls_back_debit(
        self, booking_service, db, course, funded_student
    ):
        with patch.object(
            BookingRepository, "create", side_effect=RepositoryException("disk full")
        ):
            with pytest.raises(RepositoryException):
                booking_service.create_booking(request(course, funded_student))

        assert booking_count(db) == 0
        assert balance_of(db, funded_student) == 20
        assert db.query(CreditTransaction).count() == 0

    def test_room_failure_keeps_booking(
        self, db, fixed_clock, notifier, course, funded_student, instructor_id
    ):
        service = BookingService(
            db,
            room_provisioner=FakeRoomProvisioner(fail=True),
            notifier=notifier,
            clock=fixed_clock,
        )

        booking = service.create_booking(request(course, funded_student))

        assert booking_count(db) == 1
        assert booking.room_join_url_student is None
        assert balance_of(db, funded_student) == 17
        assert notifier.kinds_for(instructor_id) == ["booking_created"]

    def test_notifier_failure_keeps_booking(self, db, fixed_clock, course, funded_student):
        service = BookingService(db, notifier=FailingNotifier(), clock=fixed_clock)

        booking = service.create_booking(request(course, funded_student))

        assert booking.status == BookingStatus.SCHEDULED.value
        assert booking_count(db) == 1

    def test_schedule_lock_taken_before_conflict_check(
        self, booking_service, course, funded_student
    ):
        calls = []
        with patch.object(
            BookingRepository,
            "lock_instructor_schedule",
            autospec=True,
            side_effect=lambda repo, instructor_id: calls.append(("lock", instructor_id)),
        ), patch.object(
            ConflictChecker,
            "ensure_available",
            autospec=True,
            side_effect=lambda checker, instructor_id, *args, **kwargs: calls.append(
                ("check", instructor_id)
            ),
        ):
            booking_service.create_booking(request(course, funded_student))

        assert calls == [("lock", course.instructor_id), ("check", course.instructor_id)]

    def test_schedule_lock_failure_rolls_back(self, booking_service, db, course, funded_student):
        with patch.object(
            BookingRepository,
            "lock_instructor_schedule",
            side_effect=RepositoryException("lock timeout"),
        ):
            with pytest.raises(RepositoryException):
                booking_service.create_booking(request(course, funded_student))

        assert booking_count(db) == 0
        assert balance_of(db, funded_student) == 20

    def test_failed_attempt_does_not_block_next(self, booking_service, db, course, funded_student):
        with pytest.raises(LeadTimeViolationException):
            booking_service.create_booking(
                request(course, funded_student, start_at=FIXED_NOW + timedelta(hours=1))
            )

        booking = booking_service.create_booking(request(course, funded_student))

        assert booking.credits_spent == 3
        assert balance_of(db, funded_student) == 17
