# backend/tests/services/test_conflict_checker.py
"""
Tests for the overlap predicate and ConflictChecker.

The predicate is exercised directly; the checker runs against the test
database so status filtering and exclusions are covered end to end.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from sessionbook.core.exceptions import SlotUnavailableException, ValidationException
from sessionbook.models import BookingStatus
from sessionbook.services.conflict_checker import (
    ConflictChecker,
    find_overlapping,
    has_overlap,
    intervals_overlap,
)

T0 = datetime(2030, 1, 7, 18, 0, tzinfo=timezone.utc)


def at(hours: float) -> datetime:
    return T0 + timedelta(hours=hours)


class TestIntervalsOverlap:
    @pytest.mark.parametrize(
        "a, b, expected",
        [
            ((0, 1), (0, 1), True),
            ((0, 2), (1, 3), True),
            ((1, 3), (0, 2), True),
            ((0, 4), (1, 2), True),
            ((1, 2), (0, 4), True),
            ((0, 1), (1, 2), False),
            ((1, 2), (0, 1), False),
            ((0, 1), (2, 3), False),
        ],
    )
    def test_half_open_semantics(self, a, b, expected):
        assert intervals_overlap(at(a[0]), at(a[1]), at(b[0]), at(b[1])) is expected

    def test_find_overlapping_returns_matching_items(self):
        first = SimpleNamespace(start_at=at(0), end_at=at(1))
        second = SimpleNamespace(start_at=at(1), end_at=at(2))
        third = SimpleNamespace(start_at=at(3), end_at=at(4))

        assert find_overlapping(at(0.5), at(1.5), [first, second, third]) == [first, second]
        assert has_overlap(at(2), at(3), [first, second, third]) is False
        assert has_overlap(at(2), at(3.5), [first, second, third]) is True


class TestConflictChecker:
    def test_overlapping_active_booking_is_reported(self, db, booking_factory, instructor_id):
        existing = booking_factory(start_at=T0, duration_hours=1.0)
        checker = ConflictChecker(db)

        conflicts = checker.check_booking_conflicts(instructor_id, at(0.5), at(1.5))

        assert len(conflicts) == 1
        assert conflicts[0]["booking_id"] == existing.id
        assert conflicts[0]["status"] == BookingStatus.SCHEDULED.value

    def test_in_progress_booking_blocks(self, db, booking_factory, instructor_id):
        booking_factory(start_at=T0, status=BookingStatus.IN_PROGRESS.value)

        assert ConflictChecker(db).check_booking_conflicts(instructor_id, T0, at(1))

    @pytest.mark.parametrize(
        "status",
        [BookingStatus.CANCELLED.value, BookingStatus.COMPLETED.value, BookingStatus.MISSED.value],
    )
    def test_terminal_bookings_never_block(self, db, booking_factory, instructor_id, status):
        booking_factory(start_at=T0, status=status)

        assert ConflictChecker(db).check_booking_conflicts(instructor_id, T0, at(1)) == []

    def test_touching_bookings_do_not_conflict(self, db, booking_factory, instructor_id):
        booking_factory(start_at=T0, duration_hours=1.0)
        checker = ConflictChecker(db)

        assert checker.check_booking_conflicts(instructor_id, at(1), at(2)) == []
        assert checker.check_booking_conflicts(instructor_id, at(-1), at(0)) == []

    def test_other_instructors_bookings_are_ignored(self, db, booking_factory, other_user_id):
        booking_factory(start_at=T0)

        assert ConflictChecker(db).check_booking_conflicts(other_user_id, T0, at(1)) == []

    def test_excluded_booking_is_skipped(self, db, booking_factory, instructor_id):
        existing = booking_factory(start_at=T0)

        conflicts = ConflictChecker(db).check_booking_conflicts(
            instructor_id, T0, at(1), exclude_booking_id=existing.id
        )

        assert conflicts == []

    def test_invalid_range_raises(self, db, instructor_id):
        with pytest.raises(ValidationException):
            ConflictChecker(db).check_booking_conflicts(instructor_id, at(1), at(1))

    def test_ensure_available_raises_slot_unavailable(self, db, booking_factory, instructor_id):
        booking_factory(start_at=T0, duration_hours=2.0)

        with pytest.raises(SlotUnavailableException) as exc_info:
            ConflictChecker(db).ensure_available(instructor_id, at(1), at(2))

        assert exc_info.value.code == "SLOT_UNAVAILABLE"
        assert exc_info.value.details["instructor_id"] == instructor_id

    def test_uses_injected_repository(self, db):
        repository = Mock()
        repository.get_active_instructor_bookings.return_value = [
            SimpleNamespace(id="b1", start_at=T0, end_at=at(1), status="scheduled")
        ]
        checker = ConflictChecker(db, repository=repository)

        conflicts = checker.check_booking_conflicts("inst", at(0.5), at(2))

        assert [c["booking_id"] for c in conflicts] == ["b1"]
        repository.get_active_instructor_bookings.assert_called_once_with(
            "inst", range_start=at(0.5), range_end=at(2), exclude_booking_id=None
        )
