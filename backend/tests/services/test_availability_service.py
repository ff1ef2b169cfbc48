# backend/tests/services/test_availability_service.py
"""
AvailabilityService against a real database: profile defaults and upserts,
rule and override management, and slot queries.
"""

from datetime import date, datetime, time, timezone

import pytest

from sessionbook.core.exceptions import NotFoundException, ValidationException
from sessionbook.models import AvailabilityProfile, Course, CourseStatus
from sessionbook.services.availability_service import AvailabilityService, build_default_profile

MONDAY = date(2030, 1, 7)

MONDAY_EVENING = {"weekday": 1, "start_time": "18:00", "end_time": "20:00"}


def utc(year, month, day, hour, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def service(db, fixed_clock):
    return AvailabilityService(db, clock=fixed_clock)


def profile_count(db) -> int:
    return db.query(AvailabilityProfile).count()


class TestProfileDefaults:
    def test_missing_profile_returns_default(self, service, db, instructor_id):
        profile = service.get_profile(instructor_id)

        assert profile is not None
        assert profile.is_persisted is False
        assert profile.timezone == "UTC"
        assert profile.min_advance_booking_hours == 2
        assert profile.max_advance_booking_days == 60
        assert profile.slot_duration_hours == 1.0
        assert profile.buffer_minutes == 0
        assert profile.active is True
        assert profile.rules == []
        assert profile.overrides == []
        assert profile_count(db) == 0

    def test_default_profile_is_deterministic(self, instructor_id):
        first = build_default_profile(instructor_id, "course-1")
        second = build_default_profile(instructor_id, "course-1")

        assert first.scope_key == second.scope_key == "course-1"
        assert first.timezone == second.timezone
        assert first.slot_duration_hours == second.slot_duration_hours

    def test_default_profile_has_no_slots(self, service, instructor_id):
        assert service.get_available_slots(instructor_id, MONDAY, MONDAY) == []


class TestUpsertProfile:
    def test_creates_then_updates_single_profile(self, service, db, instructor_id):
        created = service.upsert_profile(
            instructor_id, {"timezone": "Europe/Lisbon", "rules": [MONDAY_EVENING]}
        )
        updated = service.upsert_profile(instructor_id, {"buffer_minutes": 15})

        assert created.id == updated.id
        assert profile_count(db) == 1
        assert updated.timezone == "Europe/Lisbon"
        assert updated.buffer_minutes == 15
        # Omitted rules are kept
        assert len(updated.rules) == 1

    def test_rules_are_replaced(self, service, instructor_id):
        service.upsert_profile(instructor_id, {"rules": [MONDAY_EVENING]})
        profile = service.upsert_profile(
            instructor_id,
            {"rules": [{"weekday": 2, "start_time": "09:00", "end_time": "10:00"}]},
        )

        assert [(r.weekday, r.start_time) for r in profile.rules] == [(2, time(9, 0))]

    def test_overrides_are_replaced_including_same_date(self, service, db, instructor_id):
        service.upsert_profile(
            instructor_id,
            {"overrides": [{"date": "2030-01-07", "start_time": "09:00", "end_time": "10:00"}]},
        )
        service.upsert_profile(
            instructor_id,
            {
                "overrides": [
                    {"date": "2030-01-07", "start_time": "13:00", "end_time": "14:00"},
                    {"date": "2030-01-08", "start_time": "09:00", "end_time": "11:00"},
                ]
            },
        )
        db.expire_all()

        profile = service.get_profile(instructor_id)

        assert [(o.date, o.start_time) for o in profile.overrides] == [
            (date(2030, 1, 7), time(13, 0)),
            (date(2030, 1, 8), time(9, 0)),
        ]

    def test_course_scope_is_separate(self, service, db, instructor_id, course):
        service.upsert_profile(instructor_id, {"buffer_minutes": 5})
        service.upsert_profile(instructor_id, {"buffer_minutes": 30}, course_id=course.id)

        assert profile_count(db) == 2
        assert service.get_profile(instructor_id).buffer_minutes == 5
        assert service.get_profile(instructor_id, course.id).buffer_minutes == 30

    @pytest.mark.parametrize(
        "payload",
        [
            {"timezone": "Mars/Olympus"},
            {"slot_duration_hours": 0.25},
            {"rules": [{"weekday": 7, "start_time": "09:00", "end_time": "10:00"}]},
            {"rules": [{"weekday": 1, "start_time": "10:00", "end_time": "09:00"}]},
            {"rules": [MONDAY_EVENING, MONDAY_EVENING]},
            {"unknown_field": True},
        ],
    )
    def test_invalid_payload_is_rejected(self, service, db, instructor_id, payload):
        with pytest.raises(ValidationException):
            service.upsert_profile(instructor_id, payload)

        assert profile_count(db) == 0

    def test_past_override_is_rejected(self, service, instructor_id):
        with pytest.raises(ValidationException):
            service.upsert_profile(
                instructor_id,
                {"overrides": [{"date": "2030-01-05", "start_time": "09:00", "end_time": "10:00"}]},
            )

    def test_update_policy_leaves_rules_alone(self, service, instructor_id):
        service.upsert_profile(instructor_id, {"rules": [MONDAY_EVENING]})

        profile = service.update_policy(
            instructor_id, {"min_advance_booking_hours": 0, "active": False}
        )

        assert profile.min_advance_booking_hours == 0
        assert profile.active is False
        assert len(profile.rules) == 1


class TestRulesAndOverrides:
    def test_add_and_remove_recurring_rule(self, service, db, instructor_id):
        rule = service.add_recurring_rule(instructor_id, MONDAY_EVENING)

        assert rule.id is not None
        assert profile_count(db) == 1

        service.remove_recurring_rule(instructor_id, rule.id)
        db.expire_all()

        assert service.get_profile(instructor_id).rules == []

    def test_duplicate_rule_is_rejected(self, service, instructor_id):
        service.add_recurring_rule(instructor_id, MONDAY_EVENING)

        with pytest.raises(ValidationException):
            service.add_recurring_rule(instructor_id, MONDAY_EVENING)

    def test_rule_with_inverted_times_is_rejected(self, service, instructor_id):
        with pytest.raises(ValidationException):
            service.add_recurring_rule(
                instructor_id, {"weekday": 1, "start_time": "20:00", "end_time": "18:00"}
            )

    def test_removing_unknown_rule_raises(self, service, instructor_id):
        with pytest.raises(NotFoundException):
            service.remove_recurring_rule(instructor_id, "01NOTAREALRULE000000000000")

    def test_override_for_today_is_allowed(self, service, instructor_id):
        override = service.add_override(
            instructor_id, {"date": date(2030, 1, 6), "start_time": "15:00", "end_time": "16:00"}
        )

        assert override.date == date(2030, 1, 6)

    def test_past_override_date_is_rejected(self, service, instructor_id):
        with pytest.raises(ValidationException) as exc_info:
            service.add_override(
                instructor_id, {"date": date(2030, 1, 5), "start_time": "09:00", "end_time": "10:00"}
            )

        assert exc_info.value.details["today"] == "2030-01-06"

    def test_today_is_read_in_profile_timezone(self, service, instructor_id):
        # 12:00 UTC on Jan 6 is already Jan 7 in Auckland
        service.upsert_profile(instructor_id, {"timezone": "Pacific/Auckland"})

        with pytest.raises(ValidationException):
            service.add_override(
                instructor_id, {"date": date(2030, 1, 6), "start_time": "09:00", "end_time": "10:00"}
            )

    def test_override_replaces_existing_for_same_date(self, service, db, instructor_id):
        service.add_override(
            instructor_id, {"date": MONDAY, "start_time": "09:00", "end_time": "10:00"}
        )
        service.add_override(
            instructor_id,
            {"date": MONDAY, "start_time": "11:00", "end_time": "12:00", "reason": " swap "},
        )
        db.expire_all()

        overrides = service.get_profile(instructor_id).overrides

        assert len(overrides) == 1
        assert overrides[0].start_time == time(11, 0)
        assert overrides[0].reason == "swap"

    def test_block_date_spans_whole_day(self, service, instructor_id):
        override = service.block_date(instructor_id, MONDAY, reason="Conference")

        assert override.available is False
        assert override.start_time == time(0, 0)
        assert override.end_time == time(23, 59)
        assert override.reason == "Conference"

    def test_remove_override(self, service, db, instructor_id):
        service.block_date(instructor_id, MONDAY)
        service.remove_override(instructor_id, MONDAY)
        db.expire_all()

        assert service.get_profile(instructor_id).overrides == []

        with pytest.raises(NotFoundException):
            service.remove_override(instructor_id, MONDAY)


class TestSlotQueries:
    def test_rule_produces_slots(self, service, instructor_id):
        service.add_recurring_rule(instructor_id, MONDAY_EVENING)

        slots = service.get_available_slots(instructor_id, MONDAY, MONDAY)

        assert [s.start_at for s in slots] == [utc(2030, 1, 7, 18), utc(2030, 1, 7, 19)]

    def test_blocked_date_has_no_slots(self, service, instructor_id):
        service.add_recurring_rule(instructor_id, MONDAY_EVENING)
        service.block_date(instructor_id, MONDAY)

        assert service.get_available_slots(instructor_id, MONDAY, MONDAY) == []

    def test_booked_time_is_excluded(self, service, instructor_id, booking_factory):
        service.add_recurring_rule(instructor_id, MONDAY_EVENING)
        booking_factory(start_at=utc(2030, 1, 7, 18))

        slots = service.get_available_slots(instructor_id, MONDAY, MONDAY)

        assert [s.start_at for s in slots] == [utc(2030, 1, 7, 19)]

    def test_cancelled_booking_frees_time(self, service, instructor_id, booking_factory):
        service.add_recurring_rule(instructor_id, MONDAY_EVENING)
        booking_factory(start_at=utc(2030, 1, 7, 18), status="cancelled")

        assert len(service.get_available_slots(instructor_id, MONDAY, MONDAY)) == 2

    def test_active_course_profile_wins(self, service, instructor_id, course):
        service.add_recurring_rule(instructor_id, MONDAY_EVENING)
        service.add_recurring_rule(
            instructor_id,
            {"weekday": 1, "start_time": "09:00", "end_time": "10:00"},
            course_id=course.id,
        )

        general = service.get_available_slots(instructor_id, MONDAY, MONDAY)
        scoped = service.get_course_slots(course.id, MONDAY, MONDAY)

        assert [s.start_at.hour for s in general] == [18, 19]
        assert [s.start_at.hour for s in scoped] == [9]

    def test_inactive_course_profile_falls_back_to_general(self, service, instructor_id, course):
        service.add_recurring_rule(instructor_id, MONDAY_EVENING)
        service.upsert_profile(
            instructor_id,
            {"active": False, "rules": [{"weekday": 1, "start_time": "09:00", "end_time": "10:00"}]},
            course_id=course.id,
        )

        slots = service.get_course_slots(course.id, MONDAY, MONDAY)

        assert [s.start_at.hour for s in slots] == [18, 19]

    def test_inactive_general_profile_has_no_slots(self, service, instructor_id):
        service.upsert_profile(instructor_id, {"active": False, "rules": [MONDAY_EVENING]})

        assert service.get_available_slots(instructor_id, MONDAY, MONDAY) == []

    def test_unknown_course_raises(self, service):
        with pytest.raises(NotFoundException):
            service.get_course_slots("01NOTAREALCOURSE0000000000", MONDAY, MONDAY)

    def test_find_next_available_slot(self, service, instructor_id, booking_factory):
        service.add_recurring_rule(instructor_id, MONDAY_EVENING)
        booking_factory(start_at=utc(2030, 1, 7, 18))

        slot = service.find_next_available_slot(instructor_id)

        assert slot is not None
        assert slot.start_at == utc(2030, 1, 7, 19)

    def test_find_next_available_slot_none(self, service, instructor_id):
        assert service.find_next_available_slot(instructor_id) is None

    def test_course_slots_use_course_instructor(self, service, db, other_user_id):
        course = Course(
            instructor_id=other_user_id,
            title="Harmony",
            price_per_hour=1,
            status=CourseStatus.ACTIVE.value,
        )
        db.add(course)
        db.commit()
        service.add_recurring_rule(other_user_id, MONDAY_EVENING)

        assert len(service.get_course_slots(course.id, MONDAY, MONDAY)) == 2
