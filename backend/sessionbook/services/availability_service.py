# backend/sessionbook/services/availability_service.py
"""
Availability Service for the session booking engine.

Owns an instructor's availability configuration: one profile per scope
(general, or a single course), each with weekly recurring rules, date
overrides and booking-policy knobs. Also answers "which slots are free"
by feeding the stored profile and the instructor's active bookings through
the slot generator.
"""

from __future__ import annotations

from datetime import date, datetime, time
import logging
from typing import Any, List, Mapping, Optional, Union

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import NotFoundException, ValidationException
from ..core.timezone_utils import Clock, local_day_bounds, to_local_date
from ..models.availability import (
    AvailabilityProfile,
    DateOverride,
    RecurringRule,
    scope_key_for,
)
from ..repositories.factory import RepositoryFactory
from ..schemas.availability import (
    AvailabilityPolicyUpdate,
    AvailabilityProfileUpsert,
    DateOverrideCreate,
    RecurringRuleCreate,
)
from ..schemas.base import parse_request
from .base import BaseService
from .catalog_service import CatalogService
from .ports import CatalogLookup
from .slot_generator import DateLike, Slot, generate_slots, resolve_period

logger = logging.getLogger(__name__)

BLOCK_DAY_START = time(0, 0)
BLOCK_DAY_END = time(23, 59)

POLICY_FIELDS = (
    "timezone",
    "min_advance_booking_hours",
    "max_advance_booking_days",
    "slot_duration_hours",
    "buffer_minutes",
    "active",
)


def build_default_profile(instructor_id: str, course_id: Optional[str] = None) -> AvailabilityProfile:
    """
    Deterministic empty profile used until an instructor saves one.

    The returned object is transient: it is never added to a session.
    """
    return AvailabilityProfile(
        instructor_id=instructor_id,
        course_id=course_id,
        scope_key=scope_key_for(course_id),
        timezone=settings.default_timezone,
        min_advance_booking_hours=settings.default_min_advance_booking_hours,
        max_advance_booking_days=settings.default_max_advance_booking_days,
        slot_duration_hours=settings.default_slot_duration_hours,
        buffer_minutes=settings.default_buffer_minutes,
        active=True,
        rules=[],
        overrides=[],
    )


class AvailabilityService(BaseService):
    """
    Service for availability profiles and slot queries.

    Mutations run in their own transaction; reads never write.
    """

    def __init__(
        self,
        db: Session,
        catalog: Optional[CatalogLookup] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db, clock)
        self.repository = RepositoryFactory.create_availability_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.catalog = catalog or CatalogService(db)

    # Profile reads

    @BaseService.measure_operation("get_profile")
    def get_profile(
        self, instructor_id: str, course_id: Optional[str] = None
    ) -> AvailabilityProfile:
        """
        Return the stored profile for the scope, or the default profile.

        Never returns None.
        """
        profile = self.repository.get_profile(instructor_id, scope_key_for(course_id))
        if profile is None:
            return build_default_profile(instructor_id, course_id)
        return profile

    def resolve_booking_profile(
        self, instructor_id: str, course_id: Optional[str]
    ) -> AvailabilityProfile:
        """
        Profile governing bookings of a course.

        An active course-scoped profile wins; otherwise the general profile
        (or its default).
        """
        if course_id:
            scoped = self.repository.get_profile(instructor_id, scope_key_for(course_id))
            if scoped is not None and scoped.active:
                return scoped
        return self.get_profile(instructor_id, None)

    # Profile writes

    def _get_or_create_profile(
        self, instructor_id: str, course_id: Optional[str]
    ) -> AvailabilityProfile:
        profile = self.repository.get_profile(instructor_id, scope_key_for(course_id))
        if profile is not None:
            return profile
        profile, _ = self.repository.insert_or_get_profile(
            build_default_profile(instructor_id, course_id)
        )
        return profile

    def _today_for(self, profile: AvailabilityProfile) -> date:
        return to_local_date(self.now(), profile.timezone)

    def _validate_override_date(self, profile: AvailabilityProfile, override_date: date) -> None:
        today = self._today_for(profile)
        if override_date < today:
            raise ValidationException(
                "Override date cannot be in the past",
                details={"date": override_date.isoformat(), "today": today.isoformat()},
            )

    @staticmethod
    def _apply_policy(profile: AvailabilityProfile, data: AvailabilityPolicyUpdate) -> None:
        for field in POLICY_FIELDS:
            value = getattr(data, field)
            if value is not None:
                setattr(profile, field, value)

    @BaseService.measure_operation("upsert_profile")
    def upsert_profile(
        self,
        instructor_id: str,
        data: Union[AvailabilityProfileUpsert, Mapping[str, Any]],
        course_id: Optional[str] = None,
    ) -> AvailabilityProfile:
        """
        Create or update the profile for (instructor, scope) in one step.

        Provided rules/overrides replace the stored sets.
        """
        payload = parse_request(AvailabilityProfileUpsert, data)

        with self.transaction():
            profile = self._get_or_create_profile(instructor_id, course_id)
            self._apply_policy(profile, payload)

            if payload.rules is not None:
                profile.rules = [
                    RecurringRule(
                        weekday=rule.weekday,
                        start_time=rule.start_time,
                        end_time=rule.end_time,
                        active=rule.active,
                    )
                    for rule in payload.rules
                ]

            if payload.overrides is not None:
                for override in payload.overrides:
                    self._validate_override_date(profile, override.date)
                # Old rows must be deleted before new ones for the same date are inserted
                profile.overrides = []
                self.repository.flush()
                profile.overrides = [
                    DateOverride(
                        date=override.date,
                        start_time=override.start_time,
                        end_time=override.end_time,
                        available=override.available,
                        reason=override.reason,
                    )
                    for override in payload.overrides
                ]
            self.repository.flush()

        self.log_operation(
            "upsert_profile",
            instructor_id=instructor_id,
            scope_key=profile.scope_key,
        )
        return profile

    @BaseService.measure_operation("update_policy")
    def update_policy(
        self,
        instructor_id: str,
        data: Union[AvailabilityPolicyUpdate, Mapping[str, Any]],
        course_id: Optional[str] = None,
    ) -> AvailabilityProfile:
        """Change booking-policy knobs only, leaving rules and overrides alone."""
        payload = parse_request(AvailabilityPolicyUpdate, data)
        with self.transaction():
            profile = self._get_or_create_profile(instructor_id, course_id)
            self._apply_policy(profile, payload)
            self.repository.flush()
        return profile

    @BaseService.measure_operation("add_recurring_rule")
    def add_recurring_rule(
        self,
        instructor_id: str,
        data: Union[RecurringRuleCreate, Mapping[str, Any]],
        course_id: Optional[str] = None,
    ) -> RecurringRule:
        """
        Add a weekly window.

        Raises:
            ValidationException: Bad times, or an identical rule already exists
        """
        rule_data = parse_request(RecurringRuleCreate, data)

        with self.transaction():
            profile = self._get_or_create_profile(instructor_id, course_id)
            for existing in profile.rules:
                if (
                    existing.weekday == rule_data.weekday
                    and existing.start_time == rule_data.start_time
                    and existing.end_time == rule_data.end_time
                ):
                    raise ValidationException(
                        "This recurring rule already exists",
                        details={
                            "weekday": rule_data.weekday,
                            "start_time": rule_data.start_time.isoformat(),
                            "end_time": rule_data.end_time.isoformat(),
                        },
                    )
            rule = self.repository.add_rule(
                profile,
                RecurringRule(
                    weekday=rule_data.weekday,
                    start_time=rule_data.start_time,
                    end_time=rule_data.end_time,
                    active=rule_data.active,
                ),
            )

        self.log_operation("add_recurring_rule", instructor_id=instructor_id, rule_id=rule.id)
        return rule

    @BaseService.measure_operation("remove_recurring_rule")
    def remove_recurring_rule(
        self, instructor_id: str, rule_id: str, course_id: Optional[str] = None
    ) -> None:
        with self.transaction():
            profile = self.repository.get_profile(instructor_id, scope_key_for(course_id))
            if profile is None or not self.repository.remove_rule(profile, rule_id):
                raise NotFoundException(
                    "Recurring rule not found", details={"rule_id": rule_id}
                )
        self.log_operation("remove_recurring_rule", instructor_id=instructor_id, rule_id=rule_id)

    @BaseService.measure_operation("add_override")
    def add_override(
        self,
        instructor_id: str,
        data: Union[DateOverrideCreate, Mapping[str, Any]],
        course_id: Optional[str] = None,
    ) -> DateOverride:
        """
        Set the availability of one calendar date, replacing any earlier override.

        Raises:
            ValidationException: Bad times, or the date is before today
        """
        override_data = parse_request(DateOverrideCreate, data)

        with self.transaction():
            profile = self._get_or_create_profile(instructor_id, course_id)
            self._validate_override_date(profile, override_data.date)
            override = self.repository.put_override(
                profile,
                DateOverride(
                    date=override_data.date,
                    start_time=override_data.start_time,
                    end_time=override_data.end_time,
                    available=override_data.available,
                    reason=override_data.reason,
                ),
            )

        self.log_operation(
            "add_override",
            instructor_id=instructor_id,
            date=override.date.isoformat(),
            available=override.available,
        )
        return override

    def block_date(
        self,
        instructor_id: str,
        blocked_date: date,
        reason: Optional[str] = None,
        course_id: Optional[str] = None,
    ) -> DateOverride:
        """Mark a whole day unavailable."""
        return self.add_override(
            instructor_id,
            DateOverrideCreate(
                date=blocked_date,
                start_time=BLOCK_DAY_START,
                end_time=BLOCK_DAY_END,
                available=False,
                reason=reason,
            ),
            course_id=course_id,
        )

    @BaseService.measure_operation("remove_override")
    def remove_override(
        self, instructor_id: str, override_date: date, course_id: Optional[str] = None
    ) -> None:
        with self.transaction():
            profile = self.repository.get_profile(instructor_id, scope_key_for(course_id))
            if profile is None or not self.repository.remove_override(profile, override_date):
                raise NotFoundException(
                    "Date override not found", details={"date": override_date.isoformat()}
                )

    # Slot queries

    def _active_bookings_for_period(
        self, profile: AvailabilityProfile, start_day: date, end_day: date
    ) -> List[Any]:
        range_start, _ = local_day_bounds(start_day, profile.timezone)
        _, range_end = local_day_bounds(end_day, profile.timezone)
        return self.booking_repository.get_active_instructor_bookings(
            profile.instructor_id, range_start=range_start, range_end=range_end
        )

    def _slots_for_profile(
        self,
        profile: AvailabilityProfile,
        period_start: Optional[DateLike],
        period_end: Optional[DateLike],
        now: datetime,
    ) -> List[Slot]:
        start_day, end_day = resolve_period(profile, period_start, period_end, now)
        bookings = self._active_bookings_for_period(profile, start_day, end_day)
        return generate_slots(profile, start_day, end_day, bookings, now)

    @BaseService.measure_operation("get_available_slots")
    def get_available_slots(
        self,
        instructor_id: str,
        period_start: Optional[DateLike] = None,
        period_end: Optional[DateLike] = None,
        course_id: Optional[str] = None,
    ) -> List[Slot]:
        """
        Free slots of an instructor between two days (inclusive).

        When ``course_id`` is given the course-scoped profile applies if it
        exists and is active. ``period_end`` defaults to the booking horizon.
        """
        profile = self.resolve_booking_profile(instructor_id, course_id)
        return self._slots_for_profile(profile, period_start, period_end, self.now())

    @BaseService.measure_operation("get_course_slots")
    def get_course_slots(
        self,
        course_id: str,
        period_start: Optional[DateLike] = None,
        period_end: Optional[DateLike] = None,
    ) -> List[Slot]:
        """Free slots for booking a course with its instructor."""
        course = self.catalog.get_course(course_id)
        if course is None:
            raise NotFoundException("Course not found", details={"course_id": course_id})
        return self.get_available_slots(
            course.instructor_id, period_start, period_end, course_id=course_id
        )

    @BaseService.measure_operation("find_next_available_slot")
    def find_next_available_slot(
        self, instructor_id: str, course_id: Optional[str] = None
    ) -> Optional[Slot]:
        """Earliest free slot between now and the booking horizon."""
        slots = self.get_available_slots(instructor_id, course_id=course_id)
        return slots[0] if slots else None
