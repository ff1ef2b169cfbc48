# backend/sessionbook/models/availability.py
"""
Availability models for the session booking engine.

An instructor has one AvailabilityProfile per scope: the general profile
(``scope_key == "general"``) and optionally one per course. Each profile owns
its weekly recurring rules and its date-specific overrides.

Classes:
    AvailabilityProfile: Timezone, policy knobs and the rule/override sets
    RecurringRule: Weekly window on a weekday (0=Sunday .. 6=Saturday)
    DateOverride: Replaces the recurring rules for one calendar date
"""

import logging
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import UTCDateTime, now_utc

logger = logging.getLogger(__name__)

GENERAL_SCOPE = "general"


def scope_key_for(course_id: Optional[str]) -> str:
    """Map an optional course scope onto the non-null uniqueness key."""
    return course_id or GENERAL_SCOPE


class AvailabilityProfile(Base):
    """Instructor availability for one scope (general or a single course)."""

    __tablename__ = "availability_profiles"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    instructor_id = Column(String(26), nullable=False, index=True)
    course_id = Column(String(26), nullable=True)
    scope_key = Column(String(26), nullable=False, default=GENERAL_SCOPE)

    timezone = Column(String(64), nullable=False, default="UTC")
    min_advance_booking_hours = Column(Integer, nullable=False, default=2)
    max_advance_booking_days = Column(Integer, nullable=False, default=60)
    slot_duration_hours = Column(Float, nullable=False, default=1.0)
    buffer_minutes = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(UTCDateTime, nullable=False, default=now_utc)
    updated_at = Column(UTCDateTime, nullable=True, onupdate=now_utc)

    rules = relationship(
        "RecurringRule",
        back_populates="profile",
        cascade="all, delete-orphan",
        order_by="(RecurringRule.weekday, RecurringRule.start_time)",
    )
    overrides = relationship(
        "DateOverride",
        back_populates="profile",
        cascade="all, delete-orphan",
        order_by="DateOverride.date",
    )

    __table_args__ = (
        UniqueConstraint("instructor_id", "scope_key", name="uq_availability_instructor_scope"),
        CheckConstraint("min_advance_booking_hours >= 0", name="ck_profile_lead_time"),
        CheckConstraint("max_advance_booking_days >= 1", name="ck_profile_horizon"),
        CheckConstraint("slot_duration_hours >= 0.5", name="ck_profile_slot_duration"),
        CheckConstraint("buffer_minutes >= 0", name="ck_profile_buffer"),
    )

    @property
    def is_persisted(self) -> bool:
        return self.id is not None and self.created_at is not None

    def override_for(self, day):
        """Return the override for a calendar date, if any."""
        for override in self.overrides:
            if override.date == day:
                return override
        return None

    def __repr__(self) -> str:
        return (
            f"<AvailabilityProfile instructor={self.instructor_id} scope={self.scope_key} "
            f"rules={len(self.rules)} overrides={len(self.overrides)}>"
        )


class RecurringRule(Base):
    """Weekly availability window."""

    __tablename__ = "availability_recurring_rules"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    profile_id = Column(
        String(26), ForeignKey("availability_profiles.id", ondelete="CASCADE"), nullable=False
    )
    weekday = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    active = Column(Boolean, nullable=False, default=True)

    profile = relationship("AvailabilityProfile", back_populates="rules")

    __table_args__ = (
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_rule_weekday"),
        CheckConstraint("start_time < end_time", name="ck_rule_time_order"),
        Index("ix_rule_profile_weekday", "profile_id", "weekday"),
    )

    def __repr__(self) -> str:
        return f"<RecurringRule weekday={self.weekday} {self.start_time}-{self.end_time}>"


class DateOverride(Base):
    """Date-specific availability that replaces the recurring rules for that date."""

    __tablename__ = "availability_date_overrides"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    profile_id = Column(
        String(26), ForeignKey("availability_profiles.id", ondelete="CASCADE"), nullable=False
    )
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    available = Column(Boolean, nullable=False, default=True)
    reason = Column(String(255), nullable=True)

    profile = relationship("AvailabilityProfile", back_populates="overrides")

    __table_args__ = (
        UniqueConstraint("profile_id", "date", name="uq_override_profile_date"),
        CheckConstraint("start_time < end_time", name="ck_override_time_order"),
    )

    def __repr__(self) -> str:
        state = "available" if self.available else "blocked"
        return f"<DateOverride {self.date} {state} - {self.reason or 'No reason'}>"
