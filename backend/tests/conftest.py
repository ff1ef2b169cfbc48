# backend/tests/conftest.py
"""
Pytest configuration for the session booking engine.

Every test gets a fresh in-memory SQLite database with all tables created,
a fixed clock, and recording fakes for the notifier and room provisioner.
"""

import os

# Set testing mode BEFORE any sessionbook imports
os.environ["is_testing"] = "true"
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["video_room_enabled"] = "false"
os.environ["booking_lock_redis_enabled"] = "false"

from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
import ulid

from sessionbook.core.config import settings

settings.is_testing = True

from sessionbook.database import Base, create_db_engine
from sessionbook.models import Booking, BookingKind, BookingStatus, Course, CourseStatus, Enrollment
from sessionbook.services.booking_service import BookingService
from tests.support import FIXED_NOW, FakeRoomProvisioner, FixedClock, RecordingNotifier, fund


@pytest.fixture
def fixed_clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def engine():
    db_engine = create_db_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=db_engine)
    yield db_engine
    Base.metadata.drop_all(bind=db_engine)
    db_engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def instructor_id() -> str:
    return str(ulid.ULID())


@pytest.fixture
def student_id() -> str:
    return str(ulid.ULID())


@pytest.fixture
def other_user_id() -> str:
    return str(ulid.ULID())


@pytest.fixture
def course(db: Session, instructor_id: str) -> Course:
    course = Course(
        instructor_id=instructor_id,
        title="Conversational Portuguese",
        price_per_hour=2,
        single_session_price=3,
        status=CourseStatus.ACTIVE.value,
    )
    db.add(course)
    db.commit()
    return course


@pytest.fixture
def enrollment(db: Session, course: Course, student_id: str) -> Enrollment:
    enrollment = Enrollment(course_id=course.id, student_id=student_id)
    db.add(enrollment)
    db.commit()
    return enrollment


@pytest.fixture
def funded_student(db: Session, student_id: str, enrollment: Enrollment) -> str:
    fund(db, student_id, 20)
    return student_id


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def room_provisioner() -> FakeRoomProvisioner:
    return FakeRoomProvisioner()


@pytest.fixture
def booking_service(
    db: Session,
    notifier: RecordingNotifier,
    room_provisioner: FakeRoomProvisioner,
    fixed_clock: FixedClock,
) -> BookingService:
    return BookingService(
        db, room_provisioner=room_provisioner, notifier=notifier, clock=fixed_clock
    )


@pytest.fixture
def booking_factory(
    db: Session, course: Course, instructor_id: str, student_id: str
) -> Callable[..., Booking]:
    """Insert bookings directly, bypassing creation rules."""

    def _create(
        start_at: Optional[datetime] = None,
        hours_from_now: Optional[float] = None,
        duration_hours: float = 1.0,
        status: str = BookingStatus.SCHEDULED.value,
        credits_spent: int = 4,
        student: Optional[str] = None,
        **extra: Any,
    ) -> Booking:
        if start_at is None:
            start_at = FIXED_NOW + timedelta(hours=hours_from_now if hours_from_now is not None else 48)
        booking = Booking(
            id=str(ulid.ULID()),
            course_id=course.id,
            student_id=student or student_id,
            instructor_id=instructor_id,
            start_at=start_at,
            end_at=start_at + timedelta(hours=duration_hours),
            duration_hours=duration_hours,
            kind=BookingKind.FULL_COURSE.value,
            status=status,
            credits_spent=credits_spent,
            created_at=FIXED_NOW - timedelta(days=7),
            **extra,
        )
        db.add(booking)
        db.commit()
        return booking

    return _create
