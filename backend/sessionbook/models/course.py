# backend/sessionbook/models/course.py
"""
Catalog read models.

Only the fields the booking engine consults are mapped here: who teaches the
course, what it costs and whether it is open for booking. Catalog management
lives elsewhere.
"""

from enum import Enum

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, String, UniqueConstraint
import ulid

from ..database import Base
from .types import UTCDateTime, now_utc


class CourseStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class Course(Base):
    __tablename__ = "courses"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    instructor_id = Column(String(26), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    price_per_hour = Column(Integer, nullable=False)
    single_session_price = Column(Integer, nullable=True)
    full_course_price = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default=CourseStatus.DRAFT.value)
    created_at = Column(UTCDateTime, nullable=False, default=now_utc)

    __table_args__ = (
        CheckConstraint("price_per_hour >= 1", name="ck_course_price_per_hour"),
        CheckConstraint(
            "status IN ('draft', 'active', 'completed', 'cancelled')", name="ck_course_status"
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status == CourseStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<Course {self.id} {self.title!r} status={self.status}>"


class Enrollment(Base):
    __tablename__ = "enrollments"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False)
    student_id = Column(String(26), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=EnrollmentStatus.ACTIVE.value)
    created_at = Column(UTCDateTime, nullable=False, default=now_utc)

    __table_args__ = (
        UniqueConstraint("course_id", "student_id", name="uq_enrollment_course_student"),
    )
