"""Course and enrollment lookups backed by the catalog tables."""

from typing import Optional

from sqlalchemy.orm import Session

from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .ports import CourseInfo


class CatalogService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.repository = RepositoryFactory.create_catalog_repository(db)

    def get_course(self, course_id: str) -> Optional[CourseInfo]:
        course = self.repository.get_course(course_id)
        if course is None:
            return None
        return CourseInfo(
            id=course.id,
            instructor_id=course.instructor_id,
            price_per_hour=course.price_per_hour,
            status=course.status,
            single_session_price=course.single_session_price,
            full_course_price=course.full_course_price,
        )

    def is_enrolled(self, student_id: str, course_id: str) -> bool:
        return self.repository.has_active_enrollment(student_id, course_id)
