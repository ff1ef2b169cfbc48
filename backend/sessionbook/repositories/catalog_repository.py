# backend/sessionbook/repositories/catalog_repository.py
"""
Catalog Repository

Read-only lookups of courses and enrollments for booking decisions.
"""

import logging
from typing import Optional, cast

from sqlalchemy import and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.course import Course, Enrollment, EnrollmentStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CatalogRepository(BaseRepository[Course]):
    def __init__(self, db: Session):
        super().__init__(db, Course)
        self.logger = logging.getLogger(__name__)

    def get_course(self, course_id: str) -> Optional[Course]:
        return self.get_by_id(course_id, load_relationships=False)

    def has_active_enrollment(self, student_id: str, course_id: str) -> bool:
        try:
            enrollment = (
                self.db.query(Enrollment.id)
                .filter(
                    and_(
                        Enrollment.student_id == student_id,
                        Enrollment.course_id == course_id,
                        Enrollment.status == EnrollmentStatus.ACTIVE.value,
                    )
                )
                .first()
            )
            return cast(bool, enrollment is not None)
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking enrollment: {str(e)}")
            raise RepositoryException(f"Failed to check enrollment: {str(e)}")
