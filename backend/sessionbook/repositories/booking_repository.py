# backend/sessionbook/repositories/booking_repository.py
"""
Booking Repository for the session booking engine.

Implements all data access operations for booking management:
- Booking creation and lookup
- Instructor interval conflict queries
- Per-student daily counts
- User-specific listings (filters, pagination, upcoming, history, calendar)
- Conditional status transitions used by the reconciliation sweeps
"""

from datetime import datetime
import hashlib
import logging
from typing import Any, Iterable, List, Optional, Tuple, cast

from sqlalchemy import and_, or_, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.booking import ACTIVE_STATUSES, Booking, BookingStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


def _participant_filter(user_id: str) -> Any:
    return or_(Booking.student_id == user_id, Booking.instructor_id == user_id)


def schedule_lock_key(instructor_id: str) -> int:
    """Stable signed 64-bit advisory lock key for an instructor's schedule."""
    digest = hashlib.blake2b(f"schedule:{instructor_id}".encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        """Initialize with Booking model."""
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def get_booking(self, booking_id: str, for_update: bool = False) -> Optional[Booking]:
        """
        Load a booking with fresh column values.

        With ``for_update`` the row is locked until the transaction ends
        (ignored by SQLite, which serializes writers itself).
        """
        try:
            query = (
                self.db.query(Booking)
                .filter(Booking.id == booking_id)
                .execution_options(populate_existing=True)
            )
            if for_update:
                query = query.with_for_update()
            return cast(Optional[Booking], query.first())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to get booking: {str(e)}")

    def lock_instructor_schedule(self, instructor_id: str) -> bool:
        """
        Hold a transaction-scoped lock on the instructor's schedule.

        On PostgreSQL this takes ``pg_advisory_xact_lock``, released at commit
        or rollback, so conflict checks for one instructor serialize across
        every worker and host. SQLite admits a single writer per database
        file, so a racing second writer fails instead of double-booking.

        Returns:
            True when an advisory lock was taken
        """
        if self.db.get_bind().dialect.name != "postgresql":
            return False
        try:
            self.db.execute(
                text("SELECT pg_advisory_xact_lock(:key)"),
                {"key": schedule_lock_key(instructor_id)},
            )
            return True
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking schedule for instructor {instructor_id}: {str(e)}")
            raise RepositoryException(f"Failed to lock instructor schedule: {str(e)}")

    # Conflict Queries

    def get_active_instructor_bookings(
        self,
        instructor_id: str,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Get scheduled/in-progress bookings of an instructor.

        When a range is given only bookings whose interval touches it are
        returned; the final overlap decision belongs to the conflict checker.

        Args:
            instructor_id: The instructor ID
            range_start: Optional lower bound (inclusive of overlap)
            range_end: Optional upper bound
            exclude_booking_id: Optional booking to exclude

        Returns:
            Active bookings ordered by start
        """
        try:
            query = self.db.query(Booking).filter(
                Booking.instructor_id == instructor_id,
                Booking.status.in_(sorted(ACTIVE_STATUSES)),
            )
            if range_end is not None:
                query = query.filter(Booking.start_at < range_end)
            if range_start is not None:
                query = query.filter(Booking.end_at > range_start)
            if exclude_booking_id:
                query = query.filter(Booking.id != exclude_booking_id)

            return cast(List[Booking], query.order_by(Booking.start_at).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting active instructor bookings: {str(e)}")
            raise RepositoryException(f"Failed to get instructor bookings: {str(e)}")

    def count_student_active_between(
        self, student_id: str, day_start: datetime, day_end: datetime
    ) -> int:
        """Count a student's scheduled/in-progress bookings starting in [day_start, day_end)."""
        try:
            return cast(
                int,
                self.db.query(Booking)
                .filter(
                    Booking.student_id == student_id,
                    Booking.status.in_(sorted(ACTIVE_STATUSES)),
                    Booking.start_at >= day_start,
                    Booking.start_at < day_end,
                )
                .count(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error counting student bookings: {str(e)}")
            raise RepositoryException(f"Failed to count student bookings: {str(e)}")

    # User Listings

    def get_bookings_for_user(
        self,
        user_id: str,
        *,
        statuses: Optional[Iterable[str]] = None,
        course_id: Optional[str] = None,
        start_from: Optional[datetime] = None,
        start_until: Optional[datetime] = None,
        newest_first: bool = False,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[Booking], int]:
        """
        Filtered, paginated bookings where the user is student or instructor.

        Returns:
            (page of bookings, total matching)
        """
        try:
            query = self.db.query(Booking).filter(_participant_filter(user_id))
            if statuses:
                query = query.filter(Booking.status.in_(list(statuses)))
            if course_id:
                query = query.filter(Booking.course_id == course_id)
            if start_from is not None:
                query = query.filter(Booking.start_at >= start_from)
            if start_until is not None:
                query = query.filter(Booking.start_at < start_until)

            total = query.count()
            order = Booking.start_at.desc() if newest_first else Booking.start_at.asc()
            query = query.order_by(order, Booking.id).offset(offset)
            if limit is not None:
                query = query.limit(limit)
            return cast(List[Booking], query.all()), total
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing user bookings: {str(e)}")
            raise RepositoryException(f"Failed to list bookings: {str(e)}")

    # Sweep Queries

    def get_overdue_scheduled_ids(self, cutoff: datetime, limit: int) -> List[str]:
        """Ids of scheduled bookings that started before the cutoff."""
        try:
            rows = (
                self.db.query(Booking.id)
                .filter(
                    Booking.status == BookingStatus.SCHEDULED.value,
                    Booking.start_at < cutoff,
                )
                .order_by(Booking.start_at)
                .limit(limit)
                .all()
            )
            return [row[0] for row in rows]
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting overdue bookings: {str(e)}")
            raise RepositoryException(f"Failed to get overdue bookings: {str(e)}")

    def get_scheduled_starting_between(
        self, window_start: datetime, window_end: datetime, limit: int
    ) -> List[Booking]:
        """Scheduled bookings with window_start <= start <= window_end."""
        try:
            return cast(
                List[Booking],
                self.db.query(Booking)
                .filter(
                    and_(
                        Booking.status == BookingStatus.SCHEDULED.value,
                        Booking.start_at >= window_start,
                        Booking.start_at <= window_end,
                    )
                )
                .order_by(Booking.start_at)
                .limit(limit)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting upcoming bookings: {str(e)}")
            raise RepositoryException(f"Failed to get upcoming bookings: {str(e)}")

    def transition_if_status(
        self,
        booking_id: str,
        expected_status: str,
        **values: Any,
    ) -> bool:
        """
        Conditionally update a booking that is still in the expected status.

        Returns:
            True if the row changed, False if another writer got there first
        """
        try:
            result = self.db.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.status == expected_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return bool(result.rowcount)
        except SQLAlchemyError as e:
            self.logger.error(f"Error transitioning booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to transition booking: {str(e)}")
