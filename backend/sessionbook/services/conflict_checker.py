# backend/sessionbook/services/conflict_checker.py
"""
Conflict Checker Service for the session booking engine.

Owns the single interval-overlap predicate. Slot generation and booking
creation both call ``intervals_overlap`` so the two can never disagree about
what counts as a double booking.
"""

from datetime import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from sqlalchemy.orm import Session

from ..core.exceptions import SlotUnavailableException, ValidationException
from ..repositories.booking_repository import BookingRepository
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class Interval(Protocol):
    start_at: datetime
    end_at: datetime


def intervals_overlap(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """
    True when half-open intervals [start_a, end_a) and [start_b, end_b) overlap.

    Touching intervals (one ends exactly when the other starts) do not overlap.
    """
    return start_a < end_b and start_b < end_a


def find_overlapping(
    start: datetime, end: datetime, intervals: Iterable[Interval]
) -> List[Interval]:
    """Return every interval in ``intervals`` that overlaps [start, end)."""
    return [item for item in intervals if intervals_overlap(start, end, item.start_at, item.end_at)]


def has_overlap(start: datetime, end: datetime, intervals: Sequence[Interval]) -> bool:
    return any(intervals_overlap(start, end, item.start_at, item.end_at) for item in intervals)


class ConflictChecker(BaseService):
    """
    Service for checking booking conflicts against an instructor's calendar.

    Only scheduled and in-progress bookings block time; cancelled, missed
    and completed bookings never do.
    """

    def __init__(self, db: Session, repository: Optional[BookingRepository] = None):
        """
        Initialize conflict checker service.

        Args:
            db: Database session
            repository: Optional BookingRepository instance
        """
        super().__init__(db)
        self.logger = logging.getLogger(__name__)
        self.repository = repository or RepositoryFactory.create_booking_repository(db)

    @BaseService.measure_operation("check_booking_conflicts")
    def check_booking_conflicts(
        self,
        instructor_id: str,
        start_at: datetime,
        end_at: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Find active bookings of the instructor overlapping [start_at, end_at).

        Args:
            instructor_id: The instructor to check
            start_at: Start of the requested interval
            end_at: End of the requested interval
            exclude_booking_id: Optional booking ID to exclude from check

        Returns:
            List of conflicts with booking details
        """
        if start_at >= end_at:
            raise ValidationException("Start time must be before end time")

        candidates = self.repository.get_active_instructor_bookings(
            instructor_id,
            range_start=start_at,
            range_end=end_at,
            exclude_booking_id=exclude_booking_id,
        )
        conflicts = [
            {
                "booking_id": booking.id,
                "start_at": booking.start_at.isoformat(),
                "end_at": booking.end_at.isoformat(),
                "status": booking.status,
            }
            for booking in find_overlapping(start_at, end_at, candidates)
        ]

        if conflicts:
            self.logger.warning(
                f"Found {len(conflicts)} booking conflicts for {instructor_id} "
                f"between {start_at.isoformat()}-{end_at.isoformat()}"
            )

        return conflicts

    def ensure_available(
        self,
        instructor_id: str,
        start_at: datetime,
        end_at: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> None:
        """
        Raise SlotUnavailableException if the interval is already taken.
        """
        conflicts = self.check_booking_conflicts(
            instructor_id, start_at, end_at, exclude_booking_id=exclude_booking_id
        )
        if conflicts:
            raise SlotUnavailableException(
                details={"instructor_id": instructor_id, "conflicts": conflicts}
            )
