# backend/sessionbook/repositories/reminder_repository.py
"""
Reminder Repository

Tracks which reminders were already sent. ``claim`` inserts the marker row
inside a SAVEPOINT; the unique constraint makes the first claimer win so
overlapping sweep runs cannot both dispatch.
"""

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.booking import BookingReminder
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ReminderRepository(BaseRepository[BookingReminder]):
    def __init__(self, db: Session):
        super().__init__(db, BookingReminder)
        self.logger = logging.getLogger(__name__)

    def claim(self, booking_id: str, recipient_id: str, reminder_type: str) -> bool:
        """
        Record a reminder as sent.

        Returns:
            True if this call claimed it, False if it was already claimed
        """
        try:
            with self.db.begin_nested():
                self.db.add(
                    BookingReminder(
                        booking_id=booking_id,
                        recipient_id=recipient_id,
                        reminder_type=reminder_type,
                    )
                )
                self.db.flush()
            return True
        except IntegrityError:
            return False
        except SQLAlchemyError as e:
            self.logger.error(f"Error claiming reminder: {str(e)}")
            raise RepositoryException(f"Failed to claim reminder: {str(e)}")
