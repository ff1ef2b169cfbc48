# backend/sessionbook/repositories/factory.py
"""
Repository Factory for the session booking engine.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from .base_repository import BaseRepository

# Avoid circular imports
if TYPE_CHECKING:
    from .availability_repository import AvailabilityRepository
    from .booking_repository import BookingRepository
    from .catalog_repository import CatalogRepository
    from .credit_repository import CreditRepository
    from .reminder_repository import ReminderRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_base_repository(db: Session, model) -> BaseRepository:
        """Create a generic base repository for any model."""
        return BaseRepository(db, model)

    @staticmethod
    def create_availability_repository(db: Session) -> "AvailabilityRepository":
        """Create repository for availability profiles."""
        from .availability_repository import AvailabilityRepository

        return AvailabilityRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_catalog_repository(db: Session) -> "CatalogRepository":
        """Create repository for course and enrollment lookups."""
        from .catalog_repository import CatalogRepository

        return CatalogRepository(db)

    @staticmethod
    def create_credit_repository(db: Session) -> "CreditRepository":
        """Create repository for credit balances and ledger entries."""
        from .credit_repository import CreditRepository

        return CreditRepository(db)

    @staticmethod
    def create_reminder_repository(db: Session) -> "ReminderRepository":
        """Create repository for sent-reminder tracking."""
        from .reminder_repository import ReminderRepository

        return ReminderRepository(db)
