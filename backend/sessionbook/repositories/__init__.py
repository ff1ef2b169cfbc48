# backend/sessionbook/repositories/__init__.py
"""
Repository Pattern Implementation for the session booking engine.

This package provides the repository layer for data access,
separating business logic from database queries.

Key Components:
- BaseRepository: Foundation for all repositories with common CRUD operations
- RepositoryFactory: Factory for creating repository instances
- AvailabilityRepository: Profiles, recurring rules and date overrides
- BookingRepository: Booking queries and conditional transitions
- CreditRepository: Credit balances and ledger entries
- CatalogRepository: Course and enrollment lookups
- ReminderRepository: Sent-reminder tracking

Usage:
    from sessionbook.repositories import RepositoryFactory

    # In a service:
    repository = RepositoryFactory.create_booking_repository(db)
    bookings = repository.get_active_instructor_bookings(instructor_id)
"""

from .availability_repository import AvailabilityRepository
from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .catalog_repository import CatalogRepository
from .credit_repository import CreditRepository
from .factory import RepositoryFactory
from .reminder_repository import ReminderRepository

__all__ = [
    "AvailabilityRepository",
    "BaseRepository",
    "BookingRepository",
    "CatalogRepository",
    "CreditRepository",
    "ReminderRepository",
    "RepositoryFactory",
]
