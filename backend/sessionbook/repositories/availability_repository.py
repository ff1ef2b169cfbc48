# backend/sessionbook/repositories/availability_repository.py
"""
AvailabilityRepository - Availability Profile Data Access

Handles availability profiles together with their recurring rules and date
overrides. A profile is keyed by (instructor_id, scope_key); the unique
constraint on that pair is what makes ``insert_or_get_profile`` race-safe.
"""

from datetime import date
import logging
from typing import Optional, Tuple, cast

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session, selectinload

from ..core.exceptions import RepositoryException
from ..models.availability import AvailabilityProfile, DateOverride, RecurringRule
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AvailabilityRepository(BaseRepository[AvailabilityProfile]):
    """Repository for availability profiles, rules and overrides."""

    def __init__(self, db: Session):
        """Initialize repository."""
        super().__init__(db, AvailabilityProfile)
        self.logger = logging.getLogger(__name__)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(
            selectinload(AvailabilityProfile.rules),
            selectinload(AvailabilityProfile.overrides),
        )

    # Profile Operations

    def get_profile(self, instructor_id: str, scope_key: str) -> Optional[AvailabilityProfile]:
        """
        Get the profile for an instructor and scope.

        Args:
            instructor_id: The instructor ID
            scope_key: Course id or "general"

        Returns:
            The profile with rules and overrides loaded, or None
        """
        try:
            query = self.db.query(AvailabilityProfile).filter(
                and_(
                    AvailabilityProfile.instructor_id == instructor_id,
                    AvailabilityProfile.scope_key == scope_key,
                )
            )
            return cast(Optional[AvailabilityProfile], self._apply_eager_loading(query).first())
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting availability profile: {str(e)}")
            raise RepositoryException(f"Failed to get availability profile: {str(e)}")

    def insert_or_get_profile(
        self, profile: AvailabilityProfile
    ) -> Tuple[AvailabilityProfile, bool]:
        """
        Insert a new profile, or return the row another writer inserted first.

        The insert runs inside a SAVEPOINT so a uniqueness violation only
        rolls back this statement, not the caller's transaction.

        Returns:
            (profile, created)
        """
        try:
            with self.db.begin_nested():
                self.db.add(profile)
                self.db.flush()
            return profile, True
        except IntegrityError:
            self.logger.info(
                "Availability profile already exists, reusing",
                extra={"instructor_id": profile.instructor_id, "scope_key": profile.scope_key},
            )
            existing = self.get_profile(profile.instructor_id, profile.scope_key)
            if existing is None:
                raise RepositoryException("Availability profile vanished after conflict")
            return existing, False
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating availability profile: {str(e)}")
            raise RepositoryException(f"Failed to create availability profile: {str(e)}")

    # Recurring Rule Operations

    def add_rule(self, profile: AvailabilityProfile, rule: RecurringRule) -> RecurringRule:
        try:
            profile.rules.append(rule)
            self.db.flush()
            return rule
        except SQLAlchemyError as e:
            self.logger.error(f"Error adding recurring rule: {str(e)}")
            raise RepositoryException(f"Failed to add recurring rule: {str(e)}")

    def remove_rule(self, profile: AvailabilityProfile, rule_id: str) -> bool:
        """
        Remove a recurring rule from a profile.

        Returns:
            True if removed, False if the rule is not part of the profile
        """
        try:
            for rule in list(profile.rules):
                if rule.id == rule_id:
                    profile.rules.remove(rule)
                    self.db.flush()
                    return True
            return False
        except SQLAlchemyError as e:
            self.logger.error(f"Error removing recurring rule: {str(e)}")
            raise RepositoryException(f"Failed to remove recurring rule: {str(e)}")

    # Date Override Operations

    def put_override(self, profile: AvailabilityProfile, override: DateOverride) -> DateOverride:
        """
        Store an override, replacing any override already set for that date.
        """
        try:
            existing = profile.override_for(override.date)
            if existing is not None:
                existing.start_time = override.start_time
                existing.end_time = override.end_time
                existing.available = override.available
                existing.reason = override.reason
                self.db.flush()
                return existing
            profile.overrides.append(override)
            self.db.flush()
            return override
        except SQLAlchemyError as e:
            self.logger.error(f"Error storing date override: {str(e)}")
            raise RepositoryException(f"Failed to store date override: {str(e)}")

    def remove_override(self, profile: AvailabilityProfile, override_date: date) -> bool:
        try:
            existing = profile.override_for(override_date)
            if existing is None:
                return False
            profile.overrides.remove(existing)
            self.db.flush()
            return True
        except SQLAlchemyError as e:
            self.logger.error(f"Error removing date override: {str(e)}")
            raise RepositoryException(f"Failed to remove date override: {str(e)}")
