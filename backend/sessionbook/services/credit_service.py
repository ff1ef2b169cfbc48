"""SQL-backed credit ledger."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.exceptions import (
    ExternalServiceException,
    InsufficientCreditsException,
    RepositoryException,
    ValidationException,
)
from ..models.credit import CreditTransactionType
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

LEDGER_SERVICE_NAME = "credit_ledger"


class CreditService(BaseService):
    """
    Credit ledger sharing the caller's database session.

    Nothing here commits: a debit becomes durable only when the surrounding
    booking transaction commits, and is rolled back with it otherwise.
    Storage failures surface as ExternalServiceException so booking creation
    aborts instead of persisting a half-paid booking.
    """

    def __init__(self, db: Session):
        super().__init__(db)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)

    def get_balance(self, user_id: str) -> int:
        try:
            return self.credit_repository.get_balance(user_id)
        except RepositoryException as exc:
            raise ExternalServiceException(LEDGER_SERVICE_NAME, str(exc)) from exc

    @BaseService.measure_operation("credit_debit")
    def debit(
        self, user_id: str, amount: int, memo: str, booking_id: Optional[str] = None
    ) -> None:
        """
        Remove credits from a user's balance.

        Raises:
            InsufficientCreditsException: If the balance does not cover amount
            ExternalServiceException: If the ledger storage fails
        """
        if amount <= 0:
            raise ValidationException("Debit amount must be positive")

        try:
            if not self.credit_repository.debit_if_sufficient(user_id, amount):
                available = self.credit_repository.get_balance(user_id)
                raise InsufficientCreditsException(required=amount, available=available)
            self.credit_repository.add_transaction(
                user_id=user_id,
                amount=-amount,
                transaction_type=CreditTransactionType.BOOKING_DEBIT.value,
                memo=memo,
                booking_id=booking_id,
            )
        except RepositoryException as exc:
            raise ExternalServiceException(LEDGER_SERVICE_NAME, str(exc)) from exc

        self.log_operation("credit_debit", user_id=user_id, amount=amount, booking_id=booking_id)

    @BaseService.measure_operation("credit_credit")
    def credit(
        self,
        user_id: str,
        amount: int,
        memo: str,
        booking_id: Optional[str] = None,
        transaction_type: Optional[str] = None,
    ) -> None:
        """Add credits to a user's balance, opening the account if needed."""
        if amount <= 0:
            raise ValidationException("Credit amount must be positive")

        try:
            self.credit_repository.increment(user_id, amount)
            self.credit_repository.add_transaction(
                user_id=user_id,
                amount=amount,
                transaction_type=transaction_type or CreditTransactionType.TOP_UP.value,
                memo=memo,
                booking_id=booking_id,
            )
        except RepositoryException as exc:
            raise ExternalServiceException(LEDGER_SERVICE_NAME, str(exc)) from exc

        self.log_operation("credit_credit", user_id=user_id, amount=amount, booking_id=booking_id)
