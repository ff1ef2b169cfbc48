# backend/sessionbook/repositories/credit_repository.py
"""
Credit Repository for the session booking engine.

Balance reads and writes for the SQL credit ledger. Debits are a single
conditional UPDATE so concurrent debits against the same account can never
drive the balance negative.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.credit import CreditAccount, CreditTransaction
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CreditRepository(BaseRepository[CreditAccount]):
    """Repository for credit balances and ledger entries."""

    def __init__(self, db: Session):
        super().__init__(db, CreditAccount)
        self.logger = logging.getLogger(__name__)

    def get_balance(self, user_id: str) -> int:
        """Return the current balance, 0 when the user has no account yet."""
        try:
            balance = (
                self.db.query(CreditAccount.balance)
                .filter(CreditAccount.user_id == user_id)
                .scalar()
            )
            return int(balance or 0)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to read balance for %s: %s", user_id, str(exc))
            raise RepositoryException("Failed to read credit balance") from exc

    def ensure_account(self, user_id: str) -> None:
        """Create an empty account if none exists (race-safe)."""
        try:
            if self.db.get(CreditAccount, user_id) is not None:
                return
            with self.db.begin_nested():
                self.db.add(CreditAccount(user_id=user_id, balance=0))
                self.db.flush()
        except IntegrityError:
            # Another writer created it between our read and insert.
            return
        except SQLAlchemyError as exc:
            self.logger.error("Failed to create credit account for %s: %s", user_id, str(exc))
            raise RepositoryException("Failed to create credit account") from exc

    def debit_if_sufficient(self, user_id: str, amount: int) -> bool:
        """
        Subtract ``amount`` only if the balance covers it.

        Returns:
            True if debited, False if the balance was insufficient
        """
        try:
            result = self.db.execute(
                update(CreditAccount)
                .where(CreditAccount.user_id == user_id, CreditAccount.balance >= amount)
                .values(balance=CreditAccount.balance - amount)
                .execution_options(synchronize_session=False)
            )
            return bool(result.rowcount)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to debit %s credits from %s: %s", amount, user_id, str(exc))
            raise RepositoryException("Failed to debit credits") from exc

    def increment(self, user_id: str, amount: int) -> None:
        self.ensure_account(user_id)
        try:
            self.db.execute(
                update(CreditAccount)
                .where(CreditAccount.user_id == user_id)
                .values(balance=CreditAccount.balance + amount)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to credit %s to %s: %s", amount, user_id, str(exc))
            raise RepositoryException("Failed to credit account") from exc

    def add_transaction(
        self,
        *,
        user_id: str,
        amount: int,
        transaction_type: str,
        memo: Optional[str] = None,
        booking_id: Optional[str] = None,
    ) -> CreditTransaction:
        try:
            entry = CreditTransaction(
                user_id=user_id,
                amount=amount,
                transaction_type=transaction_type,
                memo=memo,
                booking_id=booking_id,
            )
            self.db.add(entry)
            self.db.flush()
            return entry
        except SQLAlchemyError as exc:
            self.logger.error("Failed to record credit transaction: %s", str(exc))
            raise RepositoryException("Failed to record credit transaction") from exc
