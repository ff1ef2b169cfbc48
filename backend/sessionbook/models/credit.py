# backend/sessionbook/models/credit.py
"""
Credit ledger models.

CreditAccount holds the spendable balance per user. Every movement is also
written to CreditTransaction as a signed entry so the balance can be audited.
"""

from enum import Enum

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, String
import ulid

from ..database import Base
from .types import UTCDateTime, now_utc


class CreditTransactionType(str, Enum):
    BOOKING_DEBIT = "booking_debit"
    CANCELLATION_REFUND = "cancellation_refund"
    SESSION_PAYOUT = "session_payout"
    TOP_UP = "top_up"


class CreditAccount(Base):
    """Spendable credit balance of a single user."""

    __tablename__ = "credit_accounts"

    user_id = Column(String(26), primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, nullable=False, default=now_utc)
    updated_at = Column(UTCDateTime, nullable=True, onupdate=now_utc)

    __table_args__ = (CheckConstraint("balance >= 0", name="ck_credit_balance_non_negative"),)

    def __repr__(self) -> str:
        return f"<CreditAccount {self.user_id}: {self.balance}>"


class CreditTransaction(Base):
    """Signed ledger entry; negative amounts are debits."""

    __tablename__ = "credit_transactions"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id = Column(
        String(26), ForeignKey("credit_accounts.user_id", ondelete="CASCADE"), nullable=False
    )
    amount = Column(Integer, nullable=False)
    transaction_type = Column(String(32), nullable=False)
    memo = Column(String(255), nullable=True)
    booking_id = Column(String(26), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=now_utc)

    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_credit_transaction_non_zero"),
        Index("ix_credit_transactions_user_created", "user_id", "created_at"),
        Index("ix_credit_transactions_booking", "booking_id"),
    )

    def __repr__(self) -> str:
        return f"<CreditTransaction {self.user_id} {self.amount:+d} {self.transaction_type}>"
