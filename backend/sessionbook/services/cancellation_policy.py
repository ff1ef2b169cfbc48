"""Refund evaluation for booking cancellations."""

from __future__ import annotations

from dataclasses import dataclass
import math

FULL_REFUND_HOURS = 24
PARTIAL_REFUND_HOURS = 12
PARTIAL_REFUND_RATE = 0.5


@dataclass(frozen=True)
class RefundDecision:
    percent: int
    amount: int
    policy_basis: str

    @property
    def refunded(self) -> bool:
        return self.amount > 0

    def to_payload(self) -> dict[str, object]:
        return {
            "percent": self.percent,
            "amount": int(self.amount),
            "refunded": self.refunded,
            "policy_basis": self.policy_basis,
        }


def refund_percent(hours_until_start: float, initiated_by_instructor: bool) -> int:
    """
    Share of the spent credits returned to the student, in percent.

    Instructor-initiated cancellations are always fully refunded.
    """
    if initiated_by_instructor:
        return 100
    if hours_until_start >= FULL_REFUND_HOURS:
        return 100
    if hours_until_start >= PARTIAL_REFUND_HOURS:
        return 50
    return 0


class CancellationPolicy:
    """Determines how many credits a cancellation returns to the student."""

    def evaluate(
        self,
        hours_until_start: float,
        initiated_by_instructor: bool,
        credits_spent: int,
    ) -> RefundDecision:
        percent = refund_percent(hours_until_start, initiated_by_instructor)

        if initiated_by_instructor:
            basis = "Cancelled by instructor: full refund"
        elif percent == 100:
            basis = f">={FULL_REFUND_HOURS} hours before session: full refund"
        elif percent == 50:
            basis = f"{PARTIAL_REFUND_HOURS}-{FULL_REFUND_HOURS} hours before session: 50% refund"
        else:
            basis = f"<{PARTIAL_REFUND_HOURS} hours before session: no refund"

        if percent == 100:
            amount = credits_spent
        elif percent == 50:
            amount = math.floor(credits_spent * PARTIAL_REFUND_RATE)
        else:
            amount = 0

        return RefundDecision(percent=percent, amount=amount, policy_basis=basis)
