"""
Contracts for the collaborators the booking engine calls.

Services take these at construction so tests (and other deployments) can
substitute their own implementations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class CourseInfo:
    """What booking decisions need to know about a course."""

    id: str
    instructor_id: str
    price_per_hour: int
    status: str
    single_session_price: Optional[int] = None
    full_course_price: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass(frozen=True)
class RoomLinks:
    join_url_instructor: str
    join_url_student: str
    room_id: Optional[str] = None


@runtime_checkable
class CatalogLookup(Protocol):
    def get_course(self, course_id: str) -> Optional[CourseInfo]: ...

    def is_enrolled(self, student_id: str, course_id: str) -> bool: ...


@runtime_checkable
class CreditLedger(Protocol):
    """
    Credit balance operations.

    Implementations must join the caller's unit of work: a debit followed by
    a failed booking write must be rolled back with it.
    """

    def get_balance(self, user_id: str) -> int: ...

    def debit(
        self, user_id: str, amount: int, memo: str, booking_id: Optional[str] = None
    ) -> None: ...

    def credit(
        self,
        user_id: str,
        amount: int,
        memo: str,
        booking_id: Optional[str] = None,
        transaction_type: Optional[str] = None,
    ) -> None: ...


@runtime_checkable
class RoomProvisioner(Protocol):
    def create_room(self, booking_id: str, instructor_id: str, student_id: str) -> RoomLinks: ...


@runtime_checkable
class Notifier(Protocol):
    def notify(self, user_id: str, kind: str, payload: Dict[str, Any]) -> None: ...
