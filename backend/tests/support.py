# backend/tests/support.py
"""Shared fakes and helpers for the test suite."""

from datetime import datetime, timedelta, timezone
import threading
from typing import Any, Dict, List, Tuple

from sqlalchemy.orm import Session

from sessionbook.models import CreditAccount
from sessionbook.services.ports import RoomLinks

# Sunday 2030-01-06 12:00 UTC; the next day is a Monday.
FIXED_NOW = datetime(2030, 1, 6, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def notify(self, user_id: str, kind: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.sent.append((user_id, kind, payload))

    def kinds_for(self, user_id: str) -> List[str]:
        return [kind for recipient, kind, _ in self.sent if recipient == user_id]


class FailingNotifier:
    def notify(self, user_id: str, kind: str, payload: Dict[str, Any]) -> None:
        raise ConnectionError("mail relay unreachable")


class FakeRoomProvisioner:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: List[Tuple[str, str, str]] = []

    def create_room(self, booking_id: str, instructor_id: str, student_id: str) -> RoomLinks:
        self.calls.append((booking_id, instructor_id, student_id))
        if self.fail:
            raise RuntimeError("video platform down")
        return RoomLinks(
            join_url_instructor=f"https://rooms.test/{booking_id}?role=host",
            join_url_student=f"https://rooms.test/{booking_id}?role=guest",
            room_id=f"room-{booking_id}",
        )


def fund(db: Session, user_id: str, balance: int) -> CreditAccount:
    account = db.get(CreditAccount, user_id)
    if account is None:
        account = CreditAccount(user_id=user_id, balance=balance)
        db.add(account)
    else:
        account.balance = balance
    db.commit()
    return account


def balance_of(db: Session, user_id: str) -> int:
    value = db.query(CreditAccount.balance).filter(CreditAccount.user_id == user_id).scalar()
    return int(value or 0)
