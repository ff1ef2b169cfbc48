# backend/sessionbook/services/reconciliation_service.py
"""
Periodic reconciliation of booking state.

Two independent sweeps, both safe to run repeatedly and concurrently with
booking writes:

- Missed sessions: scheduled bookings whose start has passed (plus the
  configured grace) become ``missed``. The write is conditioned on the row
  still being ``scheduled`` so a concurrent cancellation is never
  overwritten. No credits move.
- Reminders: scheduled bookings starting within the lookahead window get
  one reminder per participant. A reminder row is claimed and committed
  before dispatch, so overlapping runs never send twice.
"""

from __future__ import annotations

from datetime import timedelta
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import DomainException, RepositoryException, ServiceException
from ..core.external_calls import call_with_timeout
from ..core.timezone_utils import Clock
from ..events import BookingMissed, BookingReminder
from ..models.booking import BookingStatus, ReminderType
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .notifier import LoggingNotifier
from .ports import Notifier

logger = logging.getLogger(__name__)

MISSED_SWEEP = "missed_sessions"
REMINDER_SWEEP = "upcoming_reminders"


class ReconciliationService(BaseService):
    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db, clock)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.reminder_repository = RepositoryFactory.create_reminder_repository(db)
        self.notifier = notifier or LoggingNotifier()

    def _notify(self, user_id: str, kind: str, payload: dict) -> bool:
        try:
            call_with_timeout("notifier", self.notifier.notify, user_id, kind, payload)
            return True
        except DomainException as exc:
            self.logger.warning(
                f"Notification {kind} to {user_id} failed: {exc.message}",
                extra={"user_id": user_id, "notification_kind": kind},
            )
            return False

    @BaseService.measure_operation("mark_missed_sessions")
    def mark_missed_sessions(self) -> int:
        """
        Transition overdue scheduled bookings to ``missed``.

        Returns:
            Number of bookings this run transitioned
        """
        now = self.now()
        cutoff = now - timedelta(minutes=settings.missed_grace_minutes)
        booking_ids = self.booking_repository.get_overdue_scheduled_ids(
            cutoff, settings.sweep_batch_size
        )

        marked = skipped = failed = 0
        for booking_id in booking_ids:
            try:
                with self.transaction():
                    changed = self.booking_repository.transition_if_status(
                        booking_id,
                        BookingStatus.SCHEDULED.value,
                        status=BookingStatus.MISSED.value,
                        missed_at=now,
                        updated_at=now,
                    )
            except (RepositoryException, ServiceException) as exc:
                failed += 1
                self.logger.error(f"Failed to mark booking {booking_id} as missed: {exc}")
                continue

            if not changed:
                # Cancelled, started or already swept by someone else
                skipped += 1
                continue

            marked += 1
            prometheus_metrics.record_transition(BookingStatus.MISSED.value, source="sweep")
            booking = self.booking_repository.get_booking(booking_id)
            if booking is not None:
                event = BookingMissed(booking_id=booking.id, start_at=booking.start_at)
                for recipient_id in (booking.student_id, booking.instructor_id):
                    self._notify(recipient_id, event.kind, event.to_dict())

        prometheus_metrics.record_sweep_item(MISSED_SWEEP, "marked", marked)
        prometheus_metrics.record_sweep_item(MISSED_SWEEP, "skipped", skipped)
        prometheus_metrics.record_sweep_item(MISSED_SWEEP, "failed", failed)
        if booking_ids:
            self.log_operation(
                "mark_missed_sessions", marked=marked, skipped=skipped, failed=failed
            )
        return marked

    @BaseService.measure_operation("send_upcoming_reminders")
    def send_upcoming_reminders(self) -> int:
        """
        Remind participants of sessions starting within the lookahead window.

        Returns:
            Number of reminders dispatched by this run
        """
        now = self.now()
        window_end = now + timedelta(minutes=settings.reminder_lookahead_minutes)
        bookings = self.booking_repository.get_scheduled_starting_between(
            now, window_end, settings.sweep_batch_size
        )

        sent = duplicates = failed = 0
        for booking in bookings:
            minutes_until_start = max(0, int((booking.start_at - now).total_seconds() // 60))
            for recipient_id, join_url in (
                (booking.student_id, booking.room_join_url_student),
                (booking.instructor_id, booking.room_join_url_instructor),
            ):
                try:
                    with self.transaction():
                        claimed = self.reminder_repository.claim(
                            booking.id, recipient_id, ReminderType.UPCOMING_SESSION.value
                        )
                except (RepositoryException, ServiceException) as exc:
                    failed += 1
                    self.logger.error(
                        f"Failed to claim reminder for booking {booking.id}: {exc}"
                    )
                    continue

                if not claimed:
                    duplicates += 1
                    continue

                event = BookingReminder(
                    booking_id=booking.id,
                    start_at=booking.start_at,
                    minutes_until_start=minutes_until_start,
                    reminder_type=ReminderType.UPCOMING_SESSION.value,
                    room_join_url=join_url,
                )
                if self._notify(recipient_id, event.kind, event.to_dict()):
                    sent += 1
                else:
                    failed += 1

        prometheus_metrics.record_sweep_item(REMINDER_SWEEP, "sent", sent)
        prometheus_metrics.record_sweep_item(REMINDER_SWEEP, "duplicate", duplicates)
        prometheus_metrics.record_sweep_item(REMINDER_SWEEP, "failed", failed)
        if bookings:
            self.log_operation(
                "send_upcoming_reminders", sent=sent, duplicates=duplicates, failed=failed
            )
        return sent
