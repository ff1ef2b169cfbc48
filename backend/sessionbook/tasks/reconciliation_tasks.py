# backend/sessionbook/tasks/reconciliation_tasks.py
"""
Celery tasks for the reconciliation sweeps.

Each task opens its own session, runs one sweep and closes the session.
Failures are logged and swallowed: the next scheduled tick simply runs the
sweep again, and the sweeps' conditional writes keep reruns safe.
"""

from __future__ import annotations

from typing import Optional

from celery.utils.log import get_task_logger
from sqlalchemy.orm import sessionmaker

from ..core.timezone_utils import Clock
from ..database import SessionLocal, session_scope
from ..services.ports import Notifier
from ..services.reconciliation_service import ReconciliationService
from .beat_schedule import MISSED_SESSIONS_TASK, UPCOMING_REMINDERS_TASK
from .celery_app import celery_app

logger = get_task_logger(__name__)


def run_missed_session_sweep(
    session_factory: Optional[sessionmaker] = None,
    notifier: Optional[Notifier] = None,
    clock: Optional[Clock] = None,
) -> int:
    """Run the missed-session sweep in a fresh session."""
    with session_scope(session_factory or SessionLocal) as db:
        service = ReconciliationService(db, notifier=notifier, clock=clock)
        return service.mark_missed_sessions()


def run_reminder_sweep(
    session_factory: Optional[sessionmaker] = None,
    notifier: Optional[Notifier] = None,
    clock: Optional[Clock] = None,
) -> int:
    """Run the reminder sweep in a fresh session."""
    with session_scope(session_factory or SessionLocal) as db:
        service = ReconciliationService(db, notifier=notifier, clock=clock)
        return service.send_upcoming_reminders()


@celery_app.task(name=MISSED_SESSIONS_TASK, max_retries=0, queue="reconciliation")
def mark_missed_sessions() -> int:
    """
    Transition overdue scheduled bookings to missed.

    Returns the number of bookings marked, or 0 when the run failed.
    """
    try:
        marked = run_missed_session_sweep()
    except Exception:
        logger.exception("Missed-session sweep failed; will retry on next tick")
        return 0
    if marked:
        logger.info("Marked %s bookings as missed", marked)
    return marked


@celery_app.task(name=UPCOMING_REMINDERS_TASK, max_retries=0, queue="reconciliation")
def send_upcoming_reminders() -> int:
    """
    Send reminders for sessions starting within the lookahead window.

    Returns the number of reminders sent, or 0 when the run failed.
    """
    try:
        sent = run_reminder_sweep()
    except Exception:
        logger.exception("Reminder sweep failed; will retry on next tick")
        return 0
    if sent:
        logger.info("Sent %s session reminders", sent)
    return sent
