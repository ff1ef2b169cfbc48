# backend/sessionbook/tasks/__init__.py
"""
Background work for the session booking engine.

This package contains:
- The Celery app and beat schedule
- Reconciliation sweep tasks (missed sessions, upcoming reminders)
- An in-process sweep scheduler for deployments without Celery beat
"""

from .celery_app import BaseTask, celery_app
from .reconciliation_tasks import (
    mark_missed_sessions,
    run_missed_session_sweep,
    run_reminder_sweep,
    send_upcoming_reminders,
)
from .sweep_scheduler import ScheduledSweep, SweepScheduler, build_reconciliation_scheduler

__all__ = [
    "celery_app",
    "BaseTask",
    "mark_missed_sessions",
    "send_upcoming_reminders",
    "run_missed_session_sweep",
    "run_reminder_sweep",
    "ScheduledSweep",
    "SweepScheduler",
    "build_reconciliation_scheduler",
]
