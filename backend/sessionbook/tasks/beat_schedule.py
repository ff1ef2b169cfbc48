# backend/sessionbook/tasks/beat_schedule.py
"""
Celery Beat schedule configuration for the session booking engine.

The missed-session sweep runs hourly and the reminder sweep every 15
minutes. Both are idempotent, so overlapping or repeated ticks are harmless.
"""

from datetime import timedelta
from typing import Any

from celery.schedules import crontab

from ..core.config import settings

MISSED_SESSIONS_TASK = "sessionbook.reconciliation.mark_missed_sessions"
UPCOMING_REMINDERS_TASK = "sessionbook.reconciliation.send_upcoming_reminders"

# Main beat schedule configuration
CELERYBEAT_SCHEDULE: dict[str, dict[str, Any]] = {
    "mark-missed-sessions": {
        "task": MISSED_SESSIONS_TASK,
        "schedule": crontab(minute=5),  # Hourly at :05
        "options": {
            "queue": "reconciliation",
            "priority": 5,
        },
    },
    "send-upcoming-session-reminders": {
        "task": UPCOMING_REMINDERS_TASK,
        "schedule": crontab(minute="*/15"),  # Every 15 minutes
        "options": {
            "queue": "reconciliation",
            "priority": 7,
        },
    },
}

# Environment-specific overrides
SCHEDULE_CONFIG: dict[str, dict[str, dict[str, Any]]] = {
    "development": {
        "mark-missed-sessions": {
            "task": MISSED_SESSIONS_TASK,
            "schedule": timedelta(seconds=settings.missed_sweep_interval_seconds),
            "options": {"queue": "celery"},
        },
        "send-upcoming-session-reminders": {
            "task": UPCOMING_REMINDERS_TASK,
            "schedule": timedelta(seconds=settings.reminder_sweep_interval_seconds),
            "options": {"queue": "celery"},
        },
    },
}


def get_beat_schedule(environment: str = "production") -> dict[str, dict[str, Any]]:
    """
    Get the beat schedule for the specified environment.

    Args:
        environment: The environment name (production, staging, development, test)

    Returns:
        Mapping of task name to Celery beat configuration dict
    """
    base: dict[str, dict[str, Any]] = dict(CELERYBEAT_SCHEDULE)
    overrides = SCHEDULE_CONFIG.get(environment)
    if overrides:
        base.update(overrides)
    return base
