# backend/tests/tasks/test_beat_schedule.py
from datetime import timedelta

from celery.schedules import crontab

from sessionbook.core.config import settings
from sessionbook.tasks.beat_schedule import (
    MISSED_SESSIONS_TASK,
    UPCOMING_REMINDERS_TASK,
    get_beat_schedule,
)
from sessionbook.tasks.celery_app import create_celery_app


def test_production_schedule_uses_crontab():
    schedule = get_beat_schedule("production")

    assert schedule["mark-missed-sessions"]["task"] == MISSED_SESSIONS_TASK
    assert schedule["send-upcoming-session-reminders"]["task"] == UPCOMING_REMINDERS_TASK
    assert isinstance(schedule["mark-missed-sessions"]["schedule"], crontab)
    assert schedule["mark-missed-sessions"]["options"]["queue"] == "reconciliation"


def test_development_schedule_uses_configured_intervals():
    schedule = get_beat_schedule("development")

    assert schedule["mark-missed-sessions"]["schedule"] == timedelta(
        seconds=settings.missed_sweep_interval_seconds
    )
    assert schedule["send-upcoming-session-reminders"]["schedule"] == timedelta(
        seconds=settings.reminder_sweep_interval_seconds
    )


def test_unknown_environment_falls_back_to_base():
    assert get_beat_schedule("staging").keys() == get_beat_schedule("production").keys()


def test_celery_app_configuration():
    app = create_celery_app()

    assert app.main == "sessionbook"
    assert app.conf.task_serializer == "json"
    assert app.conf.timezone == "UTC"
    assert app.conf.task_routes["sessionbook.reconciliation.*"] == {"queue": "reconciliation"}
    assert set(app.conf.beat_schedule) == {
        "mark-missed-sessions",
        "send-upcoming-session-reminders",
    }
