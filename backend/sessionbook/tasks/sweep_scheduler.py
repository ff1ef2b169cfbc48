# backend/sessionbook/tasks/sweep_scheduler.py
"""
In-process scheduler for periodic sweeps.

An alternative to Celery beat for single-process deployments and tests.
Jobs run on one background thread; ``stop()`` sets a cancellation token
that is checked between jobs and while waiting for the next tick.
``run_due(now)`` runs whatever is due without any thread, so tests can
drive the schedule deterministically.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from ..core.config import settings
from ..core.timezone_utils import Clock, utc_now
from ..services.ports import Notifier

logger = logging.getLogger(__name__)

MISSED_SWEEP_NAME = "missed_sessions"
REMINDER_SWEEP_NAME = "upcoming_reminders"


@dataclass
class ScheduledSweep:
    name: str
    interval: timedelta
    job: Callable[[], Any]
    next_run_at: Optional[datetime] = None
    runs: int = 0
    failures: int = 0
    last_result: Any = None
    last_error: Optional[str] = field(default=None, repr=False)


class SweepScheduler:
    """Runs registered jobs at fixed intervals until stopped."""

    def __init__(self, clock: Optional[Clock] = None, tick_seconds: float = 1.0):
        self.clock: Clock = clock or utc_now
        self.tick_seconds = tick_seconds
        self._sweeps: Dict[str, ScheduledSweep] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def stop_event(self) -> threading.Event:
        """Cancellation token; once set, no job runs until start() clears it."""
        return self._stop_event

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def sweeps(self) -> Dict[str, ScheduledSweep]:
        return dict(self._sweeps)

    def register(
        self,
        name: str,
        interval_seconds: float,
        job: Callable[[], Any],
        run_immediately: bool = True,
    ) -> ScheduledSweep:
        """
        Add a job.

        With ``run_immediately`` the job is due on the next ``run_due``;
        otherwise it first runs one interval from now.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        interval = timedelta(seconds=interval_seconds)
        sweep = ScheduledSweep(
            name=name,
            interval=interval,
            job=job,
            next_run_at=None if run_immediately else self.clock() + interval,
        )
        with self._lock:
            if name in self._sweeps:
                raise ValueError(f"Sweep already registered: {name}")
            self._sweeps[name] = sweep
        return sweep

    def run_due(self, now: Optional[datetime] = None) -> List[str]:
        """
        Run every job due at ``now``.

        A failing job is logged and rescheduled like a successful one. Nothing
        runs while the cancellation token is set.

        Returns:
            Names of the jobs that ran, in registration order
        """
        now = now or self.clock()
        with self._lock:
            due = [
                sweep
                for sweep in self._sweeps.values()
                if sweep.next_run_at is None or sweep.next_run_at <= now
            ]

        ran: List[str] = []
        for sweep in due:
            if self._stop_event.is_set():
                break
            try:
                sweep.last_result = sweep.job()
                sweep.last_error = None
            except Exception as exc:
                sweep.failures += 1
                sweep.last_error = str(exc)
                logger.exception(f"Sweep {sweep.name} failed; will retry next interval")
            sweep.runs += 1
            sweep.next_run_at = now + sweep.interval
            ran.append(sweep.name)
        return ran

    def _loop(self) -> None:
        logger.info("Sweep scheduler started with %d sweeps", len(self._sweeps))
        while not self._stop_event.is_set():
            self.run_due()
            self._stop_event.wait(self.tick_seconds)
        logger.info("Sweep scheduler stopped")

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="sweep-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the loop to exit and wait for the current job to finish."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        self._thread = None


def build_reconciliation_scheduler(
    session_factory: Optional[sessionmaker] = None,
    notifier: Optional[Notifier] = None,
    clock: Optional[Clock] = None,
    tick_seconds: float = 1.0,
) -> SweepScheduler:
    """Scheduler running both reconciliation sweeps at their configured intervals."""
    from .reconciliation_tasks import run_missed_session_sweep, run_reminder_sweep

    scheduler = SweepScheduler(clock=clock, tick_seconds=tick_seconds)
    scheduler.register(
        MISSED_SWEEP_NAME,
        settings.missed_sweep_interval_seconds,
        lambda: run_missed_session_sweep(session_factory, notifier, clock),
    )
    scheduler.register(
        REMINDER_SWEEP_NAME,
        settings.reminder_sweep_interval_seconds,
        lambda: run_reminder_sweep(session_factory, notifier, clock),
    )
    return scheduler
