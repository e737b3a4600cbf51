"""
ReconciliationScheduler -- in-process polling scheduler.

Contract:
    Polls the configured schedules on an interval, evaluates
    ``should_fire()`` (pure) against the last recorded run of each job, and
    runs due jobs through ``ReconciliationRunner``.  Each fired job gets its
    own session and is committed on its own, so one failing job never rolls
    back another.

Architecture: recon_batch/services.  Uses recon_batch.domain.schedule for
    pure evaluation and recon_batch.services.runner for execution.

Invariants enforced:
    - All timestamps from the injected Clock.
    - Graceful shutdown: the stop signal is checked between jobs and is
      passed to the runner as its cancel event, so a stopping scheduler
      abandons the current run between chunks without writing.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Sequence
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from recon_batch.domain.schedule import compute_next_run, should_fire
from recon_batch.domain.types import JobSchedule
from recon_batch.models.reconciliation import ReconciliationRunModel
from recon_batch.services.runner import ReconciliationRunner
from recon_kernel.domain.clock import Clock, SystemClock, ensure_utc
from recon_kernel.logging_config import get_logger

logger = get_logger("batch.scheduler")


def last_run_started_at(session: Session, job_name: str) -> datetime | None:
    started = session.execute(
        select(func.max(ReconciliationRunModel.started_at)).where(
            ReconciliationRunModel.job_name == job_name,
        )
    ).scalar_one_or_none()
    return ensure_utc(started) if started is not None else None


class ReconciliationScheduler:
    """In-process polling scheduler for configured reconciliation jobs.

    Non-goals:
        - NOT a distributed scheduler (no leader election, no locking).
        - Does NOT handle timezone conversions (expects UTC).
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        runner_factory: Callable[[Session], ReconciliationRunner],
        schedules: Sequence[JobSchedule],
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        tick_interval_seconds: int = 60,
    ):
        self._session_factory = session_factory
        self._runner_factory = runner_factory
        self._schedules = tuple(schedules)
        self._clock = clock or SystemClock()
        self._actor_id = actor_id or uuid4()
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> int:
        """Evaluate every schedule and run the due ones.

        Returns the number of jobs that were run.
        """
        now = self._clock.now()
        fired = 0

        for schedule in self._schedules:
            if self._stop_event.is_set():
                break
            if self._fire_if_due(schedule, now):
                fired += 1

        return fired

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="reconciliation-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the scheduler thread to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _fire_if_due(self, schedule: JobSchedule, now: datetime) -> bool:
        session = self._session_factory()
        try:
            last_run_at = last_run_started_at(session, schedule.job_name)
            if not should_fire(schedule, last_run_at, now):
                return False

            runner = self._runner_factory(session)
            summary = runner.run(
                schedule.job_name,
                self._actor_id,
                as_of=now,
                cancel=self._stop_event,
            )
            session.commit()

            next_run = compute_next_run(schedule, now)
            logger.info(
                "schedule_fired",
                extra={
                    "job_name": schedule.job_name,
                    "run_id": str(summary.run_id),
                    "status": summary.status.value,
                    "next_run_at": str(next_run) if next_run else None,
                },
            )
            return True
        except Exception:
            session.rollback()
            logger.exception(
                "schedule_fire_failed",
                extra={"job_name": schedule.job_name},
            )
            return False
        finally:
            session.close()
