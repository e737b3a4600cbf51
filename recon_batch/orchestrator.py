"""
ReconciliationOrchestrator -- DI container for the reconciliation engine.

Contract:
    Builds the TaskRegistry from an ``EngineConfig`` (one task per
    configured rollup and reminder), creates runners, and optionally
    creates a scheduler.  Single place where engine dependencies are
    composed.

Invariants enforced:
    - Clock injection: every runner and scheduler receives the same Clock.
"""

from __future__ import annotations

from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from recon_batch.services.runner import ReconciliationRunner
from recon_batch.services.scheduler import ReconciliationScheduler
from recon_batch.tasks.base import TaskRegistry
from recon_batch.tasks.reminder import StalenessReminderTask
from recon_batch.tasks.rollup import SnapshotRollupTask
from recon_config.schema import EngineConfig
from recon_kernel.domain.clock import Clock, SystemClock
from recon_kernel.logging_config import get_logger

logger = get_logger("batch.orchestrator")


def build_task_registry(config: EngineConfig) -> TaskRegistry:
    """One task per configured job.

    Raises:
        ConfigurationError: a job names an unknown source or column.
    """
    registry = TaskRegistry()
    for rollup in config.rollups:
        registry.register(SnapshotRollupTask(rollup))
    for reminder in config.reminders:
        registry.register(StalenessReminderTask(reminder))
    return registry


class ReconciliationOrchestrator:
    """DI container for the reconciliation engine.

    Non-goals:
        - Does NOT start the scheduler automatically -- caller decides.
        - Does NOT manage session lifecycle -- caller controls commits.
    """

    def __init__(
        self,
        session: Session,
        task_registry: TaskRegistry,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ) -> None:
        self._session = session
        self._task_registry = task_registry
        self._config = config or EngineConfig()
        self._clock = clock or SystemClock()
        self._actor_id = actor_id or uuid4()

    @classmethod
    def from_config(
        cls,
        session: Session,
        config: EngineConfig,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ) -> ReconciliationOrchestrator:
        registry = build_task_registry(config)
        logger.info(
            "orchestrator_configured",
            extra={"jobs": list(registry.list_tasks()), "checksum": config.checksum},
        )
        return cls(
            session=session,
            task_registry=registry,
            config=config,
            clock=clock,
            actor_id=actor_id,
        )

    def create_runner(self, session: Session | None = None) -> ReconciliationRunner:
        return ReconciliationRunner(
            session=session or self._session,
            task_registry=self._task_registry,
            clock=self._clock,
        )

    def create_scheduler(
        self,
        session_factory: Callable[[], Session],
        tick_interval_seconds: int = 60,
    ) -> ReconciliationScheduler:
        """Create a scheduler over the configured schedules.

        Args:
            session_factory: Callable returning a new session per fired job.
            tick_interval_seconds: Polling interval (default 60s).
        """
        clock = self._clock
        registry = self._task_registry

        def runner_factory(session: Session) -> ReconciliationRunner:
            return ReconciliationRunner(session=session, task_registry=registry, clock=clock)

        return ReconciliationScheduler(
            session_factory=session_factory,
            runner_factory=runner_factory,
            schedules=self._config.schedules,
            clock=clock,
            actor_id=self._actor_id,
            tick_interval_seconds=tick_interval_seconds,
        )

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def task_registry(self) -> TaskRegistry:
        return self._task_registry

    @property
    def actor_id(self) -> UUID:
        return self._actor_id
