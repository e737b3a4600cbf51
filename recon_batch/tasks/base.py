"""
ReconciliationTask protocol and TaskRegistry.

Contract:
    ``ReconciliationTask`` is what the runner drives: it names the window a
    run may touch, opens the scanner over it, builds the accumulator from
    the existing output (loaded once), and writes the finalized accumulator.
    ``TaskRegistry`` stores registered tasks keyed by ``job_name``.

Architecture:
    recon_batch/tasks.  Tasks never commit and never open their own
    SAVEPOINTs -- the runner owns both.

Invariants enforced:
    One task per ``job_name``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from recon_batch.domain.merge import Accumulator
from recon_batch.domain.types import JobKind, ReconciliationWindow, WriteOutcome
from recon_batch.services.scanner import SourceScanner


@runtime_checkable
class ReconciliationTask(Protocol):
    """Interface every reconciliation job implements.

    Non-goals:
        - Does NOT manage transactions.
        - Does NOT retry; the next scheduled run is the retry.
    """

    @property
    def job_name(self) -> str: ...

    @property
    def job_kind(self) -> JobKind: ...

    @property
    def description(self) -> str: ...

    @property
    def chunk_size(self) -> int: ...

    def resolve_window(self, as_of: datetime) -> ReconciliationWindow:
        """The slice of time a run at ``as_of`` is allowed to touch."""
        ...

    def open_scanner(
        self,
        session: Session,
        window: ReconciliationWindow,
    ) -> SourceScanner:
        ...

    def start_accumulator(
        self,
        session: Session,
        window: ReconciliationWindow,
    ) -> Accumulator:
        """Load existing output for ``window`` and wrap it in a fresh accumulator."""
        ...

    def write(
        self,
        session: Session,
        accumulator: Accumulator,
        run_id: UUID,
        actor_id: UUID,
        as_of: datetime,
    ) -> WriteOutcome:
        """Persist the accumulator's pending drafts (SAVEPOINT active)."""
        ...


class TaskRegistry:
    """Registry mapping job names to ReconciliationTask implementations.

    Contract:
        - ``register()`` adds a task; raises ValueError on duplicate.
        - ``get()`` retrieves by job_name; raises KeyError if missing.
        - ``list_tasks()`` returns all registered job names, sorted.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, ReconciliationTask] = {}

    def register(self, task: ReconciliationTask) -> None:
        if task.job_name in self._tasks:
            raise ValueError(f"Job '{task.job_name}' is already registered")
        self._tasks[task.job_name] = task

    def get(self, job_name: str) -> ReconciliationTask:
        try:
            return self._tasks[job_name]
        except KeyError:
            raise KeyError(
                f"No job registered as '{job_name}'. "
                f"Available: {sorted(self._tasks.keys())}"
            ) from None

    def list_tasks(self) -> tuple[str, ...]:
        return tuple(sorted(self._tasks.keys()))

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, job_name: str) -> bool:
        return job_name in self._tasks
