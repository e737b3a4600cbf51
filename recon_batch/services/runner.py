"""
ReconciliationRunner -- job runner and chunk coordinator.

Contract:
    ``run()`` drives one job through IDLE -> SCANNING -> FINALIZING -> IDLE:

    1. Resolve the window from ``as_of`` (clock-injected when omitted).
    2. Load existing output once and wrap it in the run's accumulator.
    3. Plan the chunks, then for each chunk fetch (own SAVEPOINT) and fold.
       A chunk that fails to fetch or fold is recorded and skipped; the
       remaining chunks still reach the write.
    4. Write every pending draft in one SAVEPOINT.  All or nothing.

    Cancellation is checked between chunks.  A cancelled run discards its
    accumulator and writes nothing.

    Every run leaves a ``ReconciliationRunModel`` row, including failed and
    cancelled ones.

Architecture: recon_batch/services.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
    - Does NOT retry a failed chunk or write.  Skipped chunks hold source
      rows that are not in the fold ledger, so the next run picks them up.
    - Does NOT lock against an overlapping run of the same job.
"""

from __future__ import annotations

import threading
import time
from dataclasses import replace
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from recon_batch.domain.merge import Accumulator
from recon_batch.domain.types import (
    ChunkError,
    ChunkFold,
    ReconciliationWindow,
    RunPhase,
    RunStatus,
    RunSummary,
    WriteOutcome,
)
from recon_batch.models.reconciliation import ReconciliationRunModel
from recon_batch.tasks.base import ReconciliationTask, TaskRegistry
from recon_kernel.domain.clock import Clock, SystemClock, ensure_utc
from recon_kernel.exceptions import (
    ChunkFoldError,
    FetchFailureError,
    JobNotRegisteredError,
    WriteFailureError,
)
from recon_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.runner")


class ReconciliationRunner:
    """Runs reconciliation jobs chunk by chunk against one session."""

    def __init__(
        self,
        session: Session,
        task_registry: TaskRegistry,
        clock: Clock | None = None,
    ):
        self._session = session
        self._task_registry = task_registry
        self._clock = clock or SystemClock()
        self._phase = RunPhase.IDLE

    @property
    def phase(self) -> RunPhase:
        return self._phase

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(
        self,
        job_name: str,
        actor_id: UUID,
        as_of: datetime | None = None,
        cancel: threading.Event | None = None,
        correlation_id: str | None = None,
    ) -> RunSummary:
        """Run ``job_name`` once over the window containing ``as_of``.

        Raises:
            JobNotRegisteredError: If no task is registered as ``job_name``.
            RuntimeError: If this runner is already mid-run.
        """
        if job_name not in self._task_registry:
            raise JobNotRegisteredError(job_name, self._task_registry.list_tasks())
        if self._phase != RunPhase.IDLE:
            raise RuntimeError(f"Runner is busy ({self._phase.value})")

        task = self._task_registry.get(job_name)
        as_of = ensure_utc(as_of) if as_of is not None else self._clock.now()
        window = task.resolve_window(as_of)
        run_id = uuid4()
        correlation_id = correlation_id or str(run_id)

        with LogContext.bind(
            correlation_id=correlation_id,
            run_id=str(run_id),
            job_name=job_name,
            actor_id=str(actor_id),
        ):
            run_model = ReconciliationRunModel(
                id=run_id,
                job_name=job_name,
                job_kind=task.job_kind.value,
                status=RunStatus.RUNNING.value,
                as_of=as_of,
                window_start=window.start,
                window_end=window.end,
                started_at=self._clock.now(),
                correlation_id=correlation_id,
                created_by_id=actor_id,
            )
            self._session.add(run_model)
            self._session.flush()

            logger.info(
                "reconciliation_run_started",
                extra={
                    "job_kind": task.job_kind.value,
                    "window_start": window.start,
                    "window_end": window.end,
                    "as_of": as_of,
                },
            )

            start_time = time.monotonic()
            self._phase = RunPhase.SCANNING
            try:
                return self._execute(task, run_model, window, as_of, actor_id, cancel, start_time)
            finally:
                self._phase = RunPhase.IDLE

    def _execute(
        self,
        task: ReconciliationTask,
        run_model: ReconciliationRunModel,
        window: ReconciliationWindow,
        as_of: datetime,
        actor_id: UUID,
        cancel: threading.Event | None,
        start_time: float,
    ) -> RunSummary:
        savepoint = self._session.begin_nested()
        try:
            accumulator = task.start_accumulator(self._session, window)
            scanner = task.open_scanner(self._session, window)
            chunks = scanner.plan()
            savepoint.commit()
        except Exception as exc:
            savepoint.rollback()
            logger.exception("reconciliation_setup_failed")
            return self._finish(
                run_model, RunStatus.FAILED, start_time,
                error_summary=f"setup failed: {exc}",
            )

        run_model.chunks_total = len(chunks)
        totals = ChunkFold()
        errors: list[ChunkError] = []

        for chunk in chunks:
            if cancel is not None and cancel.is_set():
                return self._cancelled(run_model, totals, errors, chunk.index, start_time)

            savepoint = self._session.begin_nested()
            try:
                records = scanner.fetch(chunk)
                savepoint.commit()
            except Exception as exc:
                savepoint.rollback()
                error = FetchFailureError(task.job_name, chunk.index, str(exc))
                errors.append(self._chunk_error(chunk, error))
                logger.warning(
                    "chunk_fetch_failed",
                    extra={
                        "chunk_index": chunk.index,
                        "after_seq": chunk.after_seq,
                        "through_seq": chunk.through_seq,
                        "error": str(exc),
                    },
                )
                continue

            try:
                fold = accumulator.fold_chunk(records)
            except Exception as exc:
                error = ChunkFoldError(task.job_name, chunk.index, str(exc))
                errors.append(self._chunk_error(chunk, error))
                logger.warning(
                    "chunk_fold_failed",
                    extra={
                        "chunk_index": chunk.index,
                        "records": len(records),
                        "error": str(exc),
                    },
                )
                continue

            totals = totals.plus(fold)
            if fold.skipped_invalid_timestamp or fold.skipped_unowned:
                logger.warning(
                    "records_skipped",
                    extra={
                        "chunk_index": chunk.index,
                        "invalid_timestamp": fold.skipped_invalid_timestamp,
                        "unowned": fold.skipped_unowned,
                    },
                )
            logger.debug(
                "chunk_folded",
                extra={
                    "chunk_index": chunk.index,
                    "scanned": fold.scanned,
                    "folded": fold.folded,
                },
            )

        if cancel is not None and cancel.is_set():
            return self._cancelled(run_model, totals, errors, len(chunks), start_time)

        self._apply_counters(run_model, totals, errors, accumulator)

        if chunks and len(errors) == len(chunks):
            return self._finish(
                run_model, RunStatus.FAILED, start_time,
                error_summary=f"all {len(chunks)} chunk(s) failed",
            )

        self._phase = RunPhase.FINALIZING
        outcome = self._write(task, accumulator, run_model, as_of, actor_id)
        if outcome is None:
            return self._finish(
                run_model, RunStatus.FAILED, start_time,
                error_summary=run_model.error_summary,
            )

        run_model.buckets_created = outcome.created
        run_model.buckets_updated = outcome.updated

        if errors:
            return self._finish(
                run_model, RunStatus.PARTIALLY_COMPLETED, start_time,
                error_summary=f"{len(errors)} chunk(s) skipped",
            )
        return self._finish(run_model, RunStatus.COMPLETED, start_time)

    def _write(
        self,
        task: ReconciliationTask,
        accumulator: Accumulator,
        run_model: ReconciliationRunModel,
        as_of: datetime,
        actor_id: UUID,
    ) -> WriteOutcome | None:
        """Write pending drafts in one SAVEPOINT; None if it rolled back."""
        pending = len(accumulator.pending())
        savepoint = self._session.begin_nested()
        try:
            outcome = task.write(self._session, accumulator, run_model.id, actor_id, as_of)
            savepoint.commit()
            return outcome
        except Exception as exc:
            savepoint.rollback()
            error = WriteFailureError(task.job_name, pending, str(exc))
            run_model.write_failures = pending
            run_model.error_summary = str(error)
            logger.error(
                "reconciliation_write_failed",
                extra={
                    "error_code": error.code,
                    "record_count": pending,
                    "error": str(exc),
                },
            )
            return None

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_run(self, run_id: UUID) -> RunSummary:
        """Get a run record by ID.

        Raises:
            LookupError: If run_id does not exist.
        """
        model = self._session.get(ReconciliationRunModel, run_id)
        if model is None:
            raise LookupError(f"Reconciliation run not found: {run_id}")
        return model.to_summary()

    def list_runs(self, job_name: str, limit: int = 50) -> tuple[RunSummary, ...]:
        """Most recent runs of ``job_name``, newest first."""
        models = self._session.execute(
            select(ReconciliationRunModel)
            .where(ReconciliationRunModel.job_name == job_name)
            .order_by(ReconciliationRunModel.started_at.desc())
            .limit(limit)
        ).scalars().all()
        return tuple(m.to_summary() for m in models)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _chunk_error(chunk, error: FetchFailureError | ChunkFoldError) -> ChunkError:
        return ChunkError(
            chunk_index=chunk.index,
            after_seq=chunk.after_seq,
            through_seq=chunk.through_seq,
            error_code=error.code,
            error_message=str(error),
        )

    @staticmethod
    def _apply_counters(
        run_model: ReconciliationRunModel,
        totals: ChunkFold,
        errors: list[ChunkError],
        accumulator: Accumulator | None,
    ) -> None:
        run_model.chunks_failed = len(errors)
        run_model.chunk_errors = [e.to_dict() for e in errors]
        run_model.records_scanned = totals.scanned
        run_model.records_folded = totals.folded
        run_model.records_skipped_invalid_timestamp = totals.skipped_invalid_timestamp
        run_model.records_skipped_unowned = totals.skipped_unowned
        run_model.records_suppressed = totals.suppressed
        if accumulator is not None:
            run_model.buckets_touched = accumulator.buckets_touched

    def _cancelled(
        self,
        run_model: ReconciliationRunModel,
        totals: ChunkFold,
        errors: list[ChunkError],
        next_chunk: int,
        start_time: float,
    ) -> RunSummary:
        self._apply_counters(run_model, totals, errors, None)
        logger.warning("reconciliation_run_cancelled", extra={"next_chunk": next_chunk})
        return self._finish(
            run_model, RunStatus.CANCELLED, start_time,
            error_summary=f"Cancelled before chunk {next_chunk}; nothing written",
        )

    def _finish(
        self,
        run_model: ReconciliationRunModel,
        status: RunStatus,
        start_time: float,
        error_summary: str | None = None,
    ) -> RunSummary:
        run_model.status = status.value
        run_model.completed_at = self._clock.now()
        run_model.error_summary = error_summary
        self._session.flush()

        duration_ms = int((time.monotonic() - start_time) * 1000)
        summary = replace(run_model.to_summary(), duration_ms=duration_ms)

        log = logger.error if status == RunStatus.FAILED else logger.info
        log(
            "reconciliation_run_finished",
            extra={
                "status": status.value,
                "chunks_total": summary.chunks_total,
                "chunks_failed": summary.chunks_failed,
                "records_scanned": summary.records_scanned,
                "records_folded": summary.records_folded,
                "records_skipped_invalid_timestamp": summary.records_skipped_invalid_timestamp,
                "buckets_touched": summary.buckets_touched,
                "write_failures": summary.write_failures,
                "duration_ms": duration_ms,
            },
        )
        return summary
