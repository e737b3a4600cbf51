"""
Snapshot rollup task -- the weekly/monthly summary instance of the engine.

Each run scans the open period containing ``as_of``, skips source rows
already in this rollup's fold ledger, and merges the rest into the
persisted snapshots of that period.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from recon_batch.domain.merge import RollupAccumulator
from recon_batch.domain.types import JobKind, ReconciliationWindow, WriteOutcome
from recon_batch.domain.window import open_period_window
from recon_batch.services.loader import load_snapshots
from recon_batch.services.scanner import SourceBinding, SourceScanner
from recon_batch.services.writer import SnapshotWriter
from recon_config.schema import RollupDefinition


class SnapshotRollupTask:
    """Sums configured measures per calendar bucket into rollup_snapshots."""

    job_kind = JobKind.ROLLUP

    def __init__(self, definition: RollupDefinition) -> None:
        self._definition = definition
        self._binding = SourceBinding.resolve(
            source=definition.source,
            timestamp_field=definition.timestamp_field,
            owner_field=definition.owner_field,
            measure_fields=definition.measures,
        )

    @property
    def job_name(self) -> str:
        return self._definition.name

    @property
    def description(self) -> str:
        return self._definition.description or (
            f"{self._definition.bucket_mode.value} rollup of {self._definition.source}"
        )

    @property
    def chunk_size(self) -> int:
        return self._definition.chunk_size

    @property
    def definition(self) -> RollupDefinition:
        return self._definition

    def resolve_window(self, as_of: datetime) -> ReconciliationWindow:
        return open_period_window(as_of, self._definition.window_scope)

    def open_scanner(self, session: Session, window: ReconciliationWindow) -> SourceScanner:
        return SourceScanner(
            session,
            self._binding,
            window,
            chunk_size=self._definition.chunk_size,
            statuses=self._definition.statuses,
            fold_scope=self._definition.name,
        )

    def start_accumulator(
        self,
        session: Session,
        window: ReconciliationWindow,
    ) -> RollupAccumulator:
        return RollupAccumulator(
            self._definition.bucket_mode,
            self._definition.measures,
            existing=load_snapshots(session, self._definition.name, window),
        )

    def write(
        self,
        session: Session,
        accumulator: RollupAccumulator,
        run_id: UUID,
        actor_id: UUID,
        as_of: datetime,
    ) -> WriteOutcome:
        return SnapshotWriter(session).write(
            self._definition.name, accumulator.pending(), run_id, actor_id,
        )
