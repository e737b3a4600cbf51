"""
SourceScanner -- windowed, chunked reads of the source feed.

Contract:
    ``plan()`` is called once at run start.  It reads the seq span of the
    rows matching the window and cuts it into ``ChunkRange``s of at most
    ``chunk_size`` seq values, so no chunk can hold more than ``chunk_size``
    rows.  The plan is the run's stable cursor: a chunk that fails to fetch
    is skipped by range without disturbing its neighbours, and rows
    ingested after planning wait for the next run.

    ``fetch(chunk)`` returns the window's rows inside the chunk's seq range
    as frozen ``SourceRecord``s, in seq order.

    Rows whose bucketing timestamp is NULL are delivered when their
    ``created_at`` lies in the window, so the run can count them as skipped.

    With ``fold_scope`` set (rollups), rows already recorded in the fold
    ledger for that rollup are excluded: a source row is never delivered to
    the same rollup by two runs.

Architecture: recon_batch/services.  Read-only: never adds, flushes or
    commits.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.orm import Session

from recon_batch.domain.types import ChunkRange, ReconciliationWindow, SourceRecord
from recon_batch.models.reconciliation import SnapshotFoldModel
from recon_batch.models.source import SOURCE_MODELS
from recon_kernel.exceptions import ConfigurationError
from recon_kernel.logging_config import get_logger

logger = get_logger("batch.scanner")


@dataclass(frozen=True)
class SourceBinding:
    """Which model and columns a job reads."""

    source: str
    model: type
    timestamp_field: str
    owner_field: str | None = None
    measure_fields: tuple[str, ...] = ()
    status_field: str | None = "status"

    @classmethod
    def resolve(
        cls,
        source: str,
        timestamp_field: str,
        owner_field: str | None = None,
        measure_fields: tuple[str, ...] = (),
        status_field: str | None = "status",
    ) -> SourceBinding:
        """Look up ``source`` and check every named column exists.

        Raises:
            ConfigurationError: unknown source or column.
        """
        model = SOURCE_MODELS.get(source)
        if model is None:
            raise ConfigurationError(
                [f"unknown source '{source}' (known: {sorted(SOURCE_MODELS)})"]
            )
        columns = set(model.__table__.columns.keys())
        wanted = [timestamp_field, *measure_fields]
        if owner_field:
            wanted.append(owner_field)
        if status_field:
            wanted.append(status_field)
        missing = [f for f in wanted if f not in columns]
        if missing:
            raise ConfigurationError(
                [f"source '{source}' has no column '{f}'" for f in missing]
            )
        return cls(
            source=source,
            model=model,
            timestamp_field=timestamp_field,
            owner_field=owner_field,
            measure_fields=tuple(measure_fields),
            status_field=status_field,
        )

    def to_record(self, row: Any) -> SourceRecord:
        return SourceRecord(
            record_id=row.id,
            seq=row.seq,
            occurred_at=getattr(row, self.timestamp_field),
            owner_ref=getattr(row, self.owner_field) if self.owner_field else None,
            measures={m: getattr(row, m) for m in self.measure_fields},
            status=getattr(row, self.status_field) if self.status_field else None,
        )


class SourceScanner:
    """Chunked reader over one window of one source."""

    def __init__(
        self,
        session: Session,
        binding: SourceBinding,
        window: ReconciliationWindow,
        chunk_size: int,
        statuses: tuple[str, ...] = (),
        fold_scope: str | None = None,
        include_undated: bool = True,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._session = session
        self._binding = binding
        self._window = window
        self._chunk_size = chunk_size
        self._statuses = statuses
        self._fold_scope = fold_scope
        self._include_undated = include_undated

    @property
    def window(self) -> ReconciliationWindow:
        return self._window

    def plan(self) -> tuple[ChunkRange, ...]:
        """Partition the window's seq span into chunks (call once per run)."""
        model = self._binding.model
        low, high = self._session.execute(
            select(func.min(model.seq), func.max(model.seq)).where(*self._filters())
        ).one()

        if low is None:
            return ()

        chunks: list[ChunkRange] = []
        after = low - 1
        while after < high:
            through = min(after + self._chunk_size, high)
            chunks.append(ChunkRange(index=len(chunks), after_seq=after, through_seq=through))
            after = through

        logger.debug(
            "scan_planned",
            extra={
                "source": self._binding.source,
                "window_start": self._window.start,
                "window_end": self._window.end,
                "first_seq": low,
                "last_seq": high,
                "chunks": len(chunks),
            },
        )
        return tuple(chunks)

    def fetch(self, chunk: ChunkRange) -> tuple[SourceRecord, ...]:
        """Rows of the window inside ``chunk``, in seq order."""
        model = self._binding.model
        rows = self._session.execute(
            select(model)
            .where(
                *self._filters(),
                model.seq > chunk.after_seq,
                model.seq <= chunk.through_seq,
            )
            .order_by(model.seq)
        ).scalars().all()
        return tuple(self._binding.to_record(row) for row in rows)

    def _filters(self) -> list[Any]:
        model = self._binding.model
        ts = getattr(model, self._binding.timestamp_field)
        start, end = self._window.start, self._window.end

        in_window = and_(ts >= start, ts < end)
        if self._include_undated:
            in_window = or_(
                in_window,
                and_(ts.is_(None), model.created_at >= start, model.created_at < end),
            )

        filters: list[Any] = [in_window]
        if self._statuses and self._binding.status_field:
            filters.append(getattr(model, self._binding.status_field).in_(self._statuses))
        if self._fold_scope is not None:
            filters.append(
                ~exists().where(
                    SnapshotFoldModel.rollup_name == self._fold_scope,
                    SnapshotFoldModel.source_id == model.id,
                )
            )
        return filters
