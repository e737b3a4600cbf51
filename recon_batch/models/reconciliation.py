"""
ORM models owned by the reconciliation engine.

Contract:
    RollupSnapshotModel -- one row per (rollup_name, bucket_key), for all time.
    SnapshotFoldModel   -- fold ledger: one row per (rollup_name, source_id)
                           once that source record has been added to a
                           snapshot.  The scanner excludes ledgered records,
                           so no record is delivered to a rollup twice.
    FollowUpReminderModel -- staleness reminders; at most one OPEN row per
                           (reminder_type, owner_ref), enforced by the engine.
    ReconciliationRunModel -- run record and summary counters.

Invariants enforced:
    - UNIQUE (rollup_name, bucket_key): a racing second insert for a bucket
      fails the write instead of creating a duplicate.
    - UNIQUE (rollup_name, source_id): a record is folded into a rollup once.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from recon_batch.domain.merge import ReminderDraft, SnapshotDraft
from recon_batch.domain.period_key import EntityKey, PeriodKey
from recon_batch.domain.types import (
    BucketMode,
    ChunkError,
    JobKind,
    ReconciliationWindow,
    RunStatus,
    RunSummary,
)
from recon_kernel.db.base import TrackedBase, UUIDString
from recon_kernel.domain.clock import ensure_utc


class RollupSnapshotModel(TrackedBase):
    """Aggregated totals for one bucket of one rollup."""

    __tablename__ = "rollup_snapshots"

    __table_args__ = (
        UniqueConstraint("rollup_name", "bucket_key", name="uq_rollup_snapshots_bucket"),
        Index("ix_rollup_snapshots_period", "rollup_name", "period_start"),
    )

    rollup_name: Mapped[str] = mapped_column(String(100), nullable=False)
    bucket_key: Mapped[str] = mapped_column(String(20), nullable=False)
    bucket_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    period_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    # measure name -> Decimal rendered as string (exact, dialect independent)
    totals: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    @property
    def period_key(self) -> PeriodKey:
        return PeriodKey(
            mode=BucketMode(self.bucket_mode),
            year=self.period_year,
            month=self.period_month,
            week=self.period_week,
        )

    def to_draft(self) -> SnapshotDraft:
        return SnapshotDraft(
            key=self.period_key,
            snapshot_id=self.id,
            totals={k: Decimal(v) for k, v in (self.totals or {}).items()},
            record_count=self.record_count,
        )

    def apply_draft(self, draft: SnapshotDraft, run_id: UUID, actor_id: UUID) -> None:
        """Overwrite aggregate fields with the merged draft."""
        self.totals = _render_totals(draft.totals)
        self.record_count = draft.record_count
        self.last_run_id = run_id
        self.updated_by_id = actor_id

    @classmethod
    def from_draft(
        cls,
        rollup_name: str,
        draft: SnapshotDraft,
        run_id: UUID,
        actor_id: UUID,
    ) -> RollupSnapshotModel:
        key = draft.key
        return cls(
            rollup_name=rollup_name,
            bucket_key=key.bucket_key,
            bucket_mode=key.mode.value,
            period_year=key.year,
            period_month=key.month,
            period_week=key.week,
            period_start=draft.period_start,
            period_end=draft.period_end,
            totals=_render_totals(draft.totals),
            record_count=draft.record_count,
            last_run_id=run_id,
            created_by_id=actor_id,
            updated_by_id=None,
        )


def _render_totals(totals: dict[str, Decimal]) -> dict[str, str]:
    return {name: str(amount) for name, amount in sorted(totals.items())}


class SnapshotFoldModel(TrackedBase):
    """Ledger row: source record ``source_id`` is inside ``bucket_key``."""

    __tablename__ = "snapshot_source_folds"

    __table_args__ = (
        UniqueConstraint("rollup_name", "source_id", name="uq_snapshot_folds_source"),
        Index("ix_snapshot_folds_bucket", "rollup_name", "bucket_key"),
    )

    rollup_name: Mapped[str] = mapped_column(String(100), nullable=False)
    source_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    bucket_key: Mapped[str] = mapped_column(String(20), nullable=False)
    run_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)


class FollowUpReminderModel(TrackedBase):
    """Follow-up reminder targeting one owning entity."""

    __tablename__ = "follow_up_reminders"

    __table_args__ = (
        Index("ix_follow_up_reminders_owner", "reminder_type", "owner_ref", "status"),
    )

    reminder_type: Mapped[str] = mapped_column(String(100), nullable=False)
    owner_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    source_record_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    triggered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    due_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def to_draft(self) -> ReminderDraft:
        return ReminderDraft(
            key=EntityKey(owner_ref=self.owner_ref),
            reminder_id=self.id,
            source_record_id=self.source_record_id,
            triggered_at=self.triggered_at,
        )


class ReconciliationRunModel(TrackedBase):
    """One execution of a reconciliation job."""

    __tablename__ = "reconciliation_runs"

    __table_args__ = (
        Index("ix_reconciliation_runs_job_started", "job_name", "started_at"),
        Index("ix_reconciliation_runs_status", "status"),
    )

    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    job_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    as_of: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    window_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    chunks_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    chunks_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_scanned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_folded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_skipped_invalid_timestamp: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False,
    )
    records_skipped_unowned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_suppressed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    buckets_touched: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    buckets_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    buckets_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    write_failures: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    chunk_errors: Mapped[list | None] = mapped_column(JSON, nullable=True)
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    correlation_id: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def to_summary(self) -> RunSummary:
        return RunSummary(
            run_id=self.id,
            job_name=self.job_name,
            job_kind=JobKind(self.job_kind),
            status=RunStatus(self.status),
            window=ReconciliationWindow(
                start=ensure_utc(self.window_start),
                end=ensure_utc(self.window_end),
            ),
            as_of=ensure_utc(self.as_of),
            chunks_total=self.chunks_total,
            chunks_failed=self.chunks_failed,
            records_scanned=self.records_scanned,
            records_folded=self.records_folded,
            records_skipped_invalid_timestamp=self.records_skipped_invalid_timestamp,
            records_skipped_unowned=self.records_skipped_unowned,
            records_suppressed=self.records_suppressed,
            buckets_touched=self.buckets_touched,
            buckets_created=self.buckets_created,
            buckets_updated=self.buckets_updated,
            write_failures=self.write_failures,
            chunk_errors=tuple(ChunkError(**e) for e in (self.chunk_errors or ())),
            error_summary=self.error_summary,
            started_at=ensure_utc(self.started_at),
            completed_at=ensure_utc(self.completed_at) if self.completed_at else None,
            correlation_id=self.correlation_id,
        )
