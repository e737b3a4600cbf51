"""
recon_batch.domain.types -- Enums and frozen DTOs for reconciliation runs.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.  Mutable working state (drafts, accumulators) lives
in domain/merge.py, not here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping
from uuid import UUID


# =============================================================================
# Enums
# =============================================================================


class BucketMode(str, Enum):
    """How a source record is mapped to its bucket identity."""

    WEEKLY = "weekly"  # (year, month, week-of-month)
    MONTHLY = "monthly"  # (year, month)
    PER_ENTITY = "per_entity"  # owning entity (de-dup mode)


class WindowScope(str, Enum):
    """Width of the open period a rollup run scans."""

    MONTH = "month"
    WEEK = "week"


class JobKind(str, Enum):
    ROLLUP = "rollup"
    REMINDER = "reminder"


class RunStatus(str, Enum):
    """Run-level outcome recorded on ReconciliationRunModel."""

    RUNNING = "running"
    COMPLETED = "completed"  # Every chunk folded, write succeeded
    PARTIALLY_COMPLETED = "partially_completed"  # Some chunks skipped, write succeeded
    FAILED = "failed"  # Nothing written
    CANCELLED = "cancelled"  # Aborted between chunks, nothing written


class RunPhase(str, Enum):
    """Runner state machine: IDLE -> SCANNING -> FINALIZING -> IDLE."""

    IDLE = "idle"
    SCANNING = "scanning"
    FINALIZING = "finalizing"


class ReminderStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ScheduleFrequency(str, Enum):
    """Recurrence of a scheduled reconciliation job."""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ON_DEMAND = "on_demand"  # Manual trigger only


# =============================================================================
# Source / window DTOs
# =============================================================================


@dataclass(frozen=True)
class SourceRecord:
    """One transactional record as delivered by the scanner.

    ``measures`` maps measure name -> value; None means the upstream field
    is empty and folds as zero.
    """

    record_id: UUID
    seq: int
    occurred_at: datetime | None
    owner_ref: str | None = None
    measures: Mapping[str, Decimal | None] = field(default_factory=dict)
    status: str | None = None


@dataclass(frozen=True)
class ReconciliationWindow:
    """Half-open time range ``[start, end)`` a single run considers."""

    start: datetime
    end: datetime
    label: str = ""

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError(
                f"Window end {self.end} must be after start {self.start}"
            )

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts < self.end


@dataclass(frozen=True)
class ChunkRange:
    """One chunk of a run: source rows with ``after_seq < seq <= through_seq``."""

    index: int
    after_seq: int
    through_seq: int

    @property
    def width(self) -> int:
        return self.through_seq - self.after_seq


@dataclass(frozen=True)
class ChunkFold:
    """What folding one chunk did to the accumulator."""

    scanned: int = 0
    folded: int = 0
    skipped_invalid_timestamp: int = 0
    skipped_unowned: int = 0
    suppressed: int = 0  # de-dup mode: entity already has an open reminder

    def plus(self, other: ChunkFold) -> ChunkFold:
        return ChunkFold(
            scanned=self.scanned + other.scanned,
            folded=self.folded + other.folded,
            skipped_invalid_timestamp=(
                self.skipped_invalid_timestamp + other.skipped_invalid_timestamp
            ),
            skipped_unowned=self.skipped_unowned + other.skipped_unowned,
            suppressed=self.suppressed + other.suppressed,
        )


@dataclass(frozen=True)
class ChunkError:
    """A chunk that was skipped during a run."""

    chunk_index: int
    after_seq: int
    through_seq: int
    error_code: str
    error_message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_index": self.chunk_index,
            "after_seq": self.after_seq,
            "through_seq": self.through_seq,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class WriteOutcome:
    """Result of the end-of-run bulk upsert."""

    created: int = 0
    updated: int = 0
    folds_recorded: int = 0


# =============================================================================
# Run DTOs
# =============================================================================


@dataclass(frozen=True)
class RunSummary:
    """Immutable report of one reconciliation run.

    Returned by ``ReconciliationRunner.run()``; the scheduler trigger's exit
    report.
    """

    run_id: UUID
    job_name: str
    job_kind: JobKind
    status: RunStatus
    window: ReconciliationWindow
    as_of: datetime
    chunks_total: int = 0
    chunks_failed: int = 0
    records_scanned: int = 0
    records_folded: int = 0
    records_skipped_invalid_timestamp: int = 0
    records_skipped_unowned: int = 0
    records_suppressed: int = 0
    buckets_touched: int = 0
    buckets_created: int = 0
    buckets_updated: int = 0
    write_failures: int = 0
    chunk_errors: tuple[ChunkError, ...] = ()
    error_summary: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    correlation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": str(self.run_id),
            "job_name": self.job_name,
            "job_kind": self.job_kind.value,
            "status": self.status.value,
            "window_start": self.window.start.isoformat(),
            "window_end": self.window.end.isoformat(),
            "as_of": self.as_of.isoformat(),
            "chunks_total": self.chunks_total,
            "chunks_failed": self.chunks_failed,
            "records_scanned": self.records_scanned,
            "records_folded": self.records_folded,
            "records_skipped_invalid_timestamp": self.records_skipped_invalid_timestamp,
            "records_skipped_unowned": self.records_skipped_unowned,
            "records_suppressed": self.records_suppressed,
            "buckets_touched": self.buckets_touched,
            "buckets_created": self.buckets_created,
            "buckets_updated": self.buckets_updated,
            "write_failures": self.write_failures,
            "chunk_errors": [e.to_dict() for e in self.chunk_errors],
            "error_summary": self.error_summary,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class JobSchedule:
    """Recurring trigger for one reconciliation job.

    ``hour``/``minute`` pin the UTC time of day for daily and coarser
    frequencies; ``weekday`` (0=Monday) pins weekly runs and ``day`` pins
    monthly runs (clamped to the month length).
    """

    job_name: str
    frequency: ScheduleFrequency
    hour: int = 0
    minute: int = 0
    weekday: int = 0
    day: int = 1
    is_active: bool = True
