"""
Aggregation / merge core -- folds source chunks into per-bucket drafts.

Contract:
    An accumulator is created once per run from the existing-output mapping
    (loaded once), receives every chunk of the run in turn, and is handed
    to the writer at the end.  It is never reset between chunks and is
    discarded after the run.

    Lookup order for a key: drafts touched this run, then loaded existing
    records, then a fresh draft.  Existing drafts are copied on first touch
    so a discarded run leaves the loaded mapping untouched.

Invariants enforced:
    - Null-safe addition: an absent measure folds as zero, never poisons a
      total.
    - Chunk atomicity: a chunk is reduced into a chunk-local partial first
      and merged only if the whole chunk reduced cleanly.
    - Order independence: Decimal addition under a 60-digit context is
      exact for Numeric(38, 9) inputs, so chunk and record order never
      change totals.  De-dup mode keeps the earliest triggering record per
      entity, which is also order independent.

Architecture: recon_batch/domain.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Context, Decimal
from typing import Mapping, Protocol, Sequence
from uuid import UUID

from recon_batch.domain.period_key import EntityKey, PeriodKey, derive_key
from recon_batch.domain.types import BucketMode, ChunkFold, SourceRecord
from recon_kernel.domain.clock import ensure_utc
from recon_kernel.exceptions import InvalidTimestampError, MissingOwnerReferenceError

ZERO = Decimal("0")

_MEASURE_CONTEXT = Context(prec=60)


def to_decimal(value: object) -> Decimal | None:
    """Coerce a raw measure value; None stays None.

    Raises:
        decimal.InvalidOperation: non-numeric value.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value))


def null_safe_add(total: Decimal | None, value: object) -> Decimal:
    """``total + value`` with None treated as zero on both sides."""
    addend = to_decimal(value)
    base = total if total is not None else ZERO
    if addend is None:
        return base
    return _MEASURE_CONTEXT.add(base, addend)


# =============================================================================
# Rollup (weekly / monthly) mode
# =============================================================================


@dataclass
class SnapshotDraft:
    """Working copy of one snapshot record.

    ``snapshot_id`` is None until the bucket has been persisted.
    ``folded_source_ids`` lists records folded during this run only; the
    writer turns them into fold-ledger rows.
    """

    key: PeriodKey
    snapshot_id: UUID | None = None
    totals: dict[str, Decimal] = field(default_factory=dict)
    record_count: int = 0
    folded_source_ids: list[UUID] = field(default_factory=list)

    @property
    def is_new(self) -> bool:
        return self.snapshot_id is None

    @property
    def period_start(self) -> date:
        return self.key.bounds()[0]

    @property
    def period_end(self) -> date:
        return self.key.bounds()[1]

    def copy(self) -> SnapshotDraft:
        return replace(
            self,
            totals=dict(self.totals),
            folded_source_ids=list(self.folded_source_ids),
        )


@dataclass
class _RollupPartial:
    totals: dict[str, Decimal]
    record_count: int = 0
    source_ids: list[UUID] = field(default_factory=list)


class Accumulator(Protocol):
    """What the runner needs from either engine instance."""

    def fold_chunk(self, records: Sequence[SourceRecord]) -> ChunkFold: ...

    def pending(self) -> Sequence[SnapshotDraft | ReminderDraft]: ...

    @property
    def buckets_touched(self) -> int: ...


class RollupAccumulator:
    """Sums measures per calendar bucket, merging into loaded snapshots."""

    def __init__(
        self,
        mode: BucketMode,
        measures: Sequence[str],
        existing: Mapping[PeriodKey, SnapshotDraft] | None = None,
    ) -> None:
        if mode == BucketMode.PER_ENTITY:
            raise ValueError("RollupAccumulator needs a calendar bucket mode")
        if not measures:
            raise ValueError("RollupAccumulator needs at least one measure")
        self._mode = mode
        self._measures = tuple(measures)
        self._existing: Mapping[PeriodKey, SnapshotDraft] = existing or {}
        self._touched: dict[PeriodKey, SnapshotDraft] = {}

    @property
    def measures(self) -> tuple[str, ...]:
        return self._measures

    @property
    def buckets_touched(self) -> int:
        return len(self._touched)

    def fold_chunk(self, records: Sequence[SourceRecord]) -> ChunkFold:
        """Fold one chunk.  Raises without side effects if any value is bad."""
        partials: dict[PeriodKey, _RollupPartial] = {}
        skipped = 0

        for record in records:
            try:
                key = derive_key(
                    record.occurred_at, self._mode, record.owner_ref,
                    record_id=str(record.record_id),
                )
            except InvalidTimestampError:
                skipped += 1
                continue

            partial = partials.get(key)
            if partial is None:
                partial = _RollupPartial(totals={m: ZERO for m in self._measures})
                partials[key] = partial
            for measure in self._measures:
                partial.totals[measure] = null_safe_add(
                    partial.totals[measure], record.measures.get(measure),
                )
            partial.record_count += 1
            partial.source_ids.append(record.record_id)

        for key, partial in partials.items():
            draft = self._draft_for(key)
            for measure, amount in partial.totals.items():
                draft.totals[measure] = null_safe_add(draft.totals.get(measure), amount)
            draft.record_count += partial.record_count
            draft.folded_source_ids.extend(partial.source_ids)

        folded = len(records) - skipped
        return ChunkFold(
            scanned=len(records),
            folded=folded,
            skipped_invalid_timestamp=skipped,
        )

    def pending(self) -> tuple[SnapshotDraft, ...]:
        """Drafts touched this run, in bucket order."""
        return tuple(self._touched[k] for k in sorted(self._touched))

    def _draft_for(self, key: PeriodKey) -> SnapshotDraft:
        draft = self._touched.get(key)
        if draft is not None:
            return draft
        loaded = self._existing.get(key)
        if loaded is not None:
            draft = loaded.copy()
        else:
            draft = SnapshotDraft(key=key, totals={m: ZERO for m in self._measures})
        self._touched[key] = draft
        return draft


# =============================================================================
# Per-entity (de-dup) mode
# =============================================================================


@dataclass
class ReminderDraft:
    """Working copy of one follow-up reminder."""

    key: EntityKey
    reminder_id: UUID | None = None
    source_record_id: UUID | None = None
    triggered_at: datetime | None = None
    trigger_seq: int | None = None

    @property
    def is_new(self) -> bool:
        return self.reminder_id is None


def _earlier(record: SourceRecord, draft: ReminderDraft) -> bool:
    mine = (ensure_utc(record.occurred_at), record.seq)
    theirs = (ensure_utc(draft.triggered_at), draft.trigger_seq or 0)
    return mine < theirs


class ReminderAccumulator:
    """Materialises at most one reminder per entity without an open one."""

    def __init__(self, existing: Mapping[EntityKey, ReminderDraft] | None = None) -> None:
        self._existing: Mapping[EntityKey, ReminderDraft] = existing or {}
        self._created: dict[EntityKey, ReminderDraft] = {}

    @property
    def buckets_touched(self) -> int:
        return len(self._created)

    def fold_chunk(self, records: Sequence[SourceRecord]) -> ChunkFold:
        chunk_drafts: dict[EntityKey, ReminderDraft] = {}
        skipped_ts = 0
        skipped_owner = 0
        suppressed = 0

        for record in records:
            try:
                key = derive_key(
                    record.occurred_at, BucketMode.PER_ENTITY, record.owner_ref,
                    record_id=str(record.record_id),
                )
            except InvalidTimestampError:
                skipped_ts += 1
                continue
            except MissingOwnerReferenceError:
                skipped_owner += 1
                continue

            if key in self._existing:
                suppressed += 1
                continue

            current = chunk_drafts.get(key) or self._created.get(key)
            if current is None:
                chunk_drafts[key] = self._new_draft(key, record)
                continue
            suppressed += 1
            if _earlier(record, current):
                chunk_drafts[key] = self._new_draft(key, record)

        self._created.update(chunk_drafts)

        return ChunkFold(
            scanned=len(records),
            folded=len(records) - skipped_ts - skipped_owner - suppressed,
            skipped_invalid_timestamp=skipped_ts,
            skipped_unowned=skipped_owner,
            suppressed=suppressed,
        )

    def pending(self) -> tuple[ReminderDraft, ...]:
        return tuple(self._created[k] for k in sorted(self._created))

    @staticmethod
    def _new_draft(key: EntityKey, record: SourceRecord) -> ReminderDraft:
        return ReminderDraft(
            key=key,
            source_record_id=record.record_id,
            triggered_at=record.occurred_at,
            trigger_seq=record.seq,
        )

