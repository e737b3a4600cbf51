"""
Idempotent writers -- the engine's only write path.

Contract:
    Called once per run with the finalized accumulator, inside the
    runner's SAVEPOINT.  A draft with a persisted id is updated in place;
    a draft without one is inserted.  Fold-ledger rows for every source
    record folded this run are added in the same flush, so snapshot totals
    and the ledger either both land or neither does.

    Writers flush but never commit.  Any exception propagates; the runner
    rolls the SAVEPOINT back and reports a WriteFailureError.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from recon_batch.domain.merge import ReminderDraft, SnapshotDraft
from recon_batch.domain.types import ReminderStatus, WriteOutcome
from recon_batch.models.reconciliation import (
    FollowUpReminderModel,
    RollupSnapshotModel,
    SnapshotFoldModel,
)
from recon_kernel.logging_config import get_logger

logger = get_logger("batch.writer")


class SnapshotWriter:
    """Bulk upsert of rollup snapshots keyed by (rollup_name, bucket_key)."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def write(
        self,
        rollup_name: str,
        drafts: Sequence[SnapshotDraft],
        run_id: UUID,
        actor_id: UUID,
    ) -> WriteOutcome:
        created = 0
        updated = 0
        folds = 0

        for draft in drafts:
            if draft.is_new:
                model = RollupSnapshotModel.from_draft(rollup_name, draft, run_id, actor_id)
                self._session.add(model)
                created += 1
            else:
                model = self._session.get(RollupSnapshotModel, draft.snapshot_id)
                if model is None:
                    raise LookupError(
                        f"Snapshot {draft.snapshot_id} ({draft.key}) vanished mid-run"
                    )
                model.apply_draft(draft, run_id, actor_id)
                updated += 1

            for source_id in draft.folded_source_ids:
                self._session.add(
                    SnapshotFoldModel(
                        rollup_name=rollup_name,
                        source_id=source_id,
                        bucket_key=draft.key.bucket_key,
                        run_id=run_id,
                        created_by_id=actor_id,
                    )
                )
                folds += 1

        self._session.flush()

        logger.info(
            "snapshots_written",
            extra={
                "rollup_name": rollup_name,
                "buckets_created": created,
                "buckets_updated": updated,
                "folds_recorded": folds,
            },
        )
        return WriteOutcome(created=created, updated=updated, folds_recorded=folds)


class ReminderWriter:
    """Inserts the reminders materialised by a de-dup run."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def write(
        self,
        reminder_type: str,
        drafts: Sequence[ReminderDraft],
        run_id: UUID,
        actor_id: UUID,
        as_of: datetime,
        subject: str,
        due_in_days: int = 0,
    ) -> WriteOutcome:
        due_on = (as_of + timedelta(days=due_in_days)).date()
        created = 0

        for draft in drafts:
            if not draft.is_new:
                continue
            self._session.add(
                FollowUpReminderModel(
                    reminder_type=reminder_type,
                    owner_ref=draft.key.owner_ref,
                    status=ReminderStatus.OPEN.value,
                    subject=subject.format(owner_ref=draft.key.owner_ref),
                    source_record_id=draft.source_record_id,
                    triggered_at=draft.triggered_at,
                    due_on=due_on,
                    run_id=run_id,
                    created_by_id=actor_id,
                )
            )
            created += 1

        self._session.flush()

        logger.info(
            "reminders_written",
            extra={"reminder_type": reminder_type, "reminders_created": created},
        )
        return WriteOutcome(created=created)
