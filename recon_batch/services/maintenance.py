"""
Operator actions on engine-owned output.

``purge_rollup`` is the only delete path in the engine.  Runs never delete;
an operator who needs to correct history purges the affected buckets
(snapshots and their fold-ledger rows together) and lets the next run
rebuild them from source.  Only buckets overlapping an OPEN window can be
rebuilt this way -- closed periods are never re-scanned.

``close_reminder`` marks a reminder handled, which lets the staleness job
raise a new one for the same entity on a later run.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from recon_batch.domain.types import ReconciliationWindow, ReminderStatus
from recon_batch.models.reconciliation import (
    FollowUpReminderModel,
    RollupSnapshotModel,
    SnapshotFoldModel,
)
from recon_kernel.logging_config import get_logger

logger = get_logger("batch.maintenance")


def purge_rollup(
    session: Session,
    rollup_name: str,
    window: ReconciliationWindow,
    actor_id: UUID,
) -> int:
    """Delete the snapshots overlapping ``window`` and their fold ledger.

    Returns the number of snapshots deleted.  Does not commit.

    Raises:
        ValueError: a bucket overlapping ``window`` extends beyond it
            (a replay only rescans ``window``).
    """
    first_day = window.start.date()
    end_day = window.end.date()
    rows = session.execute(
        select(
            RollupSnapshotModel.bucket_key,
            RollupSnapshotModel.period_start,
            RollupSnapshotModel.period_end,
        ).where(
            RollupSnapshotModel.rollup_name == rollup_name,
            RollupSnapshotModel.period_start < end_day,
            RollupSnapshotModel.period_end >= first_day,
        )
    ).all()

    if not rows:
        return 0

    straddling = sorted(
        key for key, start, end in rows if start < first_day or end >= end_day
    )
    if straddling:
        raise ValueError(
            f"Cannot purge {rollup_name}: bucket(s) {straddling} extend beyond "
            f"window {window.start.isoformat()} - {window.end.isoformat()}"
        )

    bucket_keys = [key for key, _, _ in rows]

    session.execute(
        delete(SnapshotFoldModel).where(
            SnapshotFoldModel.rollup_name == rollup_name,
            SnapshotFoldModel.bucket_key.in_(bucket_keys),
        )
    )
    session.execute(
        delete(RollupSnapshotModel).where(
            RollupSnapshotModel.rollup_name == rollup_name,
            RollupSnapshotModel.bucket_key.in_(bucket_keys),
        )
    )
    session.flush()

    logger.warning(
        "rollup_purged",
        extra={
            "rollup_name": rollup_name,
            "bucket_keys": sorted(bucket_keys),
            "actor_id": str(actor_id),
        },
    )
    return len(bucket_keys)


def close_reminder(
    session: Session,
    reminder_id: UUID,
    closed_at: datetime,
    actor_id: UUID,
) -> None:
    """Mark an OPEN reminder CLOSED.

    Raises:
        LookupError: no reminder with that id.
        ValueError: reminder already closed.
    """
    reminder = session.get(FollowUpReminderModel, reminder_id)
    if reminder is None:
        raise LookupError(f"Reminder not found: {reminder_id}")
    if reminder.status != ReminderStatus.OPEN.value:
        raise ValueError(f"Reminder {reminder_id} is already {reminder.status}")

    reminder.status = ReminderStatus.CLOSED.value
    reminder.closed_at = closed_at
    reminder.updated_by_id = actor_id
    session.flush()
