"""
Existing-output loaders -- read persisted snapshots/reminders once per run.

Contract:
    Keys with no persisted record are ABSENT from the returned mapping.
    There are no zero-valued placeholders, so the merge core can tell
    "never seen" from "seen with all-zero totals".

    Over-fetching is deliberate: every bucket overlapping the window is
    loaded, which is small next to the number of source rows.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from recon_batch.domain.merge import ReminderDraft, SnapshotDraft
from recon_batch.domain.period_key import EntityKey, PeriodKey
from recon_batch.domain.types import ReconciliationWindow, ReminderStatus
from recon_batch.models.reconciliation import FollowUpReminderModel, RollupSnapshotModel
from recon_kernel.logging_config import get_logger

logger = get_logger("batch.loader")


def load_snapshots(
    session: Session,
    rollup_name: str,
    window: ReconciliationWindow,
) -> dict[PeriodKey, SnapshotDraft]:
    """Snapshots of ``rollup_name`` whose period overlaps ``window``."""
    first_day = window.start.date()
    end_day = window.end.date()

    rows = session.execute(
        select(RollupSnapshotModel).where(
            RollupSnapshotModel.rollup_name == rollup_name,
            RollupSnapshotModel.period_start < end_day,
            RollupSnapshotModel.period_end >= first_day,
        )
    ).scalars().all()

    loaded = {row.period_key: row.to_draft() for row in rows}
    logger.debug(
        "snapshots_loaded",
        extra={"rollup_name": rollup_name, "buckets": len(loaded)},
    )
    return loaded


def load_open_reminders(
    session: Session,
    reminder_type: str,
) -> dict[EntityKey, ReminderDraft]:
    """Every OPEN reminder of ``reminder_type``, keyed by owning entity."""
    rows = session.execute(
        select(FollowUpReminderModel)
        .where(
            FollowUpReminderModel.reminder_type == reminder_type,
            FollowUpReminderModel.status == ReminderStatus.OPEN.value,
        )
        .order_by(FollowUpReminderModel.created_at)
    ).scalars().all()

    loaded: dict[EntityKey, ReminderDraft] = {}
    for row in rows:
        draft = row.to_draft()
        if draft.key in loaded:
            logger.warning(
                "duplicate_open_reminder",
                extra={
                    "reminder_type": reminder_type,
                    "owner_ref": row.owner_ref,
                    "reminder_id": str(row.id),
                },
            )
            continue
        loaded[draft.key] = draft
    return loaded
