"""Reconciliation task implementations and registry."""

from recon_batch.tasks.base import ReconciliationTask, TaskRegistry
from recon_batch.tasks.reminder import StalenessReminderTask
from recon_batch.tasks.rollup import SnapshotRollupTask

__all__ = [
    "ReconciliationTask",
    "SnapshotRollupTask",
    "StalenessReminderTask",
    "TaskRegistry",
]
