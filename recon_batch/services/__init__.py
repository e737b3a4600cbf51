"""Reconciliation services: scanning, loading, writing, running, scheduling."""

from recon_batch.services.loader import load_open_reminders, load_snapshots
from recon_batch.services.maintenance import close_reminder, purge_rollup
from recon_batch.services.runner import ReconciliationRunner
from recon_batch.services.scanner import SourceBinding, SourceScanner
from recon_batch.services.scheduler import ReconciliationScheduler
from recon_batch.services.writer import ReminderWriter, SnapshotWriter

__all__ = [
    "ReconciliationRunner",
    "ReconciliationScheduler",
    "ReminderWriter",
    "SnapshotWriter",
    "SourceBinding",
    "SourceScanner",
    "close_reminder",
    "load_open_reminders",
    "load_snapshots",
    "purge_rollup",
]
