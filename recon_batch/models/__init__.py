"""
recon_batch.models -- ORM models for source rows and engine-owned output.

Imports from recon_kernel.db.base only (plus pure domain types).
"""

from recon_batch.models.reconciliation import (
    FollowUpReminderModel,
    ReconciliationRunModel,
    RollupSnapshotModel,
    SnapshotFoldModel,
)
from recon_batch.models.source import SOURCE_MODELS, SalesOrderModel

__all__ = [
    "FollowUpReminderModel",
    "ReconciliationRunModel",
    "RollupSnapshotModel",
    "SOURCE_MODELS",
    "SalesOrderModel",
    "SnapshotFoldModel",
]
