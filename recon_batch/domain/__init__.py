"""
recon_batch.domain -- Pure types, bucket identities and the merge core.

ZERO I/O.
"""

from recon_batch.domain.merge import (
    ReminderAccumulator,
    ReminderDraft,
    RollupAccumulator,
    SnapshotDraft,
    null_safe_add,
)
from recon_batch.domain.period_key import (
    EntityKey,
    PeriodKey,
    derive_key,
    parse_bucket_key,
    week_of_month,
)
from recon_batch.domain.types import (
    BucketMode,
    ChunkError,
    ChunkFold,
    ChunkRange,
    JobKind,
    JobSchedule,
    ReconciliationWindow,
    ReminderStatus,
    RunPhase,
    RunStatus,
    RunSummary,
    ScheduleFrequency,
    SourceRecord,
    WindowScope,
    WriteOutcome,
)

__all__ = [
    "BucketMode",
    "ChunkError",
    "ChunkFold",
    "ChunkRange",
    "EntityKey",
    "JobKind",
    "JobSchedule",
    "PeriodKey",
    "ReconciliationWindow",
    "ReminderAccumulator",
    "ReminderDraft",
    "ReminderStatus",
    "RollupAccumulator",
    "RunPhase",
    "RunStatus",
    "RunSummary",
    "ScheduleFrequency",
    "SnapshotDraft",
    "SourceRecord",
    "WindowScope",
    "WriteOutcome",
    "derive_key",
    "null_safe_add",
    "parse_bucket_key",
    "week_of_month",
]
