"""
Configuration schema -- frozen definitions of reconciliation jobs.

Every object here is produced by ``recon_config.loader`` from YAML and is
immutable for the lifetime of the process.
"""

from __future__ import annotations

from dataclasses import dataclass

from recon_batch.domain.types import BucketMode, JobSchedule, WindowScope


@dataclass(frozen=True)
class RollupDefinition:
    """A snapshot rollup: sum ``measures`` of ``source`` per calendar bucket."""

    name: str
    source: str
    timestamp_field: str
    measures: tuple[str, ...]
    bucket_mode: BucketMode = BucketMode.WEEKLY
    window_scope: WindowScope = WindowScope.MONTH
    owner_field: str | None = None
    statuses: tuple[str, ...] = ()
    chunk_size: int = 500
    description: str = ""


@dataclass(frozen=True)
class ReminderDefinition:
    """A staleness detector: one open follow-up per owning entity."""

    name: str
    source: str
    timestamp_field: str
    owner_field: str
    stale_after_days: int
    lookback_days: int
    statuses: tuple[str, ...] = ()
    due_in_days: int = 3
    chunk_size: int = 500
    subject: str = "Follow up with {owner_ref}"
    description: str = ""


@dataclass(frozen=True)
class EngineConfig:
    """Complete, validated engine configuration."""

    rollups: tuple[RollupDefinition, ...] = ()
    reminders: tuple[ReminderDefinition, ...] = ()
    schedules: tuple[JobSchedule, ...] = ()
    checksum: str = ""

    def job_names(self) -> tuple[str, ...]:
        return tuple(r.name for r in self.rollups) + tuple(r.name for r in self.reminders)

    def schedule_for(self, job_name: str) -> JobSchedule | None:
        for schedule in self.schedules:
            if schedule.job_name == job_name:
                return schedule
        return None
