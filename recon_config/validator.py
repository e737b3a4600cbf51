"""
Structural validation of a parsed ``EngineConfig``.

Returns a list of human-readable problems; an empty list means valid.
Column names are not checked here -- the tasks resolve them against the
ORM when they are built (see ``SourceBinding.resolve``).
"""

from __future__ import annotations

from collections import Counter

from recon_batch.domain.types import BucketMode, ScheduleFrequency, WindowScope
from recon_config.schema import EngineConfig


def validate_config(config: EngineConfig) -> list[str]:
    errors: list[str] = []

    counts = Counter(config.job_names())
    for name, count in sorted(counts.items()):
        if count > 1:
            errors.append(f"job name '{name}' is defined {count} times")

    for rollup in config.rollups:
        prefix = f"rollup '{rollup.name}'"
        if rollup.bucket_mode == BucketMode.PER_ENTITY:
            errors.append(f"{prefix}: bucket_mode must be weekly or monthly")
        if rollup.bucket_mode == BucketMode.MONTHLY and rollup.window_scope == WindowScope.WEEK:
            errors.append(f"{prefix}: window_scope week is narrower than a monthly bucket")
        if not rollup.measures:
            errors.append(f"{prefix}: at least one measure is required")
        if len(set(rollup.measures)) != len(rollup.measures):
            errors.append(f"{prefix}: measures must be unique")
        if rollup.chunk_size < 1:
            errors.append(f"{prefix}: chunk_size must be positive")

    for reminder in config.reminders:
        prefix = f"reminder '{reminder.name}'"
        if reminder.stale_after_days < 0:
            errors.append(f"{prefix}: stale_after_days must not be negative")
        if reminder.lookback_days <= reminder.stale_after_days:
            errors.append(f"{prefix}: lookback_days must exceed stale_after_days")
        if reminder.due_in_days < 0:
            errors.append(f"{prefix}: due_in_days must not be negative")
        if reminder.chunk_size < 1:
            errors.append(f"{prefix}: chunk_size must be positive")

    known = set(counts)
    scheduled: set[str] = set()
    for schedule in config.schedules:
        prefix = f"schedule for '{schedule.job_name}'"
        if schedule.job_name not in known:
            errors.append(f"{prefix}: no such job")
        if schedule.job_name in scheduled:
            errors.append(f"{prefix}: job is scheduled more than once")
        scheduled.add(schedule.job_name)
        if not 0 <= schedule.hour <= 23:
            errors.append(f"{prefix}: hour must be 0-23")
        if not 0 <= schedule.minute <= 59:
            errors.append(f"{prefix}: minute must be 0-59")
        if schedule.frequency == ScheduleFrequency.WEEKLY and not 0 <= schedule.weekday <= 6:
            errors.append(f"{prefix}: weekday must be 0-6 (Monday=0)")
        if schedule.frequency == ScheduleFrequency.MONTHLY and not 1 <= schedule.day <= 31:
            errors.append(f"{prefix}: day must be 1-31")

    return errors
