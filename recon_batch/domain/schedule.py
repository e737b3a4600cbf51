"""
Pure schedule evaluation.

Contract:
    ``should_fire(schedule, last_run_at, as_of)`` and ``compute_next_run()``
    are PURE -- the scheduler passes the last recorded run start and the
    clock reading, nothing else.

Architecture: recon_batch/domain.  ZERO I/O.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from recon_batch.domain.types import JobSchedule, ScheduleFrequency
from recon_kernel.domain.clock import ensure_utc


def _add_months(moment: datetime, months: int, day: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return moment.replace(year=year, month=month, day=min(day, last_day))


def compute_next_run(schedule: JobSchedule, after: datetime) -> datetime | None:
    """First slot of ``schedule`` strictly after ``after`` (UTC).

    Returns None for ON_DEMAND schedules.
    """
    if schedule.frequency == ScheduleFrequency.ON_DEMAND:
        return None

    after = ensure_utc(after)
    base = after.replace(second=0, microsecond=0)

    if schedule.frequency == ScheduleFrequency.HOURLY:
        candidate = base.replace(minute=schedule.minute)
        while candidate <= after:
            candidate += timedelta(hours=1)
        return candidate

    at_time = base.replace(hour=schedule.hour, minute=schedule.minute)

    if schedule.frequency == ScheduleFrequency.DAILY:
        candidate = at_time
        while candidate <= after:
            candidate += timedelta(days=1)
        return candidate

    if schedule.frequency == ScheduleFrequency.WEEKLY:
        candidate = at_time + timedelta(days=(schedule.weekday - at_time.weekday()) % 7)
        while candidate <= after:
            candidate += timedelta(weeks=1)
        return candidate

    # MONTHLY: clamp the day to short months (day=31 fires on Feb 28/29)
    candidate = _add_months(at_time, 0, schedule.day)
    months = 0
    while candidate <= after:
        months += 1
        candidate = _add_months(at_time, months, schedule.day)
    return candidate


def should_fire(
    schedule: JobSchedule,
    last_run_at: datetime | None,
    as_of: datetime,
) -> bool:
    """Whether ``schedule`` is due at ``as_of``.

    Rules:
        - Inactive and ON_DEMAND schedules never fire automatically.
        - A job that has never run fires immediately.
        - Otherwise fires once the first slot after ``last_run_at`` is due.
    """
    if not schedule.is_active:
        return False
    if schedule.frequency == ScheduleFrequency.ON_DEMAND:
        return False
    if last_run_at is None:
        return True

    next_run = compute_next_run(schedule, last_run_at)
    return next_run is not None and ensure_utc(as_of) >= next_run
