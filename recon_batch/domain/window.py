"""
Window resolution -- which slice of time a run is allowed to touch.

Contract:
    Pure functions of the as-of instant.  Only the open (current) period
    is ever returned for rollups: a bucket whose period has fully elapsed
    is closed and no run can re-open it.

Architecture: recon_batch/domain.  ZERO I/O.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone

from recon_batch.domain.period_key import PeriodKey, as_date, week_of_month
from recon_batch.domain.types import BucketMode, ReconciliationWindow, WindowScope


def _midnight(day) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def open_period_window(as_of: datetime, scope: WindowScope) -> ReconciliationWindow:
    """Window covering the period that contains ``as_of``.

    MONTH -> the calendar month; WEEK -> the week-of-month bucket (so a
    week straddling two months is split at the month boundary, matching
    the buckets it feeds).
    """
    day = as_date(as_of)
    if scope == WindowScope.MONTH:
        key = PeriodKey(BucketMode.MONTHLY, day.year, day.month)
    else:
        key = PeriodKey(BucketMode.WEEKLY, day.year, day.month, week_of_month(day))
    first, last = key.bounds()
    return ReconciliationWindow(
        start=_midnight(first),
        end=_midnight(last + timedelta(days=1)),
        label=key.bucket_key,
    )


def staleness_window(
    as_of: datetime,
    stale_after_days: int,
    lookback_days: int,
) -> ReconciliationWindow:
    """Records older than ``stale_after_days`` but no older than ``lookback_days``.

    Raises:
        ValueError: lookback does not reach past the staleness threshold.
    """
    if lookback_days <= stale_after_days:
        raise ValueError(
            f"lookback_days ({lookback_days}) must exceed "
            f"stale_after_days ({stale_after_days})"
        )
    return ReconciliationWindow(
        start=as_of - timedelta(days=lookback_days),
        end=as_of - timedelta(days=stale_after_days),
        label=f"stale>{stale_after_days}d",
    )
