"""
Period key derivation -- timestamp -> bucket identity.

Contract:
    ``derive_key(timestamp, mode, owner_ref)`` is PURE.  The same inputs
    always produce the same key, so a record's bucket never moves once
    assigned.

Architecture: recon_batch/domain.  ZERO I/O.

Week-of-month rule:
    Weeks are ISO calendar weeks (Monday start) clipped to the month.
    Week 1 always begins on the 1st, whatever weekday that is; week 2
    begins on the first Monday after it.  The index is computed from
    week-of-year numbers, which wrap at ISO year boundaries: Jan 1 can sit
    in ISO week 52/53 of the previous year while Jan 4 is week 1, and
    Dec 29-31 can sit in week 1 of the next year while Dec 1 is week 48.
    ``week_of_month`` detects that crossing and re-bases the record's week
    onto the first day's ISO year before subtracting.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from recon_batch.domain.types import BucketMode
from recon_kernel.exceptions import InvalidTimestampError, MissingOwnerReferenceError


@dataclass(frozen=True, order=True)
class PeriodKey:
    """Bucket identity for calendar bucketing (weekly or monthly).

    Structural equality on (mode, year, month, week).  ``week`` is None in
    monthly mode.
    """

    mode: BucketMode
    year: int
    month: int
    week: int | None = None

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month out of range: {self.month}")
        if self.mode == BucketMode.WEEKLY:
            if self.week is None or not 1 <= self.week <= 6:
                raise ValueError(f"weekly key needs week in 1..6, got {self.week}")
        elif self.mode == BucketMode.MONTHLY:
            if self.week is not None:
                raise ValueError("monthly key must not carry a week")
        else:
            raise ValueError(f"PeriodKey does not support mode {self.mode}")

    @property
    def bucket_key(self) -> str:
        """Canonical, separator-delimited string form (``2026-07-W1``)."""
        if self.week is None:
            return f"{self.year:04d}-{self.month:02d}"
        return f"{self.year:04d}-{self.month:02d}-W{self.week}"

    def bounds(self) -> tuple[date, date]:
        """Inclusive first and last calendar day covered by this bucket."""
        first = date(self.year, self.month, 1)
        last = date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])
        if self.week is None:
            return first, last

        first_monday = first - timedelta(days=first.weekday())
        start = first if self.week == 1 else first_monday + timedelta(weeks=self.week - 1)
        end = min(first_monday + timedelta(weeks=self.week, days=-1), last)
        if start > last:
            raise ValueError(f"{self.bucket_key} does not exist in that month")
        return start, end

    def __str__(self) -> str:
        return self.bucket_key


@dataclass(frozen=True, order=True)
class EntityKey:
    """Bucket identity for per-entity (de-duplication) mode."""

    owner_ref: str

    @property
    def bucket_key(self) -> str:
        return self.owner_ref

    def __str__(self) -> str:
        return self.owner_ref


def as_date(timestamp: date | datetime) -> date:
    """Calendar date of a timestamp; aware datetimes are read in UTC."""
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone(timezone.utc)
        return timestamp.date()
    return timestamp


def iso_weeks_in_year(iso_year: int) -> int:
    # Dec 28 always falls in the last ISO week of its year.
    return date(iso_year, 12, 28).isocalendar()[1]


def week_of_month(day: date) -> int:
    """1-based week index of ``day`` within its own month."""
    first = day.replace(day=1)
    first_year, first_week, _ = first.isocalendar()
    raw = day.isocalendar()[1]
    if raw < first_week:
        # Year boundary between the 1st and ``day``: continue the first
        # day's ISO-year numbering instead of wrapping back to week 1.
        raw += iso_weeks_in_year(first_year)

    return raw - first_week + 1


def derive_key(
    timestamp: date | datetime | None,
    mode: BucketMode,
    owner_ref: str | None = None,
    record_id: str | None = None,
) -> PeriodKey | EntityKey:
    """Derive the bucket identity of one source record.

    Raises:
        InvalidTimestampError: ``timestamp`` is None (any mode).
        MissingOwnerReferenceError: per-entity mode without ``owner_ref``.
    """
    if timestamp is None:
        raise InvalidTimestampError(record_id)

    if mode == BucketMode.PER_ENTITY:
        if not owner_ref:
            raise MissingOwnerReferenceError(record_id)
        return EntityKey(owner_ref=owner_ref)

    day = as_date(timestamp)
    if mode == BucketMode.MONTHLY:
        return PeriodKey(mode=mode, year=day.year, month=day.month)
    return PeriodKey(
        mode=BucketMode.WEEKLY,
        year=day.year,
        month=day.month,
        week=week_of_month(day),
    )


def parse_bucket_key(bucket_key: str) -> PeriodKey:
    """Inverse of ``PeriodKey.bucket_key``.

    Raises:
        ValueError: malformed key.
    """
    parts = bucket_key.split("-")
    if len(parts) == 2:
        return PeriodKey(BucketMode.MONTHLY, int(parts[0]), int(parts[1]))
    if len(parts) == 3 and parts[2].startswith("W"):
        return PeriodKey(BucketMode.WEEKLY, int(parts[0]), int(parts[1]), int(parts[2][1:]))
    raise ValueError(f"Malformed bucket key: {bucket_key!r}")
