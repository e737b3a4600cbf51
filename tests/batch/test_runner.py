"""
Tests for recon_batch.services.runner -- snapshot rollups end to end.

Validates ReconciliationRunner: the incremental merge scenario (12 -> 15
in one bucket), idempotent re-runs, conservation, closed periods, chunk
fetch/fold failures, cancellation, write failure rollback, run records
and structured logging.

Uses in-memory SQLite for fast unit tests (no PostgreSQL required).
"""

import threading
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from recon_batch.domain.types import (
    BucketMode,
    JobKind,
    RunPhase,
    RunStatus,
    WindowScope,
)
from recon_batch.models.reconciliation import (
    ReconciliationRunModel,
    RollupSnapshotModel,
    SnapshotFoldModel,
)
from recon_batch.services.runner import ReconciliationRunner
from recon_batch.services.scanner import SourceScanner
from recon_batch.tasks.base import TaskRegistry
from recon_batch.tasks.rollup import SnapshotRollupTask
from recon_config.schema import RollupDefinition
from recon_kernel.domain.clock import ensure_utc
from recon_kernel.exceptions import JobNotRegisteredError


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


WEEKLY = RollupDefinition(
    name="weekly_sales",
    source="sales_orders",
    timestamp_field="ordered_at",
    owner_field="account_ref",
    measures=("order_total", "tax_amount"),
    bucket_mode=BucketMode.WEEKLY,
    window_scope=WindowScope.MONTH,
    chunk_size=2,
)


# =============================================================================
# Test task variants
# =============================================================================


class FlakyScanner(SourceScanner):
    """Scanner whose fetch fails for selected chunk indexes."""

    def __init__(self, *args, fail_on=(), on_fetch=None, **kwargs):
        super().__init__(*args, **kwargs)
        self._fail_on = set(fail_on)
        self._on_fetch = on_fetch

    def fetch(self, chunk):
        if self._on_fetch is not None:
            self._on_fetch(chunk)
        if chunk.index in self._fail_on:
            raise ConnectionError("source store unavailable")
        return super().fetch(chunk)


class FlakyRollupTask(SnapshotRollupTask):
    """Rollup task that opens a FlakyScanner."""

    def __init__(self, definition, fail_on=(), on_fetch=None):
        super().__init__(definition)
        self._fail_on = fail_on
        self._on_fetch = on_fetch

    def open_scanner(self, session, window):
        return FlakyScanner(
            session, self._binding, window,
            chunk_size=self.chunk_size,
            fold_scope=self.job_name,
            fail_on=self._fail_on,
            on_fetch=self._on_fetch,
        )


class RacingRollupTask(SnapshotRollupTask):
    """Simulates a concurrent run creating the bucket after the load."""

    def __init__(self, definition, actor_id):
        super().__init__(definition)
        self._actor_id = actor_id

    def start_accumulator(self, session, window):
        accumulator = super().start_accumulator(session, window)
        session.add(RollupSnapshotModel(
            rollup_name=self.job_name, bucket_key="2026-07-W1", bucket_mode="weekly",
            period_year=2026, period_month=7, period_week=1,
            period_start=utc(2026, 7, 1).date(), period_end=utc(2026, 7, 5).date(),
            totals={"order_total": "999"}, record_count=1,
            created_by_id=self._actor_id,
        ))
        session.flush()
        return accumulator


def make_runner(session, clock, *tasks) -> ReconciliationRunner:
    registry = TaskRegistry()
    for task in tasks or (SnapshotRollupTask(WEEKLY),):
        registry.register(task)
    return ReconciliationRunner(session, registry, clock=clock)


def snapshots(session) -> dict[str, RollupSnapshotModel]:
    rows = session.execute(
        select(RollupSnapshotModel).where(RollupSnapshotModel.rollup_name == "weekly_sales")
    ).scalars().all()
    return {row.bucket_key: row for row in rows}


def fold_count(session) -> int:
    return session.execute(select(func.count()).select_from(SnapshotFoldModel)).scalar_one()


# =============================================================================
# Incremental merge
# =============================================================================


class TestIncrementalMerge:

    def test_later_run_adds_to_existing_bucket(self, session, clock, actor_id, make_order):
        """Jul 1 + Jul 3 -> 12; Jul 4 arrives -> 15 in the same single record."""
        runner = make_runner(session, clock)
        make_order(session, utc(2026, 7, 1, 9), "5")
        make_order(session, utc(2026, 7, 3, 9), "7")

        first = runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 3, 12))

        assert first.status == RunStatus.COMPLETED
        assert first.buckets_created == 1
        assert Decimal(snapshots(session)["2026-07-W1"].totals["order_total"]) == Decimal("12")

        make_order(session, utc(2026, 7, 4, 9), "3")
        second = runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 4, 12))

        rows = snapshots(session)
        assert list(rows) == ["2026-07-W1"]
        assert Decimal(rows["2026-07-W1"].totals["order_total"]) == Decimal("15")
        assert rows["2026-07-W1"].record_count == 3
        assert second.buckets_created == 0
        assert second.buckets_updated == 1
        assert second.records_folded == 1

    def test_rerun_without_new_sources_changes_nothing(self, session, clock, actor_id, make_order):
        runner = make_runner(session, clock)
        make_order(session, utc(2026, 7, 1), "5")
        make_order(session, utc(2026, 7, 8), "7")

        runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 10))
        before = {k: (dict(v.totals), v.record_count) for k, v in snapshots(session).items()}

        again = runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 10))
        after = {k: (dict(v.totals), v.record_count) for k, v in snapshots(session).items()}

        assert before == after
        assert again.records_scanned == 0
        assert again.buckets_touched == 0
        assert again.status == RunStatus.COMPLETED

    def test_conservation_across_buckets(self, session, clock, actor_id, make_order):
        runner = make_runner(session, clock)
        amounts = ["1.25", "2.50", "3", "4.75", "10", "0", "-2"]
        for day, amount in zip((1, 2, 6, 9, 15, 22, 29), amounts):
            make_order(session, utc(2026, 7, day), amount, tax_amount="1")

        summary = runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 31))

        rows = snapshots(session)
        total = sum(Decimal(r.totals["order_total"]) for r in rows.values())
        assert total == sum(Decimal(a) for a in amounts)
        assert sum(r.record_count for r in rows.values()) == len(amounts)
        assert sum(Decimal(r.totals["tax_amount"]) for r in rows.values()) == Decimal("7")
        assert summary.chunks_total == 4
        assert fold_count(session) == len(amounts)

    def test_null_measure_counts_as_zero(self, session, clock, actor_id, make_order):
        runner = make_runner(session, clock)
        make_order(session, utc(2026, 7, 2), None)
        make_order(session, utc(2026, 7, 2), "4")

        runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 3))

        row = snapshots(session)["2026-07-W1"]
        assert Decimal(row.totals["order_total"]) == Decimal("4")
        assert Decimal(row.totals["tax_amount"]) == Decimal("0")
        assert row.record_count == 2

    def test_closed_period_is_never_rescanned(self, session, clock, actor_id, make_order):
        runner = make_runner(session, clock)
        make_order(session, utc(2026, 6, 30), "100")
        make_order(session, utc(2026, 7, 1), "5")

        runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 2))

        assert list(snapshots(session)) == ["2026-07-W1"]

    def test_undated_rows_skipped_and_reported(self, session, clock, actor_id, make_order):
        runner = make_runner(session, clock)
        make_order(session, None, "100", created_at=utc(2026, 7, 2))
        make_order(session, utc(2026, 7, 2), "5")

        summary = runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 3))

        assert summary.records_skipped_invalid_timestamp == 1
        assert summary.records_folded == 1
        assert Decimal(snapshots(session)["2026-07-W1"].totals["order_total"]) == Decimal("5")

    def test_as_of_defaults_to_clock(self, session, clock, actor_id, make_order):
        runner = make_runner(session, clock)
        make_order(session, utc(2026, 7, 2), "5")

        summary = runner.run("weekly_sales", actor_id)

        assert summary.as_of == clock.now()
        assert summary.window.start == utc(2026, 7, 1)

    def test_week_window_scope(self, session, clock, actor_id, make_order):
        definition = RollupDefinition(
            name="weekly_sales", source="sales_orders", timestamp_field="ordered_at",
            measures=("order_total",), window_scope=WindowScope.WEEK,
        )
        runner = make_runner(session, clock, SnapshotRollupTask(definition))
        make_order(session, utc(2026, 7, 2), "5")
        make_order(session, utc(2026, 7, 7), "7")

        summary = runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 8))

        assert list(snapshots(session)) == ["2026-07-W2"]
        assert summary.window.start == utc(2026, 7, 6)


# =============================================================================
# Chunk failures
# =============================================================================


class TestChunkFailures:

    def test_fetch_failure_skips_chunk_only(self, session, clock, actor_id, make_order):
        for day in (1, 2, 3, 4, 5, 6):
            make_order(session, utc(2026, 7, day), "1")
        runner = make_runner(session, clock, FlakyRollupTask(WEEKLY, fail_on={1}))

        summary = runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 7))

        assert summary.status == RunStatus.PARTIALLY_COMPLETED
        assert summary.chunks_total == 3
        assert summary.chunks_failed == 1
        (error,) = summary.chunk_errors
        assert error.chunk_index == 1
        assert error.error_code == "FETCH_FAILURE"
        assert (error.after_seq, error.through_seq) == (2, 4)
        # Jul 1-5 is W1, Jul 6 is W2; seqs 3 and 4 were skipped
        rows = snapshots(session)
        assert Decimal(rows["2026-07-W1"].totals["order_total"]) == Decimal("3")
        assert Decimal(rows["2026-07-W2"].totals["order_total"]) == Decimal("1")

    def test_skipped_rows_are_picked_up_next_run(self, session, clock, actor_id, make_order):
        for day in (1, 2, 3, 4):
            make_order(session, utc(2026, 7, day), "1")
        flaky = make_runner(session, clock, FlakyRollupTask(WEEKLY, fail_on={0}))
        flaky.run("weekly_sales", actor_id, as_of=utc(2026, 7, 5))

        healthy = make_runner(session, clock)
        summary = healthy.run("weekly_sales", actor_id, as_of=utc(2026, 7, 5))

        assert summary.status == RunStatus.COMPLETED
        assert summary.records_folded == 2
        row = snapshots(session)["2026-07-W1"]
        assert Decimal(row.totals["order_total"]) == Decimal("4")
        assert row.record_count == 4

    def test_every_chunk_failing_fails_run(self, session, clock, actor_id, make_order):
        make_order(session, utc(2026, 7, 1), "1")
        runner = make_runner(session, clock, FlakyRollupTask(WEEKLY, fail_on={0}))

        summary = runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 2))

        assert summary.status == RunStatus.FAILED
        assert snapshots(session) == {}

    def test_fold_failure_skips_chunk(self, session, clock, actor_id, make_order):
        class ExplodingAccumulatorTask(SnapshotRollupTask):
            def start_accumulator(self, session, window):
                accumulator = super().start_accumulator(session, window)
                original = accumulator.fold_chunk
                calls = {"n": 0}

                def fold_chunk(records):
                    calls["n"] += 1
                    if calls["n"] == 1:
                        raise ArithmeticError("bad measure")
                    return original(records)

                accumulator.fold_chunk = fold_chunk
                return accumulator

        for day in (1, 2, 3):
            make_order(session, utc(2026, 7, day), "1")
        runner = make_runner(session, clock, ExplodingAccumulatorTask(WEEKLY))

        summary = runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 4))

        assert summary.status == RunStatus.PARTIALLY_COMPLETED
        assert summary.chunk_errors[0].error_code == "CHUNK_FOLD_FAILURE"
        assert snapshots(session)["2026-07-W1"].record_count == 1


# =============================================================================
# Cancellation and write failure
# =============================================================================


class TestCancellationAndWriteFailure:

    def test_cancel_between_chunks_writes_nothing(self, session, clock, actor_id, make_order):
        for day in (1, 2, 3, 4):
            make_order(session, utc(2026, 7, day), "1")
        cancel = threading.Event()
        task = FlakyRollupTask(WEEKLY, on_fetch=lambda chunk: cancel.set())
        runner = make_runner(session, clock, task)

        summary = runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 5), cancel=cancel)

        assert summary.status == RunStatus.CANCELLED
        assert snapshots(session) == {}
        assert fold_count(session) == 0
        assert runner.phase == RunPhase.IDLE

    def test_cancel_before_start(self, session, clock, actor_id, make_order):
        make_order(session, utc(2026, 7, 1), "1")
        cancel = threading.Event()
        cancel.set()

        summary = make_runner(session, clock).run(
            "weekly_sales", actor_id, as_of=utc(2026, 7, 2), cancel=cancel,
        )

        assert summary.status == RunStatus.CANCELLED
        assert summary.records_scanned == 0

    def test_write_failure_rolls_back_everything(self, session, clock, actor_id, make_order):
        make_order(session, utc(2026, 7, 1), "5")
        make_order(session, utc(2026, 7, 8), "7")
        runner = make_runner(session, clock, RacingRollupTask(WEEKLY, actor_id))

        summary = runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 9))

        assert summary.status == RunStatus.FAILED
        assert summary.write_failures == 2
        assert "WRITE_FAILURE" not in (summary.error_summary or "")
        assert "2 record(s)" in summary.error_summary
        rows = snapshots(session)
        # Only the racing row survives; W2 from this run was rolled back too
        assert list(rows) == ["2026-07-W1"]
        assert rows["2026-07-W1"].totals == {"order_total": "999"}
        assert fold_count(session) == 0


# =============================================================================
# Run records and queries
# =============================================================================


class TestRunRecords:

    def test_unknown_job(self, session, clock, actor_id):
        with pytest.raises(JobNotRegisteredError) as exc_info:
            make_runner(session, clock).run("nope", actor_id)
        assert exc_info.value.available == ("weekly_sales",)

    def test_run_is_recorded(self, session, clock, actor_id, make_order):
        make_order(session, utc(2026, 7, 1), "5")
        runner = make_runner(session, clock)

        summary = runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 2))

        model = session.get(ReconciliationRunModel, summary.run_id)
        assert model.status == "completed"
        assert model.job_kind == JobKind.ROLLUP.value
        assert model.records_folded == 1
        assert ensure_utc(model.completed_at) == clock.now()

        fetched = runner.get_run(summary.run_id)
        assert fetched.status == RunStatus.COMPLETED
        assert fetched.window == summary.window

    def test_get_run_missing(self, session, clock):
        with pytest.raises(LookupError):
            make_runner(session, clock).get_run(uuid4())

    def test_list_runs_newest_first(self, session, clock, actor_id):
        runner = make_runner(session, clock)
        first = runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 2))
        clock.advance(3600)
        second = runner.run("weekly_sales", actor_id, as_of=utc(2026, 7, 2))

        assert [s.run_id for s in runner.list_runs("weekly_sales")] == [
            second.run_id, first.run_id,
        ]

    def test_summary_dict(self, session, clock, actor_id):
        summary = make_runner(session, clock).run("weekly_sales", actor_id, as_of=utc(2026, 7, 2))

        data = summary.to_dict()
        assert data["status"] == "completed"
        assert data["window_start"] == "2026-07-01T00:00:00+00:00"
        assert data["chunk_errors"] == []

    def test_logs_carry_run_context(self, session, clock, actor_id, make_order, captured_logs):
        make_order(session, utc(2026, 7, 1), "5")

        summary = make_runner(session, clock).run(
            "weekly_sales", actor_id, as_of=utc(2026, 7, 2), correlation_id="corr-1",
        )

        logs = captured_logs()
        started = next(r for r in logs if r["message"] == "reconciliation_run_started")
        finished = next(r for r in logs if r["message"] == "reconciliation_run_finished")
        assert started["run_id"] == str(summary.run_id)
        assert started["correlation_id"] == "corr-1"
        assert started["job_name"] == "weekly_sales"
        assert finished["status"] == "completed"
        assert any(r["message"] == "snapshots_written" for r in logs)
