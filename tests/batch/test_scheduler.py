"""
Tests for recon_batch.services.scheduler.

Validates that due schedules fire through the runner with their own
committed session, that nothing fires before the next slot, that inactive
and on-demand schedules stay idle, that one failing job does not block the
others, and that the background loop starts and stops cleanly.
"""

import threading
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select

from recon_batch.domain.types import JobSchedule, ScheduleFrequency
from recon_batch.models.reconciliation import ReconciliationRunModel, RollupSnapshotModel
from recon_batch.services.runner import ReconciliationRunner
from recon_batch.services.scheduler import ReconciliationScheduler, last_run_started_at
from recon_batch.tasks.base import TaskRegistry
from recon_batch.tasks.rollup import SnapshotRollupTask
from recon_config.schema import RollupDefinition


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def rollup(name: str) -> RollupDefinition:
    return RollupDefinition(
        name=name,
        source="sales_orders",
        timestamp_field="ordered_at",
        measures=("order_total",),
    )


class BrokenRollupTask(SnapshotRollupTask):
    def resolve_window(self, as_of):
        raise RuntimeError("window service unavailable")


def build_scheduler(session_factory, clock, actor_id, schedules, *tasks):
    registry = TaskRegistry()
    for task in tasks or (SnapshotRollupTask(rollup("weekly_sales")),):
        registry.register(task)

    def runner_factory(session):
        return ReconciliationRunner(session, registry, clock=clock)

    return ReconciliationScheduler(
        session_factory=session_factory,
        runner_factory=runner_factory,
        schedules=schedules,
        clock=clock,
        actor_id=actor_id,
        tick_interval_seconds=1,
    )


def seed_orders(session_factory, make_order, *amounts):
    session = session_factory()
    for day, amount in enumerate(amounts, start=1):
        make_order(session, utc(2026, 7, day, 9), amount)
    session.commit()
    session.close()


def run_rows(session_factory, job_name):
    session = session_factory()
    try:
        return session.execute(
            select(ReconciliationRunModel).where(ReconciliationRunModel.job_name == job_name)
        ).scalars().all()
    finally:
        session.close()


DAILY_2AM = JobSchedule("weekly_sales", ScheduleFrequency.DAILY, hour=2)


class TestTick:

    def test_never_run_job_fires_and_commits(self, session_factory, clock, actor_id, make_order):
        seed_orders(session_factory, make_order, "5", "7")
        scheduler = build_scheduler(session_factory, clock, actor_id, [DAILY_2AM])

        assert scheduler.tick() == 1

        session = session_factory()
        try:
            row = session.execute(select(RollupSnapshotModel)).scalar_one()
            assert Decimal(row.totals["order_total"]) == Decimal("12")
            assert last_run_started_at(session, "weekly_sales") == clock.now()
        finally:
            session.close()

    def test_waits_for_next_slot(self, session_factory, clock, actor_id):
        scheduler = build_scheduler(session_factory, clock, actor_id, [DAILY_2AM])
        scheduler.tick()

        clock.set_time(utc(2026, 7, 4, 1, 59))
        assert scheduler.tick() == 0

        clock.set_time(utc(2026, 7, 4, 2, 0))
        assert scheduler.tick() == 1
        assert len(run_rows(session_factory, "weekly_sales")) == 2

    def test_inactive_and_on_demand_never_fire(self, session_factory, clock, actor_id):
        schedules = [
            JobSchedule("weekly_sales", ScheduleFrequency.DAILY, is_active=False),
            JobSchedule("monthly_sales", ScheduleFrequency.ON_DEMAND),
        ]
        scheduler = build_scheduler(
            session_factory, clock, actor_id, schedules,
            SnapshotRollupTask(rollup("weekly_sales")),
            SnapshotRollupTask(rollup("monthly_sales")),
        )

        assert scheduler.tick() == 0
        assert run_rows(session_factory, "weekly_sales") == []

    def test_failing_job_does_not_block_others(
        self, session_factory, clock, actor_id, make_order, captured_logs,
    ):
        seed_orders(session_factory, make_order, "5")
        schedules = [
            JobSchedule("broken", ScheduleFrequency.DAILY),
            DAILY_2AM,
        ]
        scheduler = build_scheduler(
            session_factory, clock, actor_id, schedules,
            BrokenRollupTask(rollup("broken")),
            SnapshotRollupTask(rollup("weekly_sales")),
        )

        assert scheduler.tick() == 1

        assert run_rows(session_factory, "broken") == []
        assert len(run_rows(session_factory, "weekly_sales")) == 1
        failures = [r for r in captured_logs() if r["message"] == "schedule_fire_failed"]
        assert failures[0]["job_name"] == "broken"
        assert failures[0]["exc_type"] == "RuntimeError"

    def test_unknown_job_is_logged_not_raised(self, session_factory, clock, actor_id):
        scheduler = build_scheduler(
            session_factory, clock, actor_id,
            [JobSchedule("nope", ScheduleFrequency.DAILY)],
        )

        assert scheduler.tick() == 0


class TestLifecycle:

    def test_start_and_stop(self, session_factory, clock, actor_id):
        fired = threading.Event()
        registry = TaskRegistry()
        registry.register(SnapshotRollupTask(rollup("weekly_sales")))

        def runner_factory(session):
            fired.set()
            return ReconciliationRunner(session, registry, clock=clock)

        scheduler = ReconciliationScheduler(
            session_factory=session_factory,
            runner_factory=runner_factory,
            schedules=[DAILY_2AM],
            clock=clock,
            actor_id=actor_id,
            tick_interval_seconds=1,
        )

        scheduler.start()
        assert scheduler.is_running
        assert fired.wait(timeout=5)
        scheduler.stop(timeout=5)

        assert not scheduler.is_running

    def test_stopped_scheduler_fires_nothing(self, session_factory, clock, actor_id):
        scheduler = build_scheduler(session_factory, clock, actor_id, [DAILY_2AM])
        scheduler.stop()

        assert scheduler.tick() == 0
