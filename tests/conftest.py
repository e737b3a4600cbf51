"""
Pytest fixtures for the reconciliation engine test suite.

Provides:
- In-memory SQLite sessions (SAVEPOINT-capable) for engine tests
- File-backed SQLite session factories for multi-session scheduler tests
- DeterministicClock, actor and sales-order fixtures
- Structured log capture
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from itertools import count
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from recon_kernel.db.base import Base
from recon_kernel.db.engine import enable_sqlite_savepoints
from recon_kernel.domain.clock import DeterministicClock
from recon_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

import recon_batch.models  # noqa: F401  (registers every table)
from recon_batch.models.source import SalesOrderModel


# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture recon logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, runner):
            runner.run("weekly_sales", actor_id)
            logs = captured_logs()
            assert any(r["message"] == "reconciliation_run_started" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("recon")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    eng = enable_sqlite_savepoints(create_engine("sqlite://"))
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    sess = Session(bind=engine)
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def session_factory(tmp_path):
    """Independent sessions over one file-backed database."""
    eng = enable_sqlite_savepoints(create_engine(f"sqlite:///{tmp_path / 'recon.db'}"))
    Base.metadata.create_all(eng)
    yield sessionmaker(bind=eng, expire_on_commit=False)
    eng.dispose()


@pytest.fixture
def clock():
    return DeterministicClock(utc(2026, 7, 3, 12, 0, 0))


@pytest.fixture
def actor_id():
    return TEST_ACTOR_ID


# =============================================================================
# Source data fixtures
# =============================================================================


@pytest.fixture
def make_order(actor_id):
    """Factory adding one sales order row (flushed, not committed).

    ``seq`` increments per call unless given; ``created_at`` defaults to
    ``ordered_at`` so undated rows can be placed in a window explicitly.
    """
    seqs = count(1)

    def _make(
        session: Session,
        ordered_at: datetime | None,
        order_total: str | None = "0",
        account_ref: str | None = "ACCT-001",
        status: str = "booked",
        commission_amount: str | None = None,
        tax_amount: str | None = None,
        quantity: str | None = "1",
        created_at: datetime | None = None,
        seq: int | None = None,
    ) -> SalesOrderModel:
        n = seq if seq is not None else next(seqs)
        order = SalesOrderModel(
            seq=n,
            order_number=f"SO-{n:05d}",
            account_ref=account_ref,
            status=status,
            ordered_at=ordered_at,
            order_total=Decimal(order_total) if order_total is not None else None,
            commission_amount=(
                Decimal(commission_amount) if commission_amount is not None else None
            ),
            tax_amount=Decimal(tax_amount) if tax_amount is not None else None,
            quantity=Decimal(quantity) if quantity is not None else None,
            created_at=created_at or ordered_at or utc(2026, 7, 1),
            created_by_id=actor_id,
        )
        session.add(order)
        session.flush()
        return order

    return _make
