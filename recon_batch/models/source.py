"""
Source record table read by the scanner.

Contract:
    ``sales_orders`` is owned by the upstream order-management processes.
    The engine only SELECTs from it.  ``seq`` is a monotonic ingestion
    sequence assigned upstream; the scanner partitions a run into chunks by
    seq range.

    ``SOURCE_MODELS`` maps the ``source`` name used in job configuration to
    the ORM class the scanner queries.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from recon_kernel.db.base import TrackedBase


class SalesOrderModel(TrackedBase):
    """Order header with already-computed commission and tax amounts."""

    __tablename__ = "sales_orders"

    __table_args__ = (
        Index("ix_sales_orders_ordered_at", "ordered_at"),
        Index("ix_sales_orders_account_status", "account_ref", "status"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    order_number: Mapped[str] = mapped_column(String(50), nullable=False)
    account_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="open")
    ordered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    order_total: Mapped[Decimal | None] = mapped_column(nullable=True)
    commission_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(nullable=True)


SOURCE_MODELS: dict[str, type[TrackedBase]] = {
    "sales_orders": SalesOrderModel,
}
