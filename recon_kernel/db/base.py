"""
Module: recon_kernel.db.base
Responsibility: Declarative base classes for every ORM model in the engine
    (source records, snapshots, fold ledger, reminders, run records).
Architecture position: Kernel > DB.  Lowest-level import target; MUST NOT
    import from recon_batch or recon_config.

Invariants enforced:
    - UUID primary keys stored as String(36) so the same schema runs on
      PostgreSQL in production and SQLite in unit tests.
    - Decimal maps to Numeric(38, 9).  Measures are never floats.
    - TrackedBase supplies created/updated audit columns.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID persisted as its 36-character string form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all models.

    Guarantees:
        - ``id`` is a uuid4 primary key.
        - Decimal -> Numeric(38, 9), datetime -> timezone-aware DateTime,
          int -> BigInteger (ingestion sequences can grow large).
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with audit timestamps and actor attribution.

    ``created_at`` is also the fallback windowing column for source rows
    whose business timestamp is missing (see services/scanner.py).
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )
