"""
Module: ledger_kernel.db.base
Responsibility: Declarative bases shared by every ORM model in the ledger
    core: UUID primary keys, the column type map, and the audit-column mixin.
Architecture position: Kernel > DB.  Lowest import target in the kernel.
    MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - Every row has a uuid4 primary key stored as String(36) so the schema
      behaves the same on PostgreSQL and SQLite.
    - Python Decimal maps to Numeric(38, 9).  Quantities, unit costs and
      money amounts are never stored as float columns.
    - TrackedBase rows always record who created them.

Audit relevance:
    created_at / created_by_id on journals, stock transactions and
    documents identify the actor behind every posting and reversal.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID stored as a 36-character string.

    Guarantees:
        - UUID -> str on bind, str -> UUID on load.
        - None passes through untouched.
    """

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
    Declarative base for all ledger models.

    Guarantees:
        - id is a uuid4 primary key.
        - Decimal -> Numeric(38, 9), datetime -> DateTime(timezone=True),
          UUID -> UUIDString, int -> BigInteger.
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
    Abstract base adding audit timestamps and actor columns.

    Contract:
        created_by_id is required on every insert.  updated_* columns are
        audit metadata and may change on rows whose financial columns are
        append-only (journals, stock transactions).
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


UUID = PyUUID
