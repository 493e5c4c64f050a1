"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal headers and lines, the
    authoritative double-entry record of every posting and reversal.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py only.

Invariants enforced:
    - journal_number is unique (GLJ-YYYY-NNNN from a per-year counter).
    - For a header, sum(debit) == sum(credit) within POSTING_TOLERANCE
      (checked by JournalEngine before insert; is_balanced for read side).
    - A reversal is a new header with reversal_of_id set; the original's
      financial columns are never updated.  Only is_tombstoned flips.

Audit relevance:
    Entity balances and every ledger figure derive from non-tombstoned
    lines of non-tombstoned headers.  Tombstoned rows remain for audit.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.domain.values import POSTING_TOLERANCE, ZERO

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account


class JournalHeader(TrackedBase):
    """
    One balanced posting event.

    Contract:
        Created once per posting or reversal.  Lines are written together
        with the header and never edited afterwards.

    Guarantees:
        - source_type/source_id identify the originating document; a
          reversal keeps the original's source reference.
        - foreign_amount / converted_amount are always populated.
    """

    __tablename__ = "journal_headers"

    __table_args__ = (
        UniqueConstraint("journal_number", name="uq_journal_number"),
        Index("idx_journal_source", "source_type", "source_id"),
        Index("idx_journal_company_date", "company_id", "journal_date"),
        Index("idx_journal_reversal_of", "reversal_of_id"),
    )

    journal_number: Mapped[str] = mapped_column(String(30), nullable=False)

    journal_date: Mapped[date] = mapped_column(Date, nullable=False)

    company_id: Mapped[str] = mapped_column(String(50), nullable=False)

    source_type: Mapped[str] = mapped_column(String(50), nullable=False)

    source_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # Human-readable source reference, e.g. the bill number
    source_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    memo: Mapped[str | None] = mapped_column(String(500), nullable=True)

    currency_code: Mapped[str | None] = mapped_column(String(3), nullable=True)

    exchange_rate: Mapped[Decimal | None] = mapped_column(nullable=True)

    foreign_amount: Mapped[Decimal] = mapped_column(nullable=False)

    converted_amount: Mapped[Decimal] = mapped_column(nullable=False)

    posted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    is_tombstoned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_headers.id"),
        nullable=True,
    )

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="journal",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="JournalLine.line_no",
    )

    reversal_of: Mapped["JournalHeader | None"] = relationship(
        remote_side="JournalHeader.id",
        foreign_keys=[reversal_of_id],
    )

    def __repr__(self) -> str:
        return f"<JournalHeader {self.journal_number} source={self.source_type}:{self.source_id}>"

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)

    @property
    def is_balanced(self) -> bool:
        return abs(self.total_debits - self.total_credits) <= POSTING_TOLERANCE

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None


class JournalLine(TrackedBase):
    """
    A single debit or credit within a journal.

    Guarantees:
        - Exactly one of debit/credit is positive; the other is zero.
        - entity_type/entity_id are both set or both null.
        - converted_amount = amount * exchange rate of the header (or the
          amount itself for base-currency journals).
    """

    __tablename__ = "journal_lines"

    __table_args__ = (
        Index("idx_line_journal", "journal_id"),
        Index("idx_line_account", "account_id"),
        Index("idx_line_entity", "entity_type", "entity_id"),
    )

    journal_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_headers.id"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    debit: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    credit: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    entity_type: Mapped[str | None] = mapped_column(String(20), nullable=True)

    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    product_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    currency_code: Mapped[str | None] = mapped_column(String(3), nullable=True)

    foreign_amount: Mapped[Decimal] = mapped_column(nullable=False)

    converted_amount: Mapped[Decimal] = mapped_column(nullable=False)

    journal: Mapped[JournalHeader] = relationship(back_populates="lines")

    account: Mapped["Account"] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return f"<JournalLine {self.line_no} Dr {self.debit} Cr {self.credit}>"

    @property
    def signed_amount(self) -> Decimal:
        """debit - credit."""
        return self.debit - self.credit
