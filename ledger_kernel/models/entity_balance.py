"""
Module: ledger_kernel.models.entity_balance
Responsibility: Cached running balance per trading partner.
Architecture position: Kernel > Models.

Invariants enforced:
    - One row per (company_id, entity_type, entity_id).
    - balance == sum(debit - credit) over non-tombstoned journal lines
      carrying that entity.  The row is a cache: EntityBalanceService can
      drop and rebuild it from the journal at any time.
    - Positive balance: the entity owes the company (receivable side).
"""

from decimal import Decimal

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.domain.values import ZERO


class EntityBalance(Base):
    __tablename__ = "entity_balances"

    __table_args__ = (
        UniqueConstraint(
            "company_id", "entity_type", "entity_id", name="uq_entity_balance_key"
        ),
    )

    company_id: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)

    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)

    balance: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    def __repr__(self) -> str:
        return f"<EntityBalance {self.company_id}/{self.entity_type}/{self.entity_id}={self.balance}>"
