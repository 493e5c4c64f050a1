"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for chart-of-accounts rows that journal
    lines point at.  Account master data is maintained elsewhere; the core
    only reads it.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py only.

Invariants enforced:
    - code is unique.
    - An account tagged ``receivable`` or ``payable`` is entity-required:
      every journal line posted to it must name a customer (receivable) or
      a supplier (payable), enforced by JournalEngine through the resolved
      AccountRef.
"""

from enum import Enum

from sqlalchemy import JSON, Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase
from ledger_kernel.domain.values import EntityType


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class AccountTag(str, Enum):
    RECEIVABLE = "receivable"
    PAYABLE = "payable"
    INVENTORY = "inventory"
    COST_OF_SALES = "cost_of_sales"
    TAX = "tax"


_TAG_ENTITY_TYPES = {
    AccountTag.RECEIVABLE: EntityType.CUSTOMER,
    AccountTag.PAYABLE: EntityType.SUPPLIER,
}


class Account(TrackedBase):
    """
    Chart of accounts entry.

    Guarantees:
        - code is unique and non-null.
        - requires_entity is derived from tags, never stored separately.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_account_code"),
        Index("idx_account_active", "is_active"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Stored as a JSON array of AccountTag values
    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    def has_tag(self, tag: AccountTag | str) -> bool:
        if self.tags is None:
            return False
        tag_value = tag.value if isinstance(tag, AccountTag) else tag
        return tag_value in self.tags

    @property
    def entity_type(self) -> EntityType | None:
        """Trading-partner kind every line on this account must name."""
        for tag, entity_type in _TAG_ENTITY_TYPES.items():
            if self.has_tag(tag):
                return entity_type
        return None

    @property
    def requires_entity(self) -> bool:
        return self.entity_type is not None
