"""
Module: ledger_kernel.models.inventory
Responsibility: ORM persistence for lots, per-(product, warehouse, lot)
    stock batches, and the append-only inventory transaction log.
Architecture position: Kernel > Models.  May import from db/base.py and
    the pure domain modules only.

Invariants enforced:
    - StockBatch.qty_on_hand >= 0 (CHECK constraint; StockLedger refuses
      withdrawals that would go negative).
    - One StockBatch per (product, warehouse, lot); rows are zeroed, never
      deleted.
    - InventoryTransaction rows are never updated except for the
      is_tombstoned flag.  seq is unique and gives inflow order for FIFO.
    - For each batch, replaying the non-tombstoned on-hand transactions in
      seq order reproduces qty_on_hand and unit_cost
      (see StockSelector.reconstruct).

Audit relevance:
    Every change to a StockBatch is paired with exactly one transaction in
    the same unit of work; reversals are new rows pointing at the original
    through reverses_id.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.domain.movement import Direction, MovementType, TransactionType
from ledger_kernel.domain.values import ZERO


class InventoryLot(TrackedBase):
    """
    Lot master: a trackable sub-quantity of a product.

    Lot codes are unique per product; the same lot may sit in several
    warehouses, each with its own StockBatch.
    """

    __tablename__ = "inventory_lots"

    __table_args__ = (
        UniqueConstraint("product_id", "lot_code", name="uq_lot_product_code"),
        Index("idx_lot_expiry", "product_id", "exp_date"),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    lot_code: Mapped[str] = mapped_column(String(100), nullable=False)

    mfg_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    exp_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    def __repr__(self) -> str:
        return f"<InventoryLot {self.product_id}/{self.lot_code}>"


class StockBatch(TrackedBase):
    """
    Quantity-on-hand and weighted-average unit cost for one lot in one
    warehouse.  Mutated only by StockLedger.deposit / withdraw.
    """

    __tablename__ = "stock_batches"

    __table_args__ = (
        UniqueConstraint("product_id", "warehouse_id", "lot_id", name="uq_stock_batch"),
        CheckConstraint("qty_on_hand >= 0", name="ck_stock_batch_qty_non_negative"),
        Index("idx_stock_batch_product_wh", "product_id", "warehouse_id"),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    warehouse_id: Mapped[str] = mapped_column(String(100), nullable=False)

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_lots.id"),
        nullable=False,
    )

    qty_on_hand: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    currency_code: Mapped[str | None] = mapped_column(String(3), nullable=True)

    uom_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    lot: Mapped[InventoryLot] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return (
            f"<StockBatch {self.product_id}@{self.warehouse_id} lot={self.lot_id} "
            f"qty={self.qty_on_hand} cost={self.unit_cost}>"
        )


class InventoryTransaction(TrackedBase):
    """
    One append-only stock movement.

    Contract:
        amount = quantity * unit_cost; foreign_amount / converted_amount
        follow the document currency and rate.  A reversal row carries the
        original's quantity and cost with reverses_id set and a REVERSAL_*
        txn_type.
    """

    __tablename__ = "inventory_transactions"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_inventory_txn_seq"),
        Index("idx_inventory_txn_source", "source_type", "source_id"),
        Index("idx_inventory_txn_batch", "product_id", "warehouse_id", "lot_id"),
        Index("idx_inventory_txn_reverses", "reverses_id"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    txn_date: Mapped[date] = mapped_column(Date, nullable=False)

    direction: Mapped[Direction] = mapped_column(String(20), nullable=False)

    movement_type: Mapped[MovementType] = mapped_column(String(20), nullable=False)

    txn_type: Mapped[TransactionType] = mapped_column(String(30), nullable=False)

    source_type: Mapped[str] = mapped_column(String(50), nullable=False)

    source_id: Mapped[str] = mapped_column(String(100), nullable=False)

    source_line_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    warehouse_id: Mapped[str] = mapped_column(String(100), nullable=False)

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_lots.id"),
        nullable=False,
    )

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    currency_code: Mapped[str | None] = mapped_column(String(3), nullable=True)

    exchange_rate: Mapped[Decimal | None] = mapped_column(nullable=True)

    foreign_amount: Mapped[Decimal] = mapped_column(nullable=False)

    converted_amount: Mapped[Decimal] = mapped_column(nullable=False)

    uom_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    is_tombstoned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    reverses_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_transactions.id"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<InventoryTransaction #{self.seq} {self.movement_type} "
            f"{self.product_id} qty={self.quantity}>"
        )
