"""
Module: ledger_kernel.selectors.stock_selector
Responsibility: Read-only access to stock batches and the inventory
    transaction log: allocator candidates, near-expiry lots, in-transit
    balances, per-source transaction lists and replay-based
    reconstruction of a batch.
Architecture position: Kernel > Selectors.  Read-only; never locks.

Invariants enforced:
    - Candidates are batches with qty_on_hand > 0 only.
    - reconstruct() ignores tombstoned transactions and movements whose
      policy does not touch on-hand quantity.
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, func, select

from ledger_kernel.domain.dtos import BatchState, ExpiringLot, LotAvailability
from ledger_kernel.domain.movement import (
    MOVEMENT_POLICIES,
    TransactionType,
    policy_for,
    unblend_cost,
    weighted_average_cost,
)
from ledger_kernel.domain.values import ZERO
from ledger_kernel.models.inventory import InventoryLot, InventoryTransaction, StockBatch
from ledger_kernel.selectors.base import BaseSelector

_ON_HAND_INFLOWS = tuple(
    p.movement_type.value
    for p in MOVEMENT_POLICIES.values()
    if p.affects_on_hand and p.is_inflow
)

_TRANSIT_SIGNS = {
    p.movement_type.value: p.sign
    for p in MOVEMENT_POLICIES.values()
    if not p.affects_on_hand
}


class StockSelector(BaseSelector):
    """Queries over stock batches and inventory transactions."""

    def get_batch(self, product_id: str, warehouse_id: str, lot_id: UUID) -> StockBatch | None:
        return self.session.execute(
            select(StockBatch).where(
                StockBatch.product_id == product_id,
                StockBatch.warehouse_id == warehouse_id,
                StockBatch.lot_id == lot_id,
            )
        ).scalar_one_or_none()

    def available_lots(self, product_id: str, warehouse_id: str) -> list[LotAvailability]:
        """Every lot of the product with stock in the warehouse, unordered.

        Ordering is the allocator's job; each candidate carries what FIFO
        and FEFO sort on.
        """
        first_inflow = (
            select(
                InventoryTransaction.lot_id.label("lot_id"),
                func.min(InventoryTransaction.seq).label("first_seq"),
            )
            .where(
                InventoryTransaction.product_id == product_id,
                InventoryTransaction.warehouse_id == warehouse_id,
                InventoryTransaction.movement_type.in_(_ON_HAND_INFLOWS),
                InventoryTransaction.is_tombstoned.is_(False),
            )
            .group_by(InventoryTransaction.lot_id)
            .subquery()
        )

        rows = self.session.execute(
            select(StockBatch, InventoryLot, first_inflow.c.first_seq)
            .join(InventoryLot, InventoryLot.id == StockBatch.lot_id)
            .outerjoin(first_inflow, first_inflow.c.lot_id == StockBatch.lot_id)
            .where(
                and_(
                    StockBatch.product_id == product_id,
                    StockBatch.warehouse_id == warehouse_id,
                    StockBatch.qty_on_hand > 0,
                )
            )
        ).all()

        return [
            LotAvailability(
                lot_id=batch.lot_id,
                lot_code=lot.lot_code,
                qty_on_hand=batch.qty_on_hand,
                unit_cost=batch.unit_cost,
                exp_date=lot.exp_date,
                mfg_date=lot.mfg_date,
                first_inflow_seq=first_seq,
            )
            for batch, lot, first_seq in rows
        ]

    def total_on_hand(self, product_id: str, warehouse_id: str) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(StockBatch.qty_on_hand), 0)).where(
                StockBatch.product_id == product_id,
                StockBatch.warehouse_id == warehouse_id,
            )
        ).scalar_one()
        return Decimal(str(total))

    def near_expiry_lots(
        self, as_of: date, days: int = 30, warehouse_id: str | None = None
    ) -> list[ExpiringLot]:
        """Batches with stock whose lot expires within ``days`` of ``as_of``.

        Lots already expired or without an expiry date are left out.
        Soonest expiry first.
        """
        horizon = as_of + timedelta(days=days)
        stmt = (
            select(StockBatch, InventoryLot)
            .join(InventoryLot, InventoryLot.id == StockBatch.lot_id)
            .where(
                InventoryLot.exp_date.is_not(None),
                InventoryLot.exp_date >= as_of,
                InventoryLot.exp_date <= horizon,
                StockBatch.qty_on_hand > 0,
            )
        )
        if warehouse_id is not None:
            stmt = stmt.where(StockBatch.warehouse_id == warehouse_id)
        stmt = stmt.order_by(
            InventoryLot.exp_date, StockBatch.product_id, StockBatch.warehouse_id
        )

        return [
            ExpiringLot(
                product_id=batch.product_id,
                warehouse_id=batch.warehouse_id,
                lot_id=batch.lot_id,
                lot_code=lot.lot_code,
                exp_date=lot.exp_date,
                qty_on_hand=batch.qty_on_hand,
                days_left=(lot.exp_date - as_of).days,
            )
            for batch, lot in self.session.execute(stmt).all()
        ]

    def in_transit_quantity(self, product_id: str, warehouse_id: str, lot_id: UUID) -> Decimal:
        """Quantity still in transit: live transit inflows less transit closures and discards."""
        rows = self.session.execute(
            select(InventoryTransaction.movement_type, func.sum(InventoryTransaction.quantity))
            .where(
                InventoryTransaction.product_id == product_id,
                InventoryTransaction.warehouse_id == warehouse_id,
                InventoryTransaction.lot_id == lot_id,
                InventoryTransaction.movement_type.in_(tuple(_TRANSIT_SIGNS)),
                InventoryTransaction.is_tombstoned.is_(False),
            )
            .group_by(InventoryTransaction.movement_type)
        ).all()
        return sum(
            (_TRANSIT_SIGNS[movement] * Decimal(str(total)) for movement, total in rows),
            ZERO,
        )

    def live_transactions_for_source(
        self, source_type: str, source_id: str
    ) -> list[InventoryTransaction]:
        """Non-tombstoned, non-reversal transactions of a document, newest first."""
        return list(
            self.session.execute(
                select(InventoryTransaction)
                .where(
                    InventoryTransaction.source_type == source_type,
                    InventoryTransaction.source_id == source_id,
                    InventoryTransaction.is_tombstoned.is_(False),
                    InventoryTransaction.reverses_id.is_(None),
                )
                .order_by(InventoryTransaction.seq.desc())
            ).scalars()
        )

    def transactions_for_batch(
        self, product_id: str, warehouse_id: str, lot_id: UUID, include_tombstoned: bool = False
    ) -> list[InventoryTransaction]:
        stmt = select(InventoryTransaction).where(
            InventoryTransaction.product_id == product_id,
            InventoryTransaction.warehouse_id == warehouse_id,
            InventoryTransaction.lot_id == lot_id,
        )
        if not include_tombstoned:
            stmt = stmt.where(InventoryTransaction.is_tombstoned.is_(False))
        return list(self.session.execute(stmt.order_by(InventoryTransaction.seq)).scalars())

    def reconstruct(self, product_id: str, warehouse_id: str, lot_id: UUID) -> BatchState:
        """Replay live on-hand transactions to rebuild a batch's state.

        Inflows blend cost with the weighted-average rule; a REVERSAL_OUT
        un-blends the inflow it takes back; other outflows only reduce
        quantity.
        """
        qty = ZERO
        cost = ZERO
        for txn in self.transactions_for_batch(product_id, warehouse_id, lot_id):
            policy = policy_for(txn.movement_type)
            if not policy.affects_on_hand:
                continue
            if policy.is_inflow:
                cost = weighted_average_cost(qty, cost, txn.quantity, txn.unit_cost)
                qty += txn.quantity
            else:
                if txn.txn_type == TransactionType.REVERSAL_OUT:
                    cost = unblend_cost(qty, cost, txn.quantity, txn.unit_cost)
                qty -= txn.quantity
        return BatchState(qty_on_hand=qty, unit_cost=cost)
