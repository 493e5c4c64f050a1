"""
StockLedger -- deposit / withdraw primitives over stock batches.

Responsibility:
    The only writer of StockBatch rows.  Every change to a batch appends
    exactly one InventoryTransaction in the same flush.  Reversal issues
    the opposite movement as a new transaction; history is never edited
    apart from the tombstone flag.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the document posting
    service; uses SequenceService for transaction order and the pure
    movement policy table to decide what each movement does.

Invariants enforced:
    - qty_on_hand never goes below zero.  A withdrawal asking for more than
      on-hand + tolerance raises InsufficientStockError before anything is
      modified; within tolerance the batch is drained to exactly zero and
      the transaction records the quantity actually removed.
    - Inflows re-blend the batch cost (weighted average); outflows leave
      it unchanged; reversing an inflow un-blends it.
    - Movement types whose policy does not affect on-hand quantity
      (in-transit, discard) are recorded without touching any batch.
    - In-transit stock is closed only up to what is still in transit.

Failure modes:
    - InvalidQuantityError: quantity <= 0 or unit cost < 0.
    - InsufficientStockError: missing batch or not enough on hand, checked
      under a row lock at write time so a stale allocation plan fails
      instead of overdrawing.

Audit relevance:
    Reversal shortfalls are the one tolerated inconsistency; each is
    logged as ``stock_reversal_shortfall`` at WARNING with the requested
    and reversed quantities.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import MovementContext, StockReversal, TransitClosure
from ledger_kernel.domain.movement import (
    MovementPolicy,
    MovementType,
    TransactionType,
    policy_for,
    unblend_cost,
    weighted_average_cost,
)
from ledger_kernel.domain.values import (
    POSTING_TOLERANCE,
    ZERO,
    quantize_money,
    quantize_scale,
    to_decimal,
)
from ledger_kernel.exceptions import InsufficientStockError, InvalidQuantityError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.inventory import InventoryLot, InventoryTransaction, StockBatch
from ledger_kernel.selectors.stock_selector import StockSelector
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.stock_ledger")


class StockLedger(BaseService):
    """
    Stock batch mutations and their transaction log.

    Contract:
        deposit / withdraw take (product, warehouse, lot, quantity, unit
        cost) plus a MovementContext describing the business source.  Both
        return the appended InventoryTransaction.

    Non-goals:
        - Does NOT choose lots; see BatchAllocator.
        - Does NOT commit.
    """

    def __init__(
        self,
        session: Session,
        sequences: SequenceService | None = None,
        tolerance: Decimal = POSTING_TOLERANCE,
    ):
        super().__init__(session)
        self._sequences = sequences or SequenceService(session)
        self._tolerance = tolerance

    # ------------------------------------------------------------------
    # Lots
    # ------------------------------------------------------------------

    def ensure_lot(
        self,
        product_id: str,
        lot_code: str,
        actor_id: UUID,
        mfg_date: date | None = None,
        exp_date: date | None = None,
    ) -> InventoryLot:
        """Return the lot for (product, lot_code), creating it if needed.

        Dates on an existing lot are filled in when it has none.
        """
        lot = self.session.execute(
            select(InventoryLot).where(
                InventoryLot.product_id == product_id,
                InventoryLot.lot_code == lot_code,
            )
        ).scalar_one_or_none()

        if lot is None:
            lot = InventoryLot(
                product_id=product_id,
                lot_code=lot_code,
                mfg_date=mfg_date,
                exp_date=exp_date,
                created_by_id=actor_id,
            )
            self.session.add(lot)
            self.session.flush()
            logger.debug(
                "lot_created",
                extra={"product_id": product_id, "lot_code": lot_code, "lot_id": str(lot.id)},
            )
        else:
            if lot.mfg_date is None and mfg_date is not None:
                lot.mfg_date = mfg_date
            if lot.exp_date is None and exp_date is not None:
                lot.exp_date = exp_date
        return lot

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def deposit(
        self,
        product_id: str,
        warehouse_id: str,
        lot_id: UUID,
        quantity: Decimal,
        unit_cost: Decimal,
        *,
        context: MovementContext,
    ) -> InventoryTransaction:
        """Add stock to a batch, creating it if absent, and re-blend its cost."""
        policy = policy_for(context.movement_type)
        if not (policy.affects_on_hand and policy.is_inflow):
            raise ValueError(f"deposit() cannot record movement {policy.movement_type.value}")
        quantity, unit_cost = self._validated(quantity, unit_cost)

        batch = self._locked_batch(product_id, warehouse_id, lot_id)
        if batch is None:
            batch = StockBatch(
                product_id=product_id,
                warehouse_id=warehouse_id,
                lot_id=lot_id,
                qty_on_hand=ZERO,
                unit_cost=ZERO,
                currency_code=context.currency_code,
                uom_code=context.uom_code,
                created_by_id=context.actor_id,
            )
            self.session.add(batch)

        old_qty, old_cost = batch.qty_on_hand, batch.unit_cost
        batch.unit_cost = weighted_average_cost(old_qty, old_cost, quantity, unit_cost)
        batch.qty_on_hand = old_qty + quantity
        batch.updated_by_id = context.actor_id

        txn = self._append(product_id, warehouse_id, lot_id, quantity, unit_cost, policy, context)

        logger.info(
            "stock_deposited",
            extra={
                "product_id": product_id,
                "warehouse_id": warehouse_id,
                "lot_id": str(lot_id),
                "quantity": quantity,
                "unit_cost": unit_cost,
                "old_qty": old_qty,
                "new_qty": batch.qty_on_hand,
                "new_unit_cost": batch.unit_cost,
                "txn_seq": txn.seq,
            },
        )
        return txn

    def withdraw(
        self,
        product_id: str,
        warehouse_id: str,
        lot_id: UUID,
        quantity: Decimal,
        unit_cost: Decimal | None = None,
        *,
        context: MovementContext,
    ) -> InventoryTransaction:
        """Remove stock from a batch; cost is unchanged.

        ``unit_cost`` defaults to the batch's current cost, which is what
        cost-of-goods should be computed from.
        """
        policy = policy_for(context.movement_type)
        if not policy.affects_on_hand or policy.is_inflow:
            raise ValueError(f"withdraw() cannot record movement {policy.movement_type.value}")
        return self._withdraw(
            product_id, warehouse_id, lot_id, quantity, unit_cost, policy, context
        )

    def record_movement(
        self,
        product_id: str,
        warehouse_id: str,
        lot_id: UUID,
        quantity: Decimal,
        unit_cost: Decimal,
        *,
        context: MovementContext,
    ) -> InventoryTransaction:
        """Record any movement type, dispatching on its policy."""
        policy = policy_for(context.movement_type)
        if policy.affects_on_hand:
            if policy.is_inflow:
                return self.deposit(
                    product_id, warehouse_id, lot_id, quantity, unit_cost, context=context
                )
            return self.withdraw(
                product_id, warehouse_id, lot_id, quantity, unit_cost, context=context
            )

        quantity, unit_cost = self._validated(quantity, unit_cost)
        txn = self._append(product_id, warehouse_id, lot_id, quantity, unit_cost, policy, context)
        logger.info(
            "stock_movement_recorded",
            extra={
                "product_id": product_id,
                "warehouse_id": warehouse_id,
                "lot_id": str(lot_id),
                "movement_type": policy.movement_type.value,
                "quantity": quantity,
                "txn_seq": txn.seq,
            },
        )
        return txn

    def close_in_transit(
        self,
        transit: InventoryTransaction,
        accepted: Decimal,
        rejected: Decimal,
        actor_id: UUID,
        txn_date: date,
    ) -> TransitClosure:
        """Resolve stock received in transit after inspection.

        The accepted quantity leaves transit (TRANSIT_OUT) and is deposited
        on hand (REGULAR_IN) at the transit cost; the rejected quantity is
        written off as DISCARD.  Every transaction carries the transit
        receipt's source, so reversing that document reverses them too.
        Closing more than is still in transit beyond tolerance raises
        InsufficientStockError; within tolerance the rejected part, then
        the accepted part, is trimmed to what remains.
        """
        if transit.movement_type != MovementType.IN_TRANSIT.value or transit.is_tombstoned:
            raise ValueError(f"transaction {transit.id} is not a live in-transit receipt")
        accepted = to_decimal(accepted)
        rejected = to_decimal(rejected)
        if accepted < ZERO:
            raise InvalidQuantityError("accepted_quantity", accepted)
        if rejected < ZERO:
            raise InvalidQuantityError("rejected_quantity", rejected)
        requested = accepted + rejected
        if requested <= ZERO:
            raise InvalidQuantityError("quantity", requested)

        outstanding = StockSelector(self.session).in_transit_quantity(
            transit.product_id, transit.warehouse_id, transit.lot_id
        )
        excess = requested - outstanding
        if excess > self._tolerance:
            raise InsufficientStockError(
                product_id=transit.product_id,
                warehouse_id=transit.warehouse_id,
                lot_id=str(transit.lot_id),
                requested=requested,
                available=outstanding,
            )
        if excess > ZERO:
            trim = min(rejected, excess)
            rejected -= trim
            accepted -= excess - trim

        def context(movement_type: MovementType, txn_type: TransactionType) -> MovementContext:
            return MovementContext(
                txn_date=txn_date,
                txn_type=txn_type,
                movement_type=movement_type,
                source_type=transit.source_type,
                source_id=transit.source_id,
                source_line_id=transit.source_line_id,
                currency_code=transit.currency_code,
                exchange_rate=transit.exchange_rate,
                uom_code=transit.uom_code,
                actor_id=actor_id,
            )

        key = (transit.product_id, transit.warehouse_id, transit.lot_id)
        transfer = receipt = discard = None
        if accepted > ZERO:
            transfer = self.record_movement(
                *key, accepted, transit.unit_cost,
                context=context(MovementType.TRANSIT_OUT, TransactionType.QC_ACCEPT),
            )
            receipt = self.deposit(
                *key, accepted, transit.unit_cost,
                context=context(MovementType.REGULAR_IN, TransactionType.QC_ACCEPT),
            )
        if rejected > ZERO:
            discard = self.record_movement(
                *key, rejected, transit.unit_cost,
                context=context(MovementType.DISCARD, TransactionType.QC_REJECT),
            )

        logger.info(
            "in_transit_closed",
            extra={
                "transit_txn_id": str(transit.id),
                "product_id": transit.product_id,
                "warehouse_id": transit.warehouse_id,
                "lot_id": str(transit.lot_id),
                "accepted": accepted,
                "rejected": rejected,
                "outstanding": outstanding - accepted - rejected,
            },
        )
        return TransitClosure(
            transit_txn_id=transit.id,
            accepted_quantity=accepted,
            rejected_quantity=rejected,
            transfer_txn_id=transfer.id if transfer else None,
            receipt_txn_id=receipt.id if receipt else None,
            discard_txn_id=discard.id if discard else None,
        )

    # ------------------------------------------------------------------
    # Reversal
    # ------------------------------------------------------------------

    def reverse_transaction(
        self,
        original: InventoryTransaction,
        actor_id: UUID,
        txn_date: date,
        tombstone: bool = True,
    ) -> StockReversal:
        """Apply the opposite movement of ``original``.

        Taking back an inflow is best-effort: if later withdrawals consumed
        part of it, only what is still on hand is reversed and the
        shortfall is logged, not raised.  With ``tombstone`` the original
        and its reversal are both tombstoned so neither counts toward live
        stock history.
        """
        policy = policy_for(original.movement_type)
        reversal_policy = policy_for(policy.reversal)
        context = MovementContext(
            txn_date=txn_date,
            txn_type=policy.reversal_txn_type,
            movement_type=reversal_policy.movement_type,
            source_type=original.source_type,
            source_id=original.source_id,
            source_line_id=original.source_line_id,
            currency_code=original.currency_code,
            exchange_rate=original.exchange_rate,
            uom_code=original.uom_code,
            actor_id=actor_id,
        )
        requested = original.quantity
        reversed_qty = requested
        reversal_txn: InventoryTransaction | None

        if not reversal_policy.affects_on_hand:
            reversal_txn = self._append(
                original.product_id, original.warehouse_id, original.lot_id,
                requested, original.unit_cost, reversal_policy, context,
            )
        elif reversal_policy.is_inflow:
            reversal_txn = self.deposit(
                original.product_id, original.warehouse_id, original.lot_id,
                requested, original.unit_cost, context=context,
            )
        else:
            batch = self._locked_batch(original.product_id, original.warehouse_id, original.lot_id)
            available = batch.qty_on_hand if batch is not None else ZERO
            reversed_qty = min(requested, available)
            reversal_txn = None
            if reversed_qty > ZERO:
                reversal_txn = self._withdraw(
                    original.product_id, original.warehouse_id, original.lot_id,
                    reversed_qty, original.unit_cost, reversal_policy, context,
                    unblend=True,
                )

        if reversed_qty < requested:
            logger.warning(
                "stock_reversal_shortfall",
                extra={
                    "original_txn_id": str(original.id),
                    "product_id": original.product_id,
                    "warehouse_id": original.warehouse_id,
                    "lot_id": str(original.lot_id),
                    "requested": requested,
                    "reversed": reversed_qty,
                    "shortfall": requested - reversed_qty,
                },
            )

        if tombstone:
            original.is_tombstoned = True
            original.updated_by_id = actor_id
            if reversal_txn is not None:
                reversal_txn.is_tombstoned = True
        if reversal_txn is not None:
            reversal_txn.reverses_id = original.id
        self.session.flush()

        logger.info(
            "stock_reversed",
            extra={
                "original_txn_id": str(original.id),
                "reversal_txn_id": str(reversal_txn.id) if reversal_txn else None,
                "movement_type": original.movement_type,
                "requested": requested,
                "reversed": reversed_qty,
            },
        )
        return StockReversal(
            original_txn_id=original.id,
            reversal_txn_id=reversal_txn.id if reversal_txn else None,
            requested_quantity=requested,
            reversed_quantity=reversed_qty,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _withdraw(
        self,
        product_id: str,
        warehouse_id: str,
        lot_id: UUID,
        quantity: Decimal,
        unit_cost: Decimal | None,
        policy: MovementPolicy,
        context: MovementContext,
        unblend: bool = False,
    ) -> InventoryTransaction:
        quantity = to_decimal(quantity)
        if quantity <= ZERO:
            raise InvalidQuantityError("quantity", quantity)

        batch = self._locked_batch(product_id, warehouse_id, lot_id)
        available = batch.qty_on_hand if batch is not None else ZERO
        if batch is None or quantity - available > self._tolerance:
            raise InsufficientStockError(
                product_id=product_id,
                warehouse_id=warehouse_id,
                lot_id=str(lot_id),
                requested=quantity,
                available=available,
            )

        taken = min(quantity, available)
        cost = batch.unit_cost if unit_cost is None else quantize_scale(unit_cost)
        if cost < ZERO:
            raise InvalidQuantityError("unit_cost", cost)

        old_qty = batch.qty_on_hand
        if unblend:
            batch.unit_cost = unblend_cost(old_qty, batch.unit_cost, taken, cost)
        batch.qty_on_hand = old_qty - taken
        batch.updated_by_id = context.actor_id

        txn = self._append(product_id, warehouse_id, lot_id, taken, cost, policy, context)

        logger.info(
            "stock_withdrawn",
            extra={
                "product_id": product_id,
                "warehouse_id": warehouse_id,
                "lot_id": str(lot_id),
                "quantity": taken,
                "unit_cost": cost,
                "old_qty": old_qty,
                "new_qty": batch.qty_on_hand,
                "txn_seq": txn.seq,
            },
        )
        return txn

    def _locked_batch(self, product_id: str, warehouse_id: str, lot_id: UUID) -> StockBatch | None:
        return self.session.execute(
            select(StockBatch)
            .where(
                StockBatch.product_id == product_id,
                StockBatch.warehouse_id == warehouse_id,
                StockBatch.lot_id == lot_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @staticmethod
    def _validated(quantity: Decimal, unit_cost: Decimal) -> tuple[Decimal, Decimal]:
        quantity = to_decimal(quantity)
        unit_cost = to_decimal(unit_cost)
        if quantity <= ZERO:
            raise InvalidQuantityError("quantity", quantity)
        if unit_cost < ZERO:
            raise InvalidQuantityError("unit_cost", unit_cost)
        return quantity, quantize_scale(unit_cost)

    def _append(
        self,
        product_id: str,
        warehouse_id: str,
        lot_id: UUID,
        quantity: Decimal,
        unit_cost: Decimal,
        policy: MovementPolicy,
        context: MovementContext,
    ) -> InventoryTransaction:
        amount = quantize_money(quantity * unit_cost)
        rate = context.exchange_rate
        converted = quantize_money(amount * rate) if rate else amount

        txn = InventoryTransaction(
            seq=self._sequences.next_value(SequenceService.INVENTORY_TXN),
            txn_date=context.txn_date,
            direction=policy.direction.value,
            movement_type=policy.movement_type.value,
            txn_type=context.txn_type.value,
            source_type=context.source_type,
            source_id=context.source_id,
            source_line_id=context.source_line_id,
            product_id=product_id,
            warehouse_id=warehouse_id,
            lot_id=lot_id,
            quantity=quantity,
            unit_cost=unit_cost,
            amount=amount,
            currency_code=context.currency_code,
            exchange_rate=rate,
            foreign_amount=amount,
            converted_amount=converted,
            uom_code=context.uom_code,
            is_tombstoned=False,
            created_by_id=context.actor_id,
        )
        self.session.add(txn)
        self.session.flush()
        return txn
