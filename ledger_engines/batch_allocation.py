"""
Module: ledger_engines.batch_allocation
Responsibility:
    Plan which lots a requested quantity is drawn from, oldest-first (FIFO)
    or earliest-expiry-first (FEFO).

Architecture position:
    Engines -- pure planning, zero I/O.  Candidates are read by
    StockSelector.available_lots and handed in; the plan is executed by the
    stock ledger.

Invariants enforced:
    - Only candidates with qty_on_hand > 0 are drawn from.
    - Draw quantities sum to the requested quantity exactly, or the plan
      is refused with an aggregate InsufficientStockError.
    - Ordering is total, so identical inputs give identical plans:
        FIFO: first inflow seq, lot code; lots with no inflow record last.
        FEFO: exp_date (none last), then the FIFO key.

Failure modes:
    - InvalidQuantityError if quantity <= 0.
    - InsufficientStockError (lot_id None) if candidates cannot cover it.

Usage:
    plan = plan_allocation(
        candidates=selector.available_lots("SKU-1", "WH-1"),
        quantity=Decimal("12"),
        policy=AllocationPolicy.FIFO,
        product_id="SKU-1",
        warehouse_id="WH-1",
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.dtos import LotAvailability
from ledger_kernel.domain.values import ZERO, quantize_scale, to_decimal
from ledger_kernel.exceptions import InsufficientStockError, InvalidQuantityError


class AllocationPolicy(str, Enum):
    """Lot selection order."""

    FIFO = "FIFO"  # first in, first out
    FEFO = "FEFO"  # first expired, first out


@dataclass(frozen=True, slots=True)
class PlannedDraw:
    """One lot and the quantity to withdraw from it."""

    lot_id: UUID
    lot_code: str
    quantity: Decimal
    unit_cost: Decimal

    @property
    def cost(self) -> Decimal:
        return self.quantity * self.unit_cost


@dataclass(frozen=True)
class AllocationPlan:
    draws: tuple[PlannedDraw, ...]
    total_quantity: Decimal
    total_cost: Decimal


def _fifo_key(lot: LotAvailability) -> tuple:
    # (has no inflow, seq, code): missing inflow history sorts last
    missing = lot.first_inflow_seq is None
    return (missing, lot.first_inflow_seq if not missing else 0, lot.lot_code)


def _fefo_key(lot: LotAvailability) -> tuple:
    no_expiry = lot.exp_date is None
    return (no_expiry, lot.exp_date if not no_expiry else date.min, *_fifo_key(lot))


_ORDERINGS = {
    AllocationPolicy.FIFO: _fifo_key,
    AllocationPolicy.FEFO: _fefo_key,
}


def order_candidates(
    candidates: Sequence[LotAvailability],
    policy: AllocationPolicy,
) -> list[LotAvailability]:
    """Positive-quantity candidates in draw order."""
    key = _ORDERINGS[AllocationPolicy(policy)]
    return sorted((c for c in candidates if c.qty_on_hand > ZERO), key=key)


@traced_engine(
    "batch_allocation",
    "1.0",
    fingerprint_fields=("product_id", "warehouse_id", "quantity", "policy", "candidates"),
)
def plan_allocation(
    *,
    candidates: Sequence[LotAvailability],
    quantity: Decimal,
    policy: AllocationPolicy = AllocationPolicy.FIFO,
    product_id: str = "",
    warehouse_id: str = "",
) -> AllocationPlan:
    """Split ``quantity`` over ``candidates`` in policy order."""
    requested = quantize_scale(to_decimal(quantity))
    if requested <= ZERO:
        raise InvalidQuantityError("quantity", requested)

    ordered = order_candidates(candidates, policy)
    available = sum((c.qty_on_hand for c in ordered), ZERO)
    if available < requested:
        raise InsufficientStockError(product_id, warehouse_id, requested, available)

    draws: list[PlannedDraw] = []
    remaining = requested
    for lot in ordered:
        if remaining <= ZERO:
            break
        take = min(remaining, lot.qty_on_hand)
        draws.append(
            PlannedDraw(
                lot_id=lot.lot_id,
                lot_code=lot.lot_code,
                quantity=take,
                unit_cost=lot.unit_cost,
            )
        )
        remaining -= take

    return AllocationPlan(
        draws=tuple(draws),
        total_quantity=requested,
        total_cost=sum((d.cost for d in draws), ZERO),
    )
