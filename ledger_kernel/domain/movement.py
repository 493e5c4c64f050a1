"""
Movement policy -- explicit table of stock movement types.

Responsibility:
    Declares every movement type the stock ledger accepts and, for each
    one, whether it changes quantity-on-hand, in which direction, and which
    movement type reverses it.  Reversal and reconstruction consult this
    table instead of matching on numeric codes.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Every MovementType has exactly one MovementPolicy (checked at import).
    - The reversal of a movement has the opposite sign and the same
      affects_on_hand flag, so reversing never changes which quantities are
      tracked.
    - In-transit stock is the signed sum of live IN_TRANSIT, TRANSIT_OUT
      and DISCARD quantities.  DISCARD is waste written off from transit,
      so it never draws on a batch.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from ledger_kernel.domain.values import ZERO, quantize_scale


class MovementType(str, Enum):
    REGULAR_IN = "REGULAR_IN"
    REGULAR_OUT = "REGULAR_OUT"
    IN_TRANSIT = "IN_TRANSIT"
    TRANSIT_OUT = "TRANSIT_OUT"
    DISCARD = "DISCARD"


class Direction(str, Enum):
    IN = "IN"
    OUT = "OUT"
    IN_TRANSIT = "IN_TRANSIT"
    DISCARD = "DISCARD"


class TransactionType(str, Enum):
    """Business reason recorded on an inventory transaction."""

    PURCHASE_RECEIPT = "PURCHASE_RECEIPT"
    SALES_ISSUE = "SALES_ISSUE"
    REVERSAL_IN = "REVERSAL_IN"
    REVERSAL_OUT = "REVERSAL_OUT"
    QC_ACCEPT = "QC_ACCEPT"
    QC_REJECT = "QC_REJECT"


@dataclass(frozen=True, slots=True)
class MovementPolicy:
    movement_type: MovementType
    direction: Direction
    affects_on_hand: bool
    sign: int
    reversal: MovementType

    @property
    def is_inflow(self) -> bool:
        return self.sign > 0

    @property
    def reversal_txn_type(self) -> TransactionType:
        # Reversing an outflow puts stock back in, and vice versa.
        return TransactionType.REVERSAL_IN if self.sign < 0 else TransactionType.REVERSAL_OUT


MOVEMENT_POLICIES: dict[MovementType, MovementPolicy] = {
    policy.movement_type: policy
    for policy in (
        MovementPolicy(MovementType.REGULAR_IN, Direction.IN, True, 1, MovementType.REGULAR_OUT),
        MovementPolicy(MovementType.REGULAR_OUT, Direction.OUT, True, -1, MovementType.REGULAR_IN),
        MovementPolicy(MovementType.IN_TRANSIT, Direction.IN_TRANSIT, False, 1, MovementType.TRANSIT_OUT),
        MovementPolicy(MovementType.TRANSIT_OUT, Direction.IN_TRANSIT, False, -1, MovementType.IN_TRANSIT),
        MovementPolicy(MovementType.DISCARD, Direction.DISCARD, False, -1, MovementType.IN_TRANSIT),
    )
}

assert set(MOVEMENT_POLICIES) == set(MovementType), "movement policy table incomplete"


def policy_for(movement_type: MovementType | str) -> MovementPolicy:
    return MOVEMENT_POLICIES[MovementType(movement_type)]


def weighted_average_cost(
    old_qty: Decimal,
    old_cost: Decimal,
    qty: Decimal,
    unit_cost: Decimal,
) -> Decimal:
    """Blend an inflow into a batch cost.  Falls back to unit_cost when the total is not positive."""
    total = old_qty + qty
    if total <= ZERO:
        return quantize_scale(unit_cost)
    return quantize_scale((old_qty * old_cost + qty * unit_cost) / total)


def unblend_cost(
    old_qty: Decimal,
    old_cost: Decimal,
    qty: Decimal,
    unit_cost: Decimal,
) -> Decimal:
    """Take a previously blended inflow back out of a batch cost.

    Inverse of weighted_average_cost up to storage rounding.  When nothing
    (or less than nothing) would remain, the cost is left unchanged.
    """
    remaining = old_qty - qty
    if remaining <= ZERO:
        return old_cost
    value = old_qty * old_cost - qty * unit_cost
    if value < ZERO:
        return old_cost
    return quantize_scale(value / remaining)
