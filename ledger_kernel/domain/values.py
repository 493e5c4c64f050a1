"""
Values -- numeric conventions and small value types shared by the core.

Responsibility:
    Single home for the posting tolerance, rounding scales and the
    trading-partner kind.  All arithmetic in the core is Decimal; these
    helpers are the only place amounts are quantized.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Imported by models, services and
    engines alike.

Invariants enforced:
    - Money is quantized to 2 places (ROUND_HALF_UP) before it is stored
      on a journal line, so rebuild-from-lines and incremental balances add
      identical numbers.
    - Quantities and unit costs keep 9 places, matching Numeric(38, 9).
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

POSTING_TOLERANCE = Decimal("0.01")

# Entity deltas at or below this are treated as zero.
BALANCE_EPSILON = Decimal("0.0001")

MONEY_EXPONENT = Decimal("0.01")
SCALE_EXPONENT = Decimal("0.000000001")

ZERO = Decimal("0")


class EntityType(str, Enum):
    """Trading-partner kinds that carry a running balance."""

    CUSTOMER = "CUSTOMER"
    SUPPLIER = "SUPPLIER"


def to_decimal(value: Any) -> Decimal:
    """Coerce int/str/Decimal (and float via str) to Decimal."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize_money(value: Any) -> Decimal:
    return to_decimal(value).quantize(MONEY_EXPONENT, rounding=ROUND_HALF_UP)


def quantize_scale(value: Any) -> Decimal:
    """Round a quantity or unit cost to the storage scale."""
    return to_decimal(value).quantize(SCALE_EXPONENT, rounding=ROUND_HALF_UP)

