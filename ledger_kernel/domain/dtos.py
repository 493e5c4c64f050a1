"""
DTOs -- frozen inputs and results passed across service boundaries.

Responsibility:
    Typed shapes for journal posting (header/line specs, posted result),
    stock movements (movement context, reversal outcome) and the typed
    account reference used everywhere an account is named.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  No ORM objects appear here, so
    callers can build specs without a session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from ledger_kernel.domain.movement import MovementType, TransactionType
from ledger_kernel.domain.values import ZERO, EntityType


@dataclass(frozen=True, slots=True)
class AccountRef:
    """An account resolved once at configuration load.

    ``entity_type`` is CUSTOMER for receivable and SUPPLIER for payable
    accounts; lines on such accounts must name a partner of that kind.
    """

    id: UUID
    code: str
    entity_type: EntityType | None = None

    @property
    def requires_entity(self) -> bool:
        return self.entity_type is not None


@dataclass(frozen=True, slots=True)
class JournalLineSpec:
    account: AccountRef
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    entity_type: EntityType | str | None = None
    entity_id: str | None = None
    product_id: str | None = None
    description: str | None = None

    @property
    def amount(self) -> Decimal:
        return self.debit if self.debit > ZERO else self.credit


@dataclass(frozen=True, slots=True)
class JournalHeaderSpec:
    """Header of a journal to post.

    Currency fields are optional; the journal engine derives whichever of
    foreign/converted amount is missing.
    """

    journal_date: date
    source_type: str
    source_id: str
    company_id: str | None = None
    source_name: str | None = None
    memo: str | None = None
    currency_code: str | None = None
    exchange_rate: Decimal | None = None
    foreign_amount: Decimal | None = None
    converted_amount: Decimal | None = None
    reversal_of_id: UUID | None = None


@dataclass(frozen=True, slots=True)
class EntityDelta:
    company_id: str
    entity_type: EntityType
    entity_id: str
    delta: Decimal


@dataclass(frozen=True, slots=True)
class PostedJournal:
    journal_id: UUID
    journal_number: str
    total_debit: Decimal
    total_credit: Decimal
    foreign_amount: Decimal
    converted_amount: Decimal
    entity_deltas: tuple[EntityDelta, ...] = ()
    reversal_of_id: UUID | None = None


@dataclass(frozen=True, slots=True)
class MovementContext:
    """Everything an inventory transaction records besides product/lot/qty/cost."""

    txn_date: date
    txn_type: TransactionType
    source_type: str
    source_id: str
    actor_id: UUID
    movement_type: MovementType = MovementType.REGULAR_IN
    source_line_id: str | None = None
    currency_code: str | None = None
    exchange_rate: Decimal | None = None
    uom_code: str | None = None


@dataclass(frozen=True, slots=True)
class StockReversal:
    """Outcome of reversing one inventory transaction.

    ``reversed_quantity`` < ``requested_quantity`` when later withdrawals
    had already consumed the stock being taken back out.
    """

    original_txn_id: UUID
    reversal_txn_id: UUID | None
    requested_quantity: Decimal
    reversed_quantity: Decimal

    @property
    def shortfall(self) -> Decimal:
        return self.requested_quantity - self.reversed_quantity

    @property
    def is_complete(self) -> bool:
        return self.shortfall <= ZERO


@dataclass(frozen=True, slots=True)
class TransitClosure:
    """Transactions written when in-transit stock is accepted or rejected.

    Accepted stock leaves transit (``transfer_txn_id``) and lands on hand
    (``receipt_txn_id``); rejected stock is written off (``discard_txn_id``).
    Ids are None for a part with zero quantity.
    """

    transit_txn_id: UUID
    accepted_quantity: Decimal
    rejected_quantity: Decimal
    transfer_txn_id: UUID | None = None
    receipt_txn_id: UUID | None = None
    discard_txn_id: UUID | None = None

    @property
    def txn_ids(self) -> tuple[UUID, ...]:
        ids = (self.transfer_txn_id, self.receipt_txn_id, self.discard_txn_id)
        return tuple(i for i in ids if i is not None)


@dataclass(frozen=True)
class DocumentReversal:
    document_id: UUID
    reversal_journal_ids: tuple[UUID, ...] = ()
    stock_reversals: tuple[StockReversal, ...] = field(default_factory=tuple)

    @property
    def has_shortfall(self) -> bool:
        return any(not r.is_complete for r in self.stock_reversals)


@dataclass(frozen=True, slots=True)
class LotAvailability:
    """A lot with stock in one warehouse, as seen by the batch allocator.

    ``first_inflow_seq`` is the seq of the oldest live inflow transaction
    into this batch (None when the batch has no recorded inflow).
    """

    lot_id: UUID
    lot_code: str
    qty_on_hand: Decimal
    unit_cost: Decimal
    exp_date: date | None = None
    mfg_date: date | None = None
    first_inflow_seq: int | None = None


@dataclass(frozen=True, slots=True)
class BatchState:
    qty_on_hand: Decimal
    unit_cost: Decimal


@dataclass(frozen=True, slots=True)
class ExpiringLot:
    product_id: str
    warehouse_id: str
    lot_id: UUID
    lot_code: str
    exp_date: date
    qty_on_hand: Decimal
    days_left: int
