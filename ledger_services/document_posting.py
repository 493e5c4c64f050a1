"""
ledger_services.document_posting -- bills and invoices to stock and journal.

Responsibility:
    Forward path: validate document totals, resolve accounts, move stock
    (withdraw for invoices, receive for bills), post one balanced journal
    and append POSTED to the document's posting log.
    Reverse path: reverse the document's live stock transactions and every
    active journal, tombstoning each original with its reversal, and
    append REVERSED.

Architecture position:
    Services -- orchestration over kernel services (JournalEngine,
    StockLedger, SequenceService) and the batch allocator.  Called by
    DocumentLifecycleService; never commits.

Invariants enforced:
    - total == subtotal - discount + tax (reverse-charge bills: tax is
      self-assessed and not part of the total).
    - Per-account line totals reconcile with the subtotal within
      tolerance; after rounding each group to cents, the largest group
      takes up the difference so the groups sum to the subtotal exactly.
    - Invoice lot allocations sum to the line quantity.
    - Only the receivable / payable line carries the entity, so the entity
      balance moves by exactly the document total.
    - After reverse() the document has no active journals and no live
      stock transactions.

Failure modes:
    - SubtotalMismatchError, MissingAccountError, AlreadyPostedError,
      ExchangeRateNotFoundError, AllocationQuantityMismatchError,
      InsufficientStockError, plus anything JournalEngine raises.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_config.schema import LedgerSettings
from ledger_engines.batch_allocation import AllocationPolicy
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import (
    AccountRef,
    DocumentReversal,
    JournalHeaderSpec,
    JournalLineSpec,
    MovementContext,
    PostedJournal,
)
from ledger_kernel.domain.movement import MovementType, TransactionType
from ledger_kernel.domain.posting_log import PostingEventKind
from ledger_kernel.domain.values import (
    ZERO,
    quantize_money,
    quantize_scale,
    to_decimal,
)
from ledger_kernel.exceptions import (
    AllocationQuantityMismatchError,
    AlreadyPostedError,
    ExchangeRateNotFoundError,
    InvalidQuantityError,
    MissingAccountError,
    SubtotalMismatchError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.document import (
    DocumentLine,
    DocumentType,
    LineAllocation,
    SourceDocument,
)
from ledger_kernel.models.posting_log import PostingLogEntry
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_kernel.selectors.stock_selector import StockSelector
from ledger_kernel.services.journal_engine import JournalEngine
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.services.stock_ledger import StockLedger
from ledger_services.account_resolver import AccountResolver
from ledger_services.batch_allocator import BatchAllocator
from ledger_services.lookups import CurrencyRateLookup, ProductAccountLookup, ProductAccounts

logger = get_logger("services.document_posting")


@dataclass(frozen=True)
class PostingOptions:
    """Per-call switches; None means "use the configured default"."""

    inventory_movement_enabled: bool | None = None
    allocation_policy: AllocationPolicy | None = None

    def resolved(self, settings: LedgerSettings) -> PostingOptions:
        return PostingOptions(
            inventory_movement_enabled=(
                self.inventory_movement_enabled
                if self.inventory_movement_enabled is not None
                else settings.inventory.movement_enabled
            ),
            allocation_policy=AllocationPolicy(
                self.allocation_policy
                if self.allocation_policy is not None
                else settings.inventory.allocation_policy
            ),
        )


@dataclass
class _Draw:
    lot_id: UUID
    quantity: Decimal
    allocation: LineAllocation | None = None


class DocumentPostingService:
    """
    Forward and reverse ledger effects of a source document.

    Contract:
        post() returns the PostedJournal of the forward posting.
        reverse() returns a DocumentReversal listing reversal journals and
        per-transaction stock reversal outcomes.

    Non-goals:
        - Does NOT change document status; DocumentLifecycleService does.
        - Does NOT commit.
    """

    def __init__(
        self,
        session: Session,
        settings: LedgerSettings,
        clock: Clock,
        journal_engine: JournalEngine,
        stock_ledger: StockLedger,
        allocator: BatchAllocator,
        resolver: AccountResolver,
        sequences: SequenceService,
        product_accounts: ProductAccountLookup,
        rates: CurrencyRateLookup | None = None,
    ):
        self._session = session
        self._settings = settings
        self._clock = clock
        self._journal = journal_engine
        self._stock = stock_ledger
        self._allocator = allocator
        self._resolver = resolver
        self._sequences = sequences
        self._products = product_accounts
        self._rates = rates
        self._tolerance = settings.tolerance
        self._journals = JournalSelector(session)
        self._stock_selector = StockSelector(session)

    # ------------------------------------------------------------------
    # Forward path
    # ------------------------------------------------------------------

    def post(
        self,
        document: SourceDocument,
        actor_id: UUID,
        options: PostingOptions | None = None,
    ) -> PostedJournal:
        opts = (options or PostingOptions()).resolved(self._settings)
        doc_type = DocumentType(document.doc_type)
        source_id = str(document.id)

        if self._journals.active_journal_ids(doc_type.value, source_id):
            raise AlreadyPostedError(doc_type.value, source_id)

        self._check_totals(document, doc_type)
        currency, rate = self._currency(document)

        if doc_type is DocumentType.AR_INVOICE:
            lines = self._invoice_lines(document, actor_id, opts, currency, rate)
        else:
            lines = self._bill_lines(document, actor_id, opts, currency, rate)

        header = JournalHeaderSpec(
            journal_date=document.doc_date,
            source_type=doc_type.value,
            source_id=source_id,
            company_id=document.company_id or self._settings.default_company_id,
            source_name=document.doc_number,
            memo=document.memo or f"{doc_type.value} {document.doc_number}",
            currency_code=currency,
            exchange_rate=rate,
            foreign_amount=document.total,
        )
        posted = self._journal.post(header, lines, actor_id)
        self._log_event(document, PostingEventKind.POSTED, posted.journal_id, None, actor_id)

        logger.info(
            "document_posted",
            extra={
                "document_id": source_id,
                "doc_type": doc_type.value,
                "doc_number": document.doc_number,
                "journal_id": str(posted.journal_id),
                "journal_number": posted.journal_number,
                "total": document.total,
                "inventory_movement_enabled": opts.inventory_movement_enabled,
            },
        )
        return posted

    def _check_totals(self, document: SourceDocument, doc_type: DocumentType) -> None:
        subtotal = to_decimal(document.subtotal)
        discount = to_decimal(document.discount_total or ZERO)
        tax = to_decimal(document.tax_total or ZERO)
        self_assessed = doc_type is DocumentType.AP_BILL and document.is_reverse_charge
        expected = subtotal - discount + (ZERO if self_assessed else tax)
        if abs(to_decimal(document.total) - expected) > self._tolerance:
            raise SubtotalMismatchError("document_total", expected, to_decimal(document.total))

    def _currency(self, document: SourceDocument) -> tuple[str, Decimal | None]:
        base = self._settings.base_currency
        code = (document.currency_code or base).upper()
        if code == base:
            return code, None
        rate = self._rates.rate_for(code) if self._rates is not None else None
        if rate is None or rate <= ZERO:
            raise ExchangeRateNotFoundError(code)
        return code, rate

    def _product_accounts(self, line: DocumentLine) -> ProductAccounts:
        if line.product_id is None:
            return ProductAccounts()
        return self._products.accounts_for(line.product_id) or ProductAccounts()

    def _line_account(
        self, line: DocumentLine, role: str, code: str | None
    ) -> AccountRef:
        if line.account_id is not None:
            return self._resolver.ref_for_id(line.account_id)
        ref = self._resolver.find_code(code)
        if ref is None:
            raise MissingAccountError(role, line.line_no, line.product_id)
        return ref

    def _goods_account(self, line: DocumentLine, role: str, code: str | None) -> AccountRef:
        ref = self._resolver.find_code(code)
        if ref is None:
            raise MissingAccountError(role, line.line_no, line.product_id)
        return ref

    def _grouped(
        self, document: SourceDocument, amounts: list[tuple[AccountRef, Decimal]]
    ) -> list[tuple[AccountRef, Decimal]]:
        """Sum line totals per account and reconcile with the subtotal.

        Groups are rounded to cents individually; whatever the rounded
        groups miss of the rounded subtotal lands on the largest group, so
        the posted amounts always add up to the subtotal exactly.
        """
        groups: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        refs: dict[UUID, AccountRef] = {}
        for ref, amount in amounts:
            refs[ref.id] = ref
            groups[ref.id] += to_decimal(amount)

        subtotal = to_decimal(document.subtotal)
        grouped_total = sum(groups.values(), ZERO)
        if abs(subtotal - grouped_total) > self._tolerance:
            raise SubtotalMismatchError("line_totals", subtotal, grouped_total)
        if not groups:
            return []

        rounded = {k: quantize_money(v) for k, v in groups.items()}
        residual = quantize_money(subtotal) - sum(rounded.values(), ZERO)
        if residual != ZERO:
            largest = max(groups, key=lambda k: groups[k])
            rounded[largest] += residual

        return [(refs[k], rounded[k]) for k in groups]

    def _context(
        self,
        document: SourceDocument,
        line: DocumentLine,
        txn_type: TransactionType,
        movement_type: MovementType,
        actor_id: UUID,
        currency: str,
        rate: Decimal | None,
    ) -> MovementContext:
        return MovementContext(
            txn_date=document.doc_date,
            txn_type=txn_type,
            movement_type=movement_type,
            source_type=DocumentType(document.doc_type).value,
            source_id=str(document.id),
            source_line_id=str(line.id),
            currency_code=currency,
            exchange_rate=rate,
            uom_code=line.uom_code,
            actor_id=actor_id,
        )

    def _check_allocated(self, line: DocumentLine, allocated: Decimal) -> None:
        if abs(allocated - to_decimal(line.quantity)) > self._tolerance:
            raise AllocationQuantityMismatchError(line.line_no, to_decimal(line.quantity), allocated)

    @staticmethod
    def _require_warehouse(document: SourceDocument) -> str:
        if not document.warehouse_id:
            raise ValueError(f"Document {document.doc_number} moves stock but has no warehouse")
        return document.warehouse_id

    # -- invoices -------------------------------------------------------

    def _invoice_lines(
        self,
        document: SourceDocument,
        actor_id: UUID,
        opts: PostingOptions,
        currency: str,
        rate: Decimal | None,
    ) -> list[JournalLineSpec]:
        accounts = self._resolver.posting_accounts
        revenue: list[tuple[AccountRef, Decimal]] = []
        # (product, cogs account, inventory account) -> cost
        cogs: dict[tuple[str, AccountRef, AccountRef], Decimal] = defaultdict(lambda: ZERO)

        for line in document.lines:
            product = self._product_accounts(line)
            revenue.append((self._line_account(line, "revenue", product.revenue), line.line_total))
            if not line.is_inventory_bearing:
                continue

            cost_ref = self._goods_account(line, "cost_of_sales", product.cost_of_sales)
            inventory_ref = self._goods_account(line, "inventory", product.inventory)
            if opts.inventory_movement_enabled:
                cost = self._issue_stock(document, line, actor_id, opts, currency, rate)
            else:
                cost = sum(
                    (to_decimal(a.quantity) * to_decimal(a.unit_cost)
                     for a in line.allocations if a.unit_cost is not None),
                    ZERO,
                )
            cogs[(line.product_id, cost_ref, inventory_ref)] += cost

        receivable = accounts.require("receivable")
        lines = [
            JournalLineSpec(
                account=receivable,
                debit=to_decimal(document.total),
                entity_type=document.entity_type,
                entity_id=document.entity_id,
                description=f"Receivable {document.doc_number}",
            )
        ]
        for ref, amount in self._grouped(document, revenue):
            if amount > ZERO:
                lines.append(JournalLineSpec(account=ref, credit=amount, description=f"Revenue {document.doc_number}"))
        if document.discount_total and document.discount_total > ZERO:
            lines.append(JournalLineSpec(
                account=accounts.require("sales_discount"),
                debit=to_decimal(document.discount_total),
                description=f"Discount {document.doc_number}",
            ))
        if document.tax_total and document.tax_total > ZERO:
            lines.append(JournalLineSpec(
                account=accounts.require("output_tax"),
                credit=to_decimal(document.tax_total),
                description=f"Output tax {document.doc_number}",
            ))
        for (product_id, cost_ref, inventory_ref), cost in cogs.items():
            amount = quantize_money(cost)
            if amount <= ZERO:
                continue
            lines.append(JournalLineSpec(
                account=cost_ref, debit=amount, product_id=product_id,
                description=f"COGS {document.doc_number} {product_id}",
            ))
            lines.append(JournalLineSpec(
                account=inventory_ref, credit=amount, product_id=product_id,
                description=f"Inventory issue {document.doc_number} {product_id}",
            ))
        return lines

    def _issue_stock(
        self,
        document: SourceDocument,
        line: DocumentLine,
        actor_id: UUID,
        opts: PostingOptions,
        currency: str,
        rate: Decimal | None,
    ) -> Decimal:
        """Withdraw a goods line's stock; returns its cost at batch cost."""
        warehouse_id = self._require_warehouse(document)
        if line.allocations:
            draws = []
            for allocation in line.allocations:
                if allocation.lot_id is None:
                    raise ValueError(
                        f"Line {line.line_no}: invoice allocation must reference a lot"
                    )
                draws.append(_Draw(allocation.lot_id, to_decimal(allocation.quantity), allocation))
        else:
            plan = self._allocator.allocate(
                line.product_id, warehouse_id, to_decimal(line.quantity), opts.allocation_policy
            )
            draws = [_Draw(d.lot_id, d.quantity) for d in plan.draws]

        self._check_allocated(line, sum((d.quantity for d in draws), ZERO))

        context = self._context(
            document, line, TransactionType.SALES_ISSUE, MovementType.REGULAR_OUT,
            actor_id, currency, rate,
        )
        cost = ZERO
        for draw in draws:
            txn = self._stock.withdraw(
                line.product_id, warehouse_id, draw.lot_id, draw.quantity, context=context
            )
            cost += txn.quantity * txn.unit_cost
            if draw.allocation is not None:
                draw.allocation.unit_cost = txn.unit_cost
        return cost

    # -- bills ----------------------------------------------------------

    def _bill_lines(
        self,
        document: SourceDocument,
        actor_id: UUID,
        opts: PostingOptions,
        currency: str,
        rate: Decimal | None,
    ) -> list[JournalLineSpec]:
        accounts = self._resolver.posting_accounts
        debits: list[tuple[AccountRef, Decimal]] = []

        for line in document.lines:
            product = self._product_accounts(line)
            if line.is_inventory_bearing:
                ref = self._line_account(line, "inventory", product.inventory)
                if opts.inventory_movement_enabled:
                    self._receive_stock(document, line, actor_id, currency, rate)
            else:
                ref = self._line_account(line, "expense", product.expense)
            debits.append((ref, line.line_total))

        lines = [
            JournalLineSpec(account=ref, debit=amount, description=f"Purchase {document.doc_number}")
            for ref, amount in self._grouped(document, debits)
            if amount > ZERO
        ]
        tax = to_decimal(document.tax_total or ZERO)
        if tax > ZERO:
            if document.is_reverse_charge:
                lines.append(JournalLineSpec(
                    account=accounts.require("reverse_charge_input"), debit=tax,
                    description=f"Reverse charge input {document.doc_number}",
                ))
                lines.append(JournalLineSpec(
                    account=accounts.require("reverse_charge_output"), credit=tax,
                    description=f"Reverse charge output {document.doc_number}",
                ))
            else:
                lines.append(JournalLineSpec(
                    account=accounts.require("input_tax"), debit=tax,
                    description=f"Input tax {document.doc_number}",
                ))
        if document.discount_total and document.discount_total > ZERO:
            lines.append(JournalLineSpec(
                account=accounts.require("purchase_discount"),
                credit=to_decimal(document.discount_total),
                description=f"Discount {document.doc_number}",
            ))
        lines.append(JournalLineSpec(
            account=accounts.require("payable"),
            credit=to_decimal(document.total),
            entity_type=document.entity_type,
            entity_id=document.entity_id,
            description=f"Payable {document.doc_number}",
        ))
        return lines

    def _receive_stock(
        self,
        document: SourceDocument,
        line: DocumentLine,
        actor_id: UUID,
        currency: str,
        rate: Decimal | None,
    ) -> None:
        warehouse_id = self._require_warehouse(document)
        quantity = to_decimal(line.quantity)
        if quantity <= ZERO:
            raise InvalidQuantityError("quantity", quantity)
        line_cost = quantize_scale(to_decimal(line.line_total) / quantity)

        if line.allocations:
            receipts = [
                (
                    a.lot_code or f"{document.doc_number}-{line.line_no}",
                    to_decimal(a.quantity),
                    to_decimal(a.unit_cost) if a.unit_cost is not None else line_cost,
                    a.mfg_date,
                    a.exp_date,
                )
                for a in line.allocations
            ]
            self._check_allocated(line, sum((r[1] for r in receipts), ZERO))
        else:
            receipts = [(f"{document.doc_number}-{line.line_no}", quantity, line_cost, None, None)]

        context = self._context(
            document, line, TransactionType.PURCHASE_RECEIPT,
            self._settings.inventory.bill_receipt_movement, actor_id, currency, rate,
        )
        for lot_code, qty, unit_cost, mfg_date, exp_date in receipts:
            lot = self._stock.ensure_lot(line.product_id, lot_code, actor_id, mfg_date, exp_date)
            self._stock.record_movement(
                line.product_id, warehouse_id, lot.id, qty, unit_cost, context=context
            )

    # ------------------------------------------------------------------
    # Reverse path
    # ------------------------------------------------------------------

    def reverse(self, document: SourceDocument, actor_id: UUID) -> DocumentReversal:
        doc_type = DocumentType(document.doc_type)
        source_id = str(document.id)
        today = self._clock.today()

        stock_reversals = tuple(
            self._stock.reverse_transaction(txn, actor_id, today, tombstone=True)
            for txn in self._stock_selector.live_transactions_for_source(doc_type.value, source_id)
        )

        reversal_ids: list[UUID] = []
        for journal_id in self._journals.active_journal_ids(doc_type.value, source_id):
            reversal = self._journal.reverse(
                journal_id, actor_id, journal_date=today, tombstone_pair=True
            )
            self._log_event(document, PostingEventKind.REVERSED, reversal.journal_id, journal_id, actor_id)
            reversal_ids.append(reversal.journal_id)

        result = DocumentReversal(
            document_id=document.id,
            reversal_journal_ids=tuple(reversal_ids),
            stock_reversals=stock_reversals,
        )
        logger.info(
            "document_reversed",
            extra={
                "document_id": source_id,
                "doc_type": doc_type.value,
                "doc_number": document.doc_number,
                "reversal_journal_count": len(reversal_ids),
                "stock_reversal_count": len(stock_reversals),
                "has_shortfall": result.has_shortfall,
            },
        )
        return result

    def _log_event(
        self,
        document: SourceDocument,
        kind: PostingEventKind,
        journal_id: UUID,
        reverses_journal_id: UUID | None,
        actor_id: UUID,
    ) -> None:
        self._session.add(
            PostingLogEntry(
                seq=self._sequences.next_value(SequenceService.POSTING_LOG),
                kind=kind.value,
                source_type=DocumentType(document.doc_type).value,
                source_id=str(document.id),
                journal_id=journal_id,
                reverses_journal_id=reverses_journal_id,
                created_by_id=actor_id,
            )
        )
        self._session.flush()
