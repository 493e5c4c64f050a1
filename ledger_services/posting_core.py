"""
ledger_services.posting_core -- LedgerPostingCore, the public facade.

Responsibility:
    Creates every service of the posting core exactly once, wires them
    together and exposes the operations callers use: batch allocation,
    document posting and reversal, lifecycle actions and entity balances.

Architecture position:
    Services -- top of the stack.  The only place services are constructed.

Invariants enforced:
    - Atomicity: each operation runs inside ``session.begin_nested()``.  A
      failure rolls that operation back in full and re-raises; the
      caller's surrounding transaction and other work are untouched.
    - Single-instance lifecycle: one SequenceService, one JournalEngine,
      one StockLedger per facade.

Non-goals:
    - Does NOT commit; wrap calls in ``session_scope()`` or commit yourself.

Usage:
    core = LedgerPostingCore(
        session,
        settings=get_active_config(),
        product_accounts=MappingProductAccountLookup({...}),
        clock=SystemClock(),
    )
    core.approve(document_id, actor_id)
"""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_config.schema import LedgerSettings
from ledger_engines.batch_allocation import AllocationPolicy, PlannedDraw
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.document_workflow import LifecycleAction
from ledger_kernel.domain.dtos import DocumentReversal
from ledger_kernel.domain.values import EntityType
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.services.entity_balance_service import EntityBalanceService
from ledger_kernel.services.journal_engine import JournalEngine
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.services.stock_ledger import StockLedger
from ledger_services.account_resolver import AccountResolver
from ledger_services.batch_allocator import BatchAllocator
from ledger_services.document_lifecycle import DocumentLifecycleService, LifecycleResult
from ledger_services.document_posting import DocumentPostingService, PostingOptions
from ledger_services.lookups import CurrencyRateLookup, ProductAccountLookup, StaticRateTable

logger = get_logger("services.posting_core")

T = TypeVar("T")


class LedgerPostingCore:
    """Facade over the posting core.

    Contract:
        Receives a Session, LedgerSettings and the master-data lookups.
        Every public method is atomic with respect to the session.
    """

    def __init__(
        self,
        session: Session,
        settings: LedgerSettings,
        product_accounts: ProductAccountLookup,
        rates: CurrencyRateLookup | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self.settings = settings
        self._clock = clock or SystemClock()

        self.sequences = SequenceService(session)
        self.balances = EntityBalanceService(
            session, default_company_id=settings.default_company_id
        )
        self.journal_engine = JournalEngine(
            session,
            self._clock,
            self.sequences,
            self.balances,
            default_company_id=settings.default_company_id,
            tolerance=settings.tolerance,
            number_prefix=settings.numbering.prefix,
            number_width=settings.numbering.width,
        )
        self.stock_ledger = StockLedger(session, self.sequences, tolerance=settings.tolerance)
        self.allocator = BatchAllocator(session, settings.inventory.allocation_policy)
        self.resolver = AccountResolver(session, settings.accounts)
        self.posting = DocumentPostingService(
            session,
            settings,
            self._clock,
            self.journal_engine,
            self.stock_ledger,
            self.allocator,
            self.resolver,
            self.sequences,
            product_accounts,
            rates or StaticRateTable(settings.base_currency),
        )
        self.lifecycle = DocumentLifecycleService(session, self.posting, self._clock)

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def _atomic(self, operation: str, fn: Callable[[], T], **context) -> T:
        with LogContext.bind(**context):
            savepoint = self._session.begin_nested()
            try:
                result = fn()
            except Exception as exc:
                savepoint.rollback()
                logger.warning(
                    "operation_rolled_back",
                    extra={
                        "operation": operation,
                        "error_type": type(exc).__name__,
                        "error_code": getattr(exc, "code", None),
                    },
                )
                raise
            savepoint.commit()
            return result

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def allocate_batches(
        self,
        product_id: str,
        warehouse_id: str,
        quantity: Decimal,
        policy: AllocationPolicy | None = None,
    ) -> list[PlannedDraw]:
        plan = self.allocator.allocate(product_id, warehouse_id, quantity, policy)
        return list(plan.draws)

    def post_document(
        self,
        document_id: UUID,
        actor_id: UUID,
        options: PostingOptions | None = None,
    ) -> UUID:
        """Post a document's ledger effect without changing its status."""

        def run() -> UUID:
            document = self.lifecycle.load(document_id, lock=True)
            return self.posting.post(document, actor_id, options).journal_id

        return self._atomic("post_document", run, actor_id=actor_id, document_id=document_id)

    def reverse_document(self, document_id: UUID, actor_id: UUID) -> DocumentReversal:
        def run() -> DocumentReversal:
            document = self.lifecycle.load(document_id, lock=True)
            return self.posting.reverse(document, actor_id)

        return self._atomic("reverse_document", run, actor_id=actor_id, document_id=document_id)

    def get_entity_balance(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        company_id: str | None = None,
    ) -> Decimal:
        return self.balances.get_balance(entity_type, entity_id, company_id)

    def rebuild_entity_balances(self, company_id: str | None = None) -> int:
        return self._atomic(
            "rebuild_entity_balances", lambda: self.balances.rebuild(company_id)
        )

    # -- lifecycle ------------------------------------------------------

    def _transition(
        self,
        action: LifecycleAction,
        document_id: UUID,
        actor_id: UUID,
        options: PostingOptions | None = None,
    ) -> LifecycleResult:
        return self._atomic(
            action.value,
            lambda: self.lifecycle.apply(document_id, action, actor_id, options),
            actor_id=actor_id,
            document_id=document_id,
        )

    def submit(self, document_id: UUID, actor_id: UUID) -> LifecycleResult:
        return self._transition(LifecycleAction.SUBMIT, document_id, actor_id)

    def approve(
        self,
        document_id: UUID,
        actor_id: UUID,
        options: PostingOptions | None = None,
    ) -> LifecycleResult:
        return self._transition(LifecycleAction.APPROVE, document_id, actor_id, options)

    def reject(self, document_id: UUID, actor_id: UUID) -> LifecycleResult:
        return self._transition(LifecycleAction.REJECT, document_id, actor_id)

    def request_edit(self, document_id: UUID, actor_id: UUID) -> LifecycleResult:
        return self._transition(LifecycleAction.REQUEST_EDIT, document_id, actor_id)

    def approve_edit_request(self, document_id: UUID, actor_id: UUID) -> LifecycleResult:
        return self._transition(LifecycleAction.APPROVE_EDIT_REQUEST, document_id, actor_id)

    def reject_edit_request(self, document_id: UUID, actor_id: UUID) -> LifecycleResult:
        return self._transition(LifecycleAction.REJECT_EDIT_REQUEST, document_id, actor_id)

    def cancel(self, document_id: UUID, actor_id: UUID) -> LifecycleResult:
        return self._transition(LifecycleAction.CANCEL, document_id, actor_id)
