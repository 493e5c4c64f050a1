"""
Tests for the LedgerPostingCore facade: wiring, atomic units of work and
the direct post / reverse operations.
"""

from dataclasses import replace
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from ledger_engines.batch_allocation import AllocationPolicy
from ledger_kernel.domain.document_workflow import DocumentStatus
from ledger_kernel.domain.values import EntityType
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    DocumentNotFoundError,
    InsufficientStockError,
    MissingAccountError,
    SubtotalMismatchError,
)
from ledger_kernel.models.document import DocumentType
from ledger_kernel.models.journal import JournalHeader
from ledger_services import (
    AccountResolver,
    LedgerPostingCore,
    MappingProductAccountLookup,
    ProductAccounts,
    StaticRateTable,
)

BILL = DocumentType.AP_BILL
INVOICE = DocumentType.AR_INVOICE
WAREHOUSE = "WH-1"


class TestAtomicity:
    """A failing operation rolls back everything it did."""

    def test_partial_stock_issue_rolled_back(
        self, core, make_document, receive_lot, stock_selector,
        session, test_actor_id,
    ):
        receive_lot("SKU-1", "A", "10", "5")
        invoice = make_document(
            INVOICE,
            [
                {"product_id": "SKU-1", "quantity": "5", "rate": "10"},
                {"product_id": "SKU-2", "quantity": "5", "rate": "10"},
            ],
            entity_id="C-1",
        )

        with pytest.raises(InsufficientStockError):
            core.approve(invoice.id, test_actor_id)

        assert stock_selector.total_on_hand("SKU-1", WAREHOUSE) == Decimal("10")
        assert stock_selector.live_transactions_for_source(INVOICE.value, str(invoice.id)) == []
        assert session.execute(
            select(JournalHeader).where(JournalHeader.source_id == str(invoice.id))
        ).first() is None
        assert core.get_entity_balance(EntityType.CUSTOMER, "C-1") == Decimal("0")
        session.refresh(invoice)
        assert invoice.status == DocumentStatus.DRAFT.value

    def test_rollback_logged(
        self, core, make_document, test_actor_id, captured_logs
    ):
        invoice = make_document(INVOICE, [{"product_id": "SKU-2", "quantity": "1", "rate": "1"}])

        with pytest.raises(InsufficientStockError):
            core.approve(invoice.id, test_actor_id)

        rolled_back = [r for r in captured_logs() if r["message"] == "operation_rolled_back"]
        assert len(rolled_back) == 1
        assert rolled_back[0]["level"] == "WARNING"
        assert rolled_back[0]["operation"] == "approve"
        assert rolled_back[0]["error_code"] == "INSUFFICIENT_STOCK"
        assert rolled_back[0]["document_id"] == str(invoice.id)

    def test_later_operation_unaffected_by_earlier_failure(
        self, core, make_document, test_actor_id
    ):
        bad = make_document(BILL, [{"product_id": "SKU-1", "quantity": "1", "rate": "10"}], total="1")
        good = make_document(BILL, [{"product_id": "SKU-1", "quantity": "1", "rate": "10"}], entity_id="SUP-2")

        with pytest.raises(SubtotalMismatchError):
            core.approve(bad.id, test_actor_id)
        core.approve(good.id, test_actor_id)

        assert core.get_entity_balance(EntityType.SUPPLIER, "SUP-2") == Decimal("-10")

    def test_unknown_document(self, core, test_actor_id):
        with pytest.raises(DocumentNotFoundError):
            core.approve(uuid4(), test_actor_id)


class TestDirectOperations:
    def test_post_and_reverse_without_status_change(
        self, core, make_document, journal_selector, session, test_actor_id
    ):
        bill = make_document(BILL, [{"product_id": "SKU-1", "quantity": "2", "rate": "10"}], entity_id="SUP-1")

        journal_id = core.post_document(bill.id, test_actor_id)

        assert journal_selector.get_header(journal_id).source_id == str(bill.id)
        assert bill.status == DocumentStatus.DRAFT.value
        assert core.get_entity_balance("SUPPLIER", "SUP-1") == Decimal("-20")

        reversal = core.reverse_document(bill.id, test_actor_id)

        assert len(reversal.reversal_journal_ids) == 1
        assert len(reversal.stock_reversals) == 1
        assert core.get_entity_balance("SUPPLIER", "SUP-1") == Decimal("0")
        assert bill.status == DocumentStatus.DRAFT.value

    def test_reverse_unposted_document_is_noop(self, core, make_document, test_actor_id):
        bill = make_document(BILL, [{"product_id": "SKU-1", "quantity": "1", "rate": "10"}])

        reversal = core.reverse_document(bill.id, test_actor_id)

        assert reversal.reversal_journal_ids == ()
        assert reversal.stock_reversals == ()

    def test_allocate_batches(self, core, receive_lot):
        lot_a = receive_lot("SKU-1", "A", "10", "5")
        lot_b = receive_lot("SKU-1", "B", "5", "8")

        draws = core.allocate_batches("SKU-1", WAREHOUSE, Decimal("12"))

        assert [(d.lot_id, d.quantity) for d in draws] == [
            (lot_a.id, Decimal("10")),
            (lot_b.id, Decimal("2")),
        ]

    def test_allocate_batches_does_not_move_stock(self, core, receive_lot, stock_selector):
        receive_lot("SKU-1", "A", "10", "5")

        core.allocate_batches("SKU-1", WAREHOUSE, Decimal("4"), AllocationPolicy.FEFO)

        assert stock_selector.total_on_hand("SKU-1", WAREHOUSE) == Decimal("10")

    def test_journal_numbering_from_settings(
        self, session, settings, product_accounts, standard_accounts, deterministic_clock,
        make_document, test_actor_id,
    ):
        numbered = replace(settings, numbering=replace(settings.numbering, prefix="AP", width=3))
        core = LedgerPostingCore(session, numbered, product_accounts, clock=deterministic_clock)
        bill = make_document(BILL, [{"product_id": "SKU-1", "quantity": "1", "rate": "10"}])

        posted = core.approve(bill.id, test_actor_id).posted

        assert posted.journal_number == "AP-2024-001"


class TestAccountResolution:
    def test_missing_system_account(
        self, session, settings, product_accounts, standard_accounts, deterministic_clock,
        make_document, stock_selector, test_actor_id, captured_logs,
    ):
        broken = replace(settings, accounts=replace(settings.accounts, payable="9999"))
        core = LedgerPostingCore(session, broken, product_accounts, clock=deterministic_clock)
        bill = make_document(BILL, [{"product_id": "SKU-1", "quantity": "3", "rate": "10"}])

        with pytest.raises(MissingAccountError) as exc_info:
            core.approve(bill.id, test_actor_id)

        assert exc_info.value.role == "payable"
        assert stock_selector.total_on_hand("SKU-1", WAREHOUSE) == Decimal("0")
        missing = [r for r in captured_logs() if r["message"] == "system_accounts_missing"]
        assert missing[0]["roles"] == ["payable"]

    def test_inactive_accounts_not_resolved(self, session, settings, create_account):
        create_account("7777", "Retired", is_active=False)

        resolver = AccountResolver(session, settings.accounts)

        assert resolver.find_code("7777") is None
        with pytest.raises(AccountNotFoundError):
            resolver.ref_for_code("7777")

    def test_ref_for_code(self, session, settings, standard_accounts):
        resolver = AccountResolver(session, settings.accounts)

        ref = resolver.ref_for_code("1200")

        assert ref.id == standard_accounts["1200"].id
        assert ref.requires_entity is True
        assert ref.entity_type is EntityType.CUSTOMER
        assert resolver.posting_accounts.receivable == ref
        assert resolver.ref_for_code("2000").entity_type is EntityType.SUPPLIER
        assert resolver.ref_for_code("4000").requires_entity is False


class TestLookups:
    def test_mapping_lookup_default(self):
        lookup = MappingProductAccountLookup(
            {"A": ProductAccounts(revenue="4000")}, default=ProductAccounts(revenue="4100")
        )
        assert lookup.accounts_for("A").revenue == "4000"
        assert lookup.accounts_for("other").revenue == "4100"

    def test_mapping_lookup_without_default(self):
        assert MappingProductAccountLookup({}).accounts_for("X") is None

    def test_static_rates(self):
        rates = StaticRateTable("usd", {"eur": "1.10"})
        assert rates.rate_for("USD") == Decimal("1")
        assert rates.rate_for("EUR") == Decimal("1.10")
        assert rates.rate_for("JPY") is None
