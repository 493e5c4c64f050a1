"""
Tests for JournalEngine -- validation, currency resolution, numbering,
reversal and tombstoning.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import JournalHeaderSpec, JournalLineSpec
from ledger_kernel.domain.values import EntityType
from ledger_kernel.exceptions import (
    EmptyJournalError,
    InvalidEntityTypeError,
    InvalidJournalLineError,
    JournalAlreadyReversedError,
    JournalNotFoundError,
    MissingEntityError,
    UnbalancedJournalError,
)
from ledger_kernel.services.journal_engine import JournalEngine


def _header(**overrides) -> JournalHeaderSpec:
    values = dict(
        journal_date=date(2024, 3, 1),
        source_type="MANUAL",
        source_id="SRC-1",
    )
    values.update(overrides)
    return JournalHeaderSpec(**values)


@pytest.fixture
def sale_lines(account_ref):
    """Receivable 100 against revenue 100 for customer C-1."""

    def _lines(amount: str = "100.00", customer: str = "C-1"):
        return [
            JournalLineSpec(
                account=account_ref("1200"),
                debit=Decimal(amount),
                entity_type=EntityType.CUSTOMER,
                entity_id=customer,
                description="AR",
            ),
            JournalLineSpec(account=account_ref("4000"), credit=Decimal(amount), description="Sales"),
        ]

    return _lines


# =============================================================================
# Validation
# =============================================================================


class TestPostValidation:
    """Rejected input never writes a journal."""

    def test_empty_lines_rejected(self, journal_engine, test_actor_id):
        with pytest.raises(EmptyJournalError):
            journal_engine.post(_header(), [], test_actor_id)

    def test_line_with_both_sides_rejected(self, journal_engine, account_ref, test_actor_id):
        lines = [
            JournalLineSpec(account=account_ref("1000"), debit=Decimal("5"), credit=Decimal("5")),
            JournalLineSpec(account=account_ref("4000"), credit=Decimal("0")),
        ]
        with pytest.raises(InvalidJournalLineError) as exc_info:
            journal_engine.post(_header(), lines, test_actor_id)
        assert exc_info.value.line_no == 1

    def test_line_with_no_side_rejected(self, journal_engine, account_ref, test_actor_id):
        lines = [
            JournalLineSpec(account=account_ref("1000"), debit=Decimal("5")),
            JournalLineSpec(account=account_ref("4000")),
        ]
        with pytest.raises(InvalidJournalLineError) as exc_info:
            journal_engine.post(_header(), lines, test_actor_id)
        assert exc_info.value.line_no == 2

    def test_negative_amount_rejected(self, journal_engine, account_ref, test_actor_id):
        lines = [
            JournalLineSpec(account=account_ref("1000"), debit=Decimal("-5")),
            JournalLineSpec(account=account_ref("4000"), credit=Decimal("5")),
        ]
        with pytest.raises(InvalidJournalLineError):
            journal_engine.post(_header(), lines, test_actor_id)

    def test_unbalanced_rejected(self, journal_engine, account_ref, test_actor_id):
        lines = [
            JournalLineSpec(account=account_ref("1000"), debit=Decimal("100.00")),
            JournalLineSpec(account=account_ref("4000"), credit=Decimal("99.98")),
        ]
        with pytest.raises(UnbalancedJournalError) as exc_info:
            journal_engine.post(_header(), lines, test_actor_id)
        assert exc_info.value.debits == Decimal("100.00")

    def test_within_tolerance_accepted(self, journal_engine, account_ref, test_actor_id):
        lines = [
            JournalLineSpec(account=account_ref("1000"), debit=Decimal("100.00")),
            JournalLineSpec(account=account_ref("4000"), credit=Decimal("99.99")),
        ]
        posted = journal_engine.post(_header(), lines, test_actor_id)
        assert posted.total_debit - posted.total_credit == Decimal("0.01")

    def test_entity_required_account_without_entity(
        self, journal_engine, account_ref, test_actor_id
    ):
        lines = [
            JournalLineSpec(account=account_ref("1200"), debit=Decimal("10")),
            JournalLineSpec(account=account_ref("4000"), credit=Decimal("10")),
        ]
        with pytest.raises(MissingEntityError) as exc_info:
            journal_engine.post(_header(), lines, test_actor_id)
        assert exc_info.value.account_code == "1200"

    def test_unknown_entity_type_rejected(self, journal_engine, account_ref, test_actor_id):
        lines = [
            JournalLineSpec(
                account=account_ref("1200"), debit=Decimal("10"),
                entity_type="EMPLOYEE", entity_id="E-1",
            ),
            JournalLineSpec(account=account_ref("4000"), credit=Decimal("10")),
        ]
        with pytest.raises(InvalidEntityTypeError):
            journal_engine.post(_header(), lines, test_actor_id)

    @pytest.mark.parametrize(
        "control,other,entity_type,expected",
        [
            ("1200", "4000", EntityType.SUPPLIER, "CUSTOMER"),
            ("2000", "6000", EntityType.CUSTOMER, "SUPPLIER"),
        ],
    )
    def test_partner_kind_must_match_account(
        self, journal_engine, account_ref, test_actor_id, control, other, entity_type, expected
    ):
        lines = [
            JournalLineSpec(
                account=account_ref(control), debit=Decimal("10"),
                entity_type=entity_type, entity_id="P-1",
            ),
            JournalLineSpec(account=account_ref(other), credit=Decimal("10")),
        ]
        with pytest.raises(InvalidEntityTypeError) as exc_info:
            journal_engine.post(_header(), lines, test_actor_id)
        assert exc_info.value.expected == expected
        assert exc_info.value.entity_type == entity_type.value

    def test_partner_on_plain_account_accepted(self, journal_engine, account_ref, test_actor_id):
        lines = [
            JournalLineSpec(
                account=account_ref("1000"), debit=Decimal("10"),
                entity_type=EntityType.SUPPLIER, entity_id="S-1",
            ),
            JournalLineSpec(account=account_ref("4000"), credit=Decimal("10")),
        ]
        posted = journal_engine.post(_header(), lines, test_actor_id)
        assert posted.total_debit == Decimal("10")


# =============================================================================
# Posting
# =============================================================================


class TestPost:
    """Accepted journals are numbered, persisted and update balances."""

    def test_post_persists_lines(self, journal_engine, journal_selector, sale_lines, test_actor_id):
        posted = journal_engine.post(_header(), sale_lines(), test_actor_id)

        header = journal_selector.get_header(posted.journal_id)
        assert header.is_balanced
        assert [line.line_no for line in header.lines] == [1, 2]
        assert header.lines[0].entity_type == EntityType.CUSTOMER.value
        assert header.lines[1].entity_type is None

    def test_numbering_per_year(self, journal_engine, sale_lines, test_actor_id):
        first = journal_engine.post(_header(), sale_lines(), test_actor_id)
        second = journal_engine.post(_header(), sale_lines(), test_actor_id)
        next_year = journal_engine.post(
            _header(journal_date=date(2025, 1, 2)), sale_lines(), test_actor_id
        )

        assert first.journal_number == "GLJ-2024-0001"
        assert second.journal_number == "GLJ-2024-0002"
        assert next_year.journal_number == "GLJ-2025-0001"

    def test_custom_prefix_and_width(
        self, session, deterministic_clock, sale_lines, test_actor_id
    ):
        engine = JournalEngine(session, deterministic_clock, number_prefix="JV", number_width=6)
        posted = engine.post(_header(), sale_lines(), test_actor_id)
        assert posted.journal_number == "JV-2024-000001"

    def test_entity_delta_returned(self, journal_engine, entity_balances, sale_lines, test_actor_id):
        posted = journal_engine.post(_header(), sale_lines("250.00"), test_actor_id)

        assert len(posted.entity_deltas) == 1
        assert posted.entity_deltas[0].delta == Decimal("250.00")
        assert entity_balances.get_balance(EntityType.CUSTOMER, "C-1") == Decimal("250.00")

    def test_amounts_quantized_to_cents(self, journal_engine, account_ref, test_actor_id):
        lines = [
            JournalLineSpec(account=account_ref("1000"), debit=Decimal("10.005")),
            JournalLineSpec(account=account_ref("4000"), credit=Decimal("10.005")),
        ]
        posted = journal_engine.post(_header(), lines, test_actor_id)
        assert posted.total_debit == Decimal("10.01")


class TestCurrencyResolution:
    """Header foreign / converted amounts and per-line conversion."""

    def test_defaults_to_debit_total(self, journal_engine, sale_lines, test_actor_id):
        posted = journal_engine.post(_header(), sale_lines(), test_actor_id)
        assert posted.foreign_amount == Decimal("100.00")
        assert posted.converted_amount == Decimal("100.00")

    def test_foreign_times_rate(self, journal_engine, journal_selector, sale_lines, test_actor_id):
        posted = journal_engine.post(
            _header(currency_code="EUR", exchange_rate=Decimal("1.10"), foreign_amount=Decimal("100")),
            sale_lines(),
            test_actor_id,
        )

        assert posted.converted_amount == Decimal("110.00")
        line = journal_selector.get_header(posted.journal_id).lines[0]
        assert line.foreign_amount == Decimal("100.00")
        assert line.converted_amount == Decimal("110.00")

    def test_explicit_converted_wins(self, journal_engine, sale_lines, test_actor_id):
        posted = journal_engine.post(
            _header(
                exchange_rate=Decimal("1.10"),
                foreign_amount=Decimal("100"),
                converted_amount=Decimal("109.50"),
            ),
            sale_lines(),
            test_actor_id,
        )
        assert posted.converted_amount == Decimal("109.50")

    def test_converted_only_divides_by_rate(self, journal_engine, sale_lines, test_actor_id):
        posted = journal_engine.post(
            _header(exchange_rate=Decimal("2"), converted_amount=Decimal("200")),
            sale_lines(),
            test_actor_id,
        )
        assert posted.foreign_amount == Decimal("100.00")

    def test_unit_rate_keeps_line_amounts(
        self, journal_engine, journal_selector, sale_lines, test_actor_id
    ):
        posted = journal_engine.post(_header(exchange_rate=Decimal("1")), sale_lines(), test_actor_id)
        line = journal_selector.get_header(posted.journal_id).lines[0]
        assert line.converted_amount == line.foreign_amount == Decimal("100.00")


# =============================================================================
# Reversal
# =============================================================================


class TestReverse:
    """A reversal is the exact mirror, posted as a new journal."""

    def test_reversal_swaps_sides(self, journal_engine, journal_selector, sale_lines, test_actor_id):
        original = journal_engine.post(_header(), sale_lines(), test_actor_id)

        reversal = journal_engine.reverse(original.journal_id, test_actor_id)

        header = journal_selector.get_header(reversal.journal_id)
        assert header.reversal_of_id == original.journal_id
        assert header.source_id == "SRC-1"
        assert header.memo == f"Reversal of {original.journal_number}"
        assert header.lines[0].credit == Decimal("100.00")
        assert header.lines[1].debit == Decimal("100.00")
        assert header.lines[0].description == "Reversal: AR"

    def test_reversal_nets_entity_balance(
        self, journal_engine, entity_balances, sale_lines, test_actor_id
    ):
        original = journal_engine.post(_header(), sale_lines(), test_actor_id)
        journal_engine.reverse(original.journal_id, test_actor_id)
        assert entity_balances.get_balance(EntityType.CUSTOMER, "C-1") == Decimal("0")

    def test_second_reversal_rejected(self, journal_engine, sale_lines, test_actor_id):
        original = journal_engine.post(_header(), sale_lines(), test_actor_id)
        journal_engine.reverse(original.journal_id, test_actor_id)

        with pytest.raises(JournalAlreadyReversedError):
            journal_engine.reverse(original.journal_id, test_actor_id)

    def test_unknown_journal(self, journal_engine, test_actor_id):
        with pytest.raises(JournalNotFoundError):
            journal_engine.reverse(uuid4(), test_actor_id)

    def test_tombstone_pair(
        self, journal_engine, journal_selector, entity_balances, sale_lines, test_actor_id
    ):
        original = journal_engine.post(_header(), sale_lines(), test_actor_id)

        reversal = journal_engine.reverse(original.journal_id, test_actor_id, tombstone_pair=True)

        assert journal_selector.get_header(original.journal_id).is_tombstoned is True
        assert journal_selector.get_header(reversal.journal_id).is_tombstoned is True
        assert entity_balances.get_balance(EntityType.CUSTOMER, "C-1") == Decimal("0")
        assert entity_balances.balances() == {}

    def test_tombstoned_journal_cannot_be_reversed(self, journal_engine, sale_lines, test_actor_id):
        original = journal_engine.post(_header(), sale_lines(), test_actor_id)
        journal_engine.reverse(original.journal_id, test_actor_id, tombstone_pair=True)

        with pytest.raises(JournalAlreadyReversedError):
            journal_engine.reverse(original.journal_id, test_actor_id)

    def test_reversal_logged(self, journal_engine, sale_lines, test_actor_id, captured_logs):
        original = journal_engine.post(_header(), sale_lines(), test_actor_id)
        journal_engine.reverse(original.journal_id, test_actor_id)

        messages = [r["message"] for r in captured_logs()]
        assert "journal_reversed" in messages
        assert messages.count("journal_posted") == 2
