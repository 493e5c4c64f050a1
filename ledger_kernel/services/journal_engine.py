"""
JournalEngine -- validates, numbers and persists balanced journals.

Responsibility:
    Sole writer of JournalHeader / JournalLine rows.  ``post`` validates a
    header plus lines, resolves currency amounts, assigns the next journal
    number for the year and applies entity balance deltas.  ``reverse``
    builds the mirror journal and posts it through the same path.

Architecture position:
    Kernel > Services.  Uses SequenceService for numbering and
    EntityBalanceService for the running-balance cache.

Invariants enforced:
    - At least one line; each line has exactly one positive side.
    - sum(debit) == sum(credit) within the posting tolerance.
    - Lines on entity-required accounts carry (entity_type, entity_id);
      entity_type is CUSTOMER or SUPPLIER.
    - A reversal references its original through reversal_of_id, keeps
      the source reference and currency fields, and never edits the
      original.  A journal can be reversed at most once while live.

Failure modes:
    - EmptyJournalError, InvalidJournalLineError, UnbalancedJournalError,
      MissingEntityError, InvalidEntityTypeError on post.
    - JournalNotFoundError, JournalAlreadyReversedError on reverse.

Audit relevance:
    ``journal_posted`` / ``journal_reversed`` / ``journal_tombstoned`` are
    logged with the journal number, source and totals.
"""

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    AccountRef,
    JournalHeaderSpec,
    JournalLineSpec,
    PostedJournal,
)
from ledger_kernel.domain.values import (
    POSTING_TOLERANCE,
    ZERO,
    EntityType,
    quantize_money,
    to_decimal,
)
from ledger_kernel.exceptions import (
    EmptyJournalError,
    InvalidEntityTypeError,
    InvalidJournalLineError,
    JournalAlreadyReversedError,
    JournalNotFoundError,
    MissingEntityError,
    UnbalancedJournalError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.journal import JournalHeader, JournalLine
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.entity_balance_service import EntityBalanceService
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.journal_engine")

_ENTITY_TYPES = frozenset(e.value for e in EntityType)

REVERSAL_PREFIX = "Reversal: "


class JournalEngine(BaseService):
    """
    Balanced journal posting and exact reversal.

    Contract:
        ``post`` returns a PostedJournal describing what was written,
        including the entity balance deltas applied.

    Non-goals:
        - Does NOT commit.
        - Does NOT decide accounts; callers pass resolved AccountRefs.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequences: SequenceService | None = None,
        balances: EntityBalanceService | None = None,
        *,
        default_company_id: str = "1",
        tolerance: Decimal = POSTING_TOLERANCE,
        number_prefix: str = "GLJ",
        number_width: int = 4,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._sequences = sequences or SequenceService(session)
        self._balances = balances or EntityBalanceService(session, default_company_id)
        self._default_company_id = default_company_id
        self._tolerance = tolerance
        self._number_prefix = number_prefix
        self._number_width = number_width
        self._selector = JournalSelector(session)

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def next_journal_number(self, journal_date: date) -> str:
        """Next number of the journal date's year: ``GLJ-2024-0001``."""
        year = journal_date.year
        seq = self._sequences.next_value(SequenceService.journal_sequence(year))
        return f"{self._number_prefix}-{year}-{seq:0{self._number_width}d}"

    def post(
        self,
        header: JournalHeaderSpec,
        lines: Sequence[JournalLineSpec],
        actor_id: UUID,
    ) -> PostedJournal:
        """
        Validate and persist one journal.

        Steps:
            1. Reject an empty line set.
            2. Quantize amounts; each line must have one positive side.
            3. Reject if debits and credits differ beyond tolerance.
            4. Enforce entity presence on entity-required accounts.
            5. Resolve foreign / converted amounts, number, persist,
               apply entity deltas.
        """
        if not lines:
            raise EmptyJournalError(header.source_type, header.source_id)

        normalized: list[tuple[JournalLineSpec, Decimal, Decimal]] = []
        for line_no, spec in enumerate(lines, start=1):
            debit = quantize_money(spec.debit or ZERO)
            credit = quantize_money(spec.credit or ZERO)
            if debit < ZERO or credit < ZERO or (debit > ZERO) == (credit > ZERO):
                raise InvalidJournalLineError(line_no, debit, credit)
            self._check_entity(line_no, spec)
            normalized.append((spec, debit, credit))

        total_debit = sum((d for _, d, _ in normalized), ZERO)
        total_credit = sum((c for _, _, c in normalized), ZERO)
        if abs(total_debit - total_credit) > self._tolerance:
            raise UnbalancedJournalError(total_debit, total_credit, self._tolerance)

        rate, foreign_amount, converted_amount = self._resolve_currency(header, total_debit)
        line_rate = rate if rate is not None and rate > ZERO and rate != 1 else None

        company_id = header.company_id or self._default_company_id
        journal = JournalHeader(
            journal_number=self.next_journal_number(header.journal_date),
            journal_date=header.journal_date,
            company_id=company_id,
            source_type=header.source_type,
            source_id=str(header.source_id),
            source_name=header.source_name,
            memo=header.memo,
            currency_code=header.currency_code,
            exchange_rate=rate,
            foreign_amount=foreign_amount,
            converted_amount=converted_amount,
            posted_at=self._clock.now(),
            is_tombstoned=False,
            reversal_of_id=header.reversal_of_id,
            created_by_id=actor_id,
        )
        for line_no, (spec, debit, credit) in enumerate(normalized, start=1):
            amount = debit if debit > ZERO else credit
            entity_type = EntityType(spec.entity_type).value if spec.entity_type else None
            journal.lines.append(
                JournalLine(
                    line_no=line_no,
                    account_id=spec.account.id,
                    debit=debit,
                    credit=credit,
                    entity_type=entity_type,
                    entity_id=spec.entity_id if entity_type else None,
                    product_id=spec.product_id,
                    description=spec.description,
                    currency_code=header.currency_code,
                    foreign_amount=amount,
                    converted_amount=quantize_money(amount * line_rate) if line_rate else amount,
                    created_by_id=actor_id,
                )
            )
        self.session.add(journal)
        self.session.flush()

        deltas = self._balances.apply_lines(company_id, journal.lines)

        logger.info(
            "journal_posted",
            extra={
                "journal_id": str(journal.id),
                "journal_number": journal.journal_number,
                "source_type": journal.source_type,
                "source_id": journal.source_id,
                "line_count": len(journal.lines),
                "total_debit": total_debit,
                "total_credit": total_credit,
                "converted_amount": converted_amount,
                "reversal_of_id": str(header.reversal_of_id) if header.reversal_of_id else None,
                "entity_delta_count": len(deltas),
            },
        )
        return PostedJournal(
            journal_id=journal.id,
            journal_number=journal.journal_number,
            total_debit=total_debit,
            total_credit=total_credit,
            foreign_amount=foreign_amount,
            converted_amount=converted_amount,
            entity_deltas=deltas,
            reversal_of_id=header.reversal_of_id,
        )

    # ------------------------------------------------------------------
    # Reversal
    # ------------------------------------------------------------------

    def reverse(
        self,
        journal_id: UUID,
        actor_id: UUID,
        *,
        journal_date: date | None = None,
        tombstone_pair: bool = False,
    ) -> PostedJournal:
        """
        Post the exact mirror of ``journal_id``.

        Debits and credits swap, line descriptions get the "Reversal: "
        prefix, and source and currency fields are copied.  With
        ``tombstone_pair`` both journals are tombstoned afterwards, which
        is how a document's postings are retired on edit or cancel.
        """
        original = self.session.execute(
            select(JournalHeader)
            .where(JournalHeader.id == journal_id)
            .with_for_update()
        ).scalar_one_or_none()
        if original is None:
            raise JournalNotFoundError(str(journal_id))
        if original.is_tombstoned:
            raise JournalAlreadyReversedError(str(journal_id))
        existing = self._selector.live_reversal_of(original.id)
        if existing is not None:
            raise JournalAlreadyReversedError(str(journal_id), str(existing.id))

        header = JournalHeaderSpec(
            journal_date=journal_date or self._clock.today(),
            source_type=original.source_type,
            source_id=original.source_id,
            company_id=original.company_id,
            source_name=original.source_name,
            memo=f"Reversal of {original.journal_number}",
            currency_code=original.currency_code,
            exchange_rate=original.exchange_rate,
            foreign_amount=original.foreign_amount,
            converted_amount=original.converted_amount,
            reversal_of_id=original.id,
        )
        lines = [
            JournalLineSpec(
                account=AccountRef(
                    id=line.account_id,
                    code=line.account.code,
                    entity_type=line.account.entity_type,
                ),
                debit=line.credit,
                credit=line.debit,
                entity_type=line.entity_type,
                entity_id=line.entity_id,
                product_id=line.product_id,
                description=f"{REVERSAL_PREFIX}{line.description or ''}",
            )
            for line in original.lines
        ]

        posted = self.post(header, lines, actor_id)

        logger.info(
            "journal_reversed",
            extra={
                "journal_id": str(original.id),
                "journal_number": original.journal_number,
                "reversal_journal_id": str(posted.journal_id),
                "reversal_journal_number": posted.journal_number,
                "tombstone_pair": tombstone_pair,
            },
        )

        if tombstone_pair:
            self.tombstone(original.id, actor_id)
            self.tombstone(posted.journal_id, actor_id)
        return posted

    def tombstone(self, journal_id: UUID, actor_id: UUID) -> None:
        """Mark a journal tombstoned and withdraw its entity contribution."""
        journal = self._selector.get_header(journal_id)
        if journal is None:
            raise JournalNotFoundError(str(journal_id))
        if journal.is_tombstoned:
            return
        journal.is_tombstoned = True
        journal.updated_by_id = actor_id
        self.session.flush()
        self._balances.apply_lines(journal.company_id, journal.lines, sign=-1)
        logger.info(
            "journal_tombstoned",
            extra={"journal_id": str(journal.id), "journal_number": journal.journal_number},
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _check_entity(line_no: int, spec: JournalLineSpec) -> None:
        has_type = spec.entity_type is not None and spec.entity_type != ""
        has_id = spec.entity_id is not None and spec.entity_id != ""
        if has_type:
            type_value = spec.entity_type.value if isinstance(spec.entity_type, EntityType) else spec.entity_type
            if type_value not in _ENTITY_TYPES:
                raise InvalidEntityTypeError(line_no, str(spec.entity_type))
            expected = spec.account.entity_type
            if expected is not None and type_value != EntityType(expected).value:
                raise InvalidEntityTypeError(line_no, type_value, EntityType(expected).value)
        if spec.account.requires_entity and not (has_type and has_id):
            raise MissingEntityError(line_no, spec.account.code)
        if has_type != has_id:
            raise MissingEntityError(line_no, spec.account.code)

    @staticmethod
    def _resolve_currency(
        header: JournalHeaderSpec, total_debit: Decimal
    ) -> tuple[Decimal | None, Decimal, Decimal]:
        """Return (rate, foreign_amount, converted_amount).

        - foreign + positive rate: converted = given or foreign * rate
        - converted only: foreign = given or converted / rate (or converted)
        - neither: both default to the debit total
        """
        rate = to_decimal(header.exchange_rate) if header.exchange_rate is not None else None
        foreign = header.foreign_amount
        converted = header.converted_amount

        if foreign is not None and rate is not None and rate > ZERO:
            foreign = quantize_money(foreign)
            converted = quantize_money(converted) if converted is not None else quantize_money(foreign * rate)
        elif converted is not None:
            converted = quantize_money(converted)
            if foreign is None:
                foreign = quantize_money(converted / rate) if rate is not None and rate > ZERO else converted
            foreign = quantize_money(foreign)
        elif foreign is not None:
            foreign = quantize_money(foreign)
            converted = foreign
        else:
            foreign = total_debit
            converted = total_debit
        return rate, foreign, converted
