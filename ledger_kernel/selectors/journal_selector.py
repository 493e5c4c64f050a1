"""
Module: ledger_kernel.selectors.journal_selector
Responsibility: Read-only journal queries: headers by id or source, the
    posting log of a document, live per-entity and per-account sums.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - "Live" always means: line belongs to a header with
      is_tombstoned = False.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.domain.posting_log import PostingEvent, active_journal_ids
from ledger_kernel.models.journal import JournalHeader, JournalLine
from ledger_kernel.models.posting_log import PostingLogEntry
from ledger_kernel.selectors.base import BaseSelector


class JournalSelector(BaseSelector):
    def get_header(self, journal_id: UUID) -> JournalHeader | None:
        return self.session.get(JournalHeader, journal_id)

    def live_reversal_of(self, journal_id: UUID) -> JournalHeader | None:
        return self.session.execute(
            select(JournalHeader).where(
                JournalHeader.reversal_of_id == journal_id,
                JournalHeader.is_tombstoned.is_(False),
            )
        ).scalars().first()

    def posting_events(self, source_type: str, source_id: str) -> list[PostingEvent]:
        rows = self.session.execute(
            select(PostingLogEntry)
            .where(
                PostingLogEntry.source_type == source_type,
                PostingLogEntry.source_id == source_id,
            )
            .order_by(PostingLogEntry.seq)
        ).scalars()
        return [row.to_event() for row in rows]

    def active_journal_ids(self, source_type: str, source_id: str) -> tuple[UUID, ...]:
        return active_journal_ids(self.posting_events(source_type, source_id))

    def live_entity_sums(self, company_id: str) -> list[tuple[str, str, Decimal]]:
        """(entity_type, entity_id, sum(debit - credit)) over live lines."""
        rows = self.session.execute(
            select(
                JournalLine.entity_type,
                JournalLine.entity_id,
                func.sum(JournalLine.debit - JournalLine.credit),
            )
            .join(JournalHeader, JournalHeader.id == JournalLine.journal_id)
            .where(
                JournalHeader.company_id == company_id,
                JournalHeader.is_tombstoned.is_(False),
                JournalLine.entity_type.is_not(None),
                JournalLine.entity_id.is_not(None),
            )
            .group_by(JournalLine.entity_type, JournalLine.entity_id)
        ).all()
        return [(etype, eid, Decimal(str(total))) for etype, eid, total in rows]
