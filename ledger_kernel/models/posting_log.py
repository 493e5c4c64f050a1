"""
Module: ledger_kernel.models.posting_log
Responsibility: Persisted POSTED / REVERSED events per source document.
Architecture position: Kernel > Models.

Invariants enforced:
    - Append-only; seq is unique and increasing.
    - REVERSED rows always carry reverses_journal_id.
    - Active journals of a document = active_journal_ids(to_events(rows)).
"""

from uuid import UUID

from sqlalchemy import BigInteger, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.domain.posting_log import PostingEvent, PostingEventKind


class PostingLogEntry(TrackedBase):
    __tablename__ = "document_posting_log"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_posting_log_seq"),
        Index("idx_posting_log_source", "source_type", "source_id"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    kind: Mapped[PostingEventKind] = mapped_column(String(10), nullable=False)

    source_type: Mapped[str] = mapped_column(String(50), nullable=False)

    source_id: Mapped[str] = mapped_column(String(100), nullable=False)

    journal_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_headers.id"),
        nullable=False,
    )

    reverses_journal_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_headers.id"),
        nullable=True,
    )

    def to_event(self) -> PostingEvent:
        return PostingEvent(
            seq=self.seq,
            kind=PostingEventKind(self.kind),
            journal_id=self.journal_id,
            reverses_journal_id=self.reverses_journal_id,
        )
