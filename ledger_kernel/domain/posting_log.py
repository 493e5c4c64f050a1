"""
Posting log -- tagged events describing a document's ledger history.

Responsibility:
    A document's journals are never flagged "current" in place.  Instead
    every posting appends a POSTED event and every reversal appends a
    REVERSED event naming the journal it negates.  Which journals are
    active for a document is a pure function of that log.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  The persisted form lives in
    ``ledger_kernel.models.posting_log``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class PostingEventKind(str, Enum):
    POSTED = "POSTED"
    REVERSED = "REVERSED"


@dataclass(frozen=True, slots=True)
class PostingEvent:
    """One entry of a document's posting log.

    For REVERSED, ``journal_id`` is the reversal journal and
    ``reverses_journal_id`` the journal it negates.
    """

    seq: int
    kind: PostingEventKind
    journal_id: UUID
    reverses_journal_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.kind is PostingEventKind.REVERSED and self.reverses_journal_id is None:
            raise ValueError("REVERSED event must name the journal it reverses")


def active_journal_ids(events: Iterable[PostingEvent]) -> tuple[UUID, ...]:
    """Journals posted and not yet reversed, in posting order."""
    active: dict[UUID, None] = {}
    for event in sorted(events, key=lambda e: e.seq):
        if event.kind is PostingEventKind.POSTED:
            active[event.journal_id] = None
        else:
            active.pop(event.reverses_journal_id, None)
    return tuple(active)

