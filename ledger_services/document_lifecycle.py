"""
ledger_services.document_lifecycle -- document status changes and their
ledger effects.

Responsibility:
    Loads a document under a row lock, asks the pure workflow
    (``plan_transition``) whether the action is allowed and what it does to
    the ledger, performs that effect through DocumentPostingService, then
    writes the new status.  The effect and the status change share one
    unit of work: if posting fails, the status does not move.

Architecture position:
    Services -- called by the LedgerPostingCore facade.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.document_workflow import (
    DocumentStatus,
    EditRequestStatus,
    LedgerEffect,
    LifecycleAction,
    plan_transition,
)
from ledger_kernel.domain.dtos import DocumentReversal, PostedJournal
from ledger_kernel.exceptions import DocumentNotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.document import SourceDocument
from ledger_services.document_posting import DocumentPostingService, PostingOptions

logger = get_logger("services.document_lifecycle")


@dataclass(frozen=True)
class LifecycleResult:
    document_id: UUID
    action: LifecycleAction
    status: DocumentStatus
    edit_request_status: EditRequestStatus
    posted: PostedJournal | None = None
    reversal: DocumentReversal | None = None


class DocumentLifecycleService:
    def __init__(self, session: Session, posting: DocumentPostingService, clock: Clock):
        self._session = session
        self._posting = posting
        self._clock = clock

    def load(self, document_id: UUID, lock: bool = False) -> SourceDocument:
        stmt = select(SourceDocument).where(SourceDocument.id == document_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        document = self._session.execute(stmt).scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(str(document_id))
        return document

    def apply(
        self,
        document_id: UUID,
        action: LifecycleAction,
        actor_id: UUID,
        options: PostingOptions | None = None,
    ) -> LifecycleResult:
        """Run one lifecycle action end to end."""
        action = LifecycleAction(action)
        document = self.load(document_id, lock=True)
        old_status = DocumentStatus(document.status)
        old_edit = EditRequestStatus(document.edit_request_status)
        outcome = plan_transition(action, old_status, old_edit, document_id=str(document.id))

        posted = None
        reversal = None
        if outcome.effect is LedgerEffect.POST:
            posted = self._posting.post(document, actor_id, options)
        elif outcome.effect is LedgerEffect.REVERSE:
            reversal = self._posting.reverse(document, actor_id)

        now = self._clock.now()
        document.status = outcome.status.value
        document.edit_request_status = outcome.edit_request_status.value
        document.updated_by_id = actor_id
        if action is LifecycleAction.APPROVE:
            document.approved_at = now
            document.approved_by_id = actor_id
        elif action is LifecycleAction.CANCEL:
            document.cancelled_at = now
            document.cancelled_by_id = actor_id
        self._session.flush()

        logger.info(
            "document_transition",
            extra={
                "document_id": str(document.id),
                "doc_number": document.doc_number,
                "action": action.value,
                "from_status": old_status.value,
                "to_status": outcome.status.value,
                "from_edit_status": old_edit.value,
                "to_edit_status": outcome.edit_request_status.value,
                "ledger_effect": outcome.effect.value,
            },
        )
        return LifecycleResult(
            document_id=document.id,
            action=action,
            status=outcome.status,
            edit_request_status=outcome.edit_request_status,
            posted=posted,
            reversal=reversal,
        )
