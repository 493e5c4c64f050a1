"""
Document workflow (``ledger_kernel.domain.document_workflow``).

Responsibility
--------------
Pure state machine for bills and invoices: document status, the
edit-request sub-state, and which ledger effect (post / reverse) a
transition carries.  The lifecycle service asks ``plan_transition`` what
to do and then performs the effect and the status change in one unit of
work.

Architecture position
---------------------
**Kernel domain layer** -- frozen value objects, ZERO I/O.

Invariants enforced
-------------------
* Every transition references states in ``DOCUMENT_WORKFLOW.states``.
* ``CANCELLED`` is terminal.
* Only ``approve`` posts; only ``approve_edit_request`` and ``cancel``
  reverse.  Approval always clears the edit-request sub-state.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ledger_kernel.exceptions import InvalidStateTransitionError


class DocumentStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED_FOR_APPROVAL = "SUBMITTED_FOR_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class EditRequestStatus(str, Enum):
    NONE = "NONE"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class LifecycleAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_EDIT = "request_edit"
    APPROVE_EDIT_REQUEST = "approve_edit_request"
    REJECT_EDIT_REQUEST = "reject_edit_request"
    CANCEL = "cancel"


class LedgerEffect(str, Enum):
    NONE = "none"
    POST = "post"
    REVERSE = "reverse"


@dataclass(frozen=True)
class Transition:
    """A valid lifecycle transition.

    ``to_state`` / ``edit_to`` of None leave that part of the state as is.
    ``edit_from`` of None accepts any edit-request status.
    """
    action: LifecycleAction
    from_states: tuple[DocumentStatus, ...]
    to_state: DocumentStatus | None
    edit_from: tuple[EditRequestStatus, ...] | None = None
    edit_to: EditRequestStatus | None = None
    effect: LedgerEffect = LedgerEffect.NONE


@dataclass(frozen=True)
class Workflow:
    name: str
    initial_state: DocumentStatus
    states: tuple[DocumentStatus, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[DocumentStatus, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"initial_state {self.initial_state} not in states")
        for t in self.transitions:
            for s in t.from_states + ((t.to_state,) if t.to_state else ()):
                if s not in self.states:
                    raise ValueError(f"transition {t.action} references unknown state {s}")
            if set(t.from_states) & set(self.terminal_states):
                raise ValueError(f"transition {t.action} leaves a terminal state")


@dataclass(frozen=True)
class TransitionOutcome:
    status: DocumentStatus
    edit_request_status: EditRequestStatus
    effect: LedgerEffect


_S = DocumentStatus
_E = EditRequestStatus

DOCUMENT_WORKFLOW = Workflow(
    name="source_document",
    initial_state=_S.DRAFT,
    states=tuple(DocumentStatus),
    terminal_states=(_S.CANCELLED,),
    transitions=(
        Transition(LifecycleAction.SUBMIT, (_S.DRAFT, _S.REJECTED), _S.SUBMITTED_FOR_APPROVAL),
        Transition(
            LifecycleAction.APPROVE,
            (_S.DRAFT, _S.SUBMITTED_FOR_APPROVAL),
            _S.APPROVED,
            edit_to=_E.NONE,
            effect=LedgerEffect.POST,
        ),
        Transition(LifecycleAction.REJECT, (_S.SUBMITTED_FOR_APPROVAL,), _S.REJECTED),
        Transition(
            LifecycleAction.REQUEST_EDIT,
            (_S.APPROVED,),
            None,
            edit_from=(_E.NONE, _E.REJECTED),
            edit_to=_E.PENDING,
        ),
        Transition(
            LifecycleAction.APPROVE_EDIT_REQUEST,
            (_S.APPROVED,),
            _S.DRAFT,
            edit_from=(_E.PENDING,),
            edit_to=_E.APPROVED,
            effect=LedgerEffect.REVERSE,
        ),
        Transition(
            LifecycleAction.REJECT_EDIT_REQUEST,
            (_S.APPROVED,),
            None,
            edit_from=(_E.PENDING,),
            edit_to=_E.REJECTED,
        ),
        Transition(
            LifecycleAction.CANCEL,
            (_S.APPROVED,),
            _S.CANCELLED,
            effect=LedgerEffect.REVERSE,
        ),
    ),
)


def plan_transition(
    action: LifecycleAction | str,
    status: DocumentStatus | str,
    edit_request_status: EditRequestStatus | str,
    document_id: str | None = None,
    workflow: Workflow = DOCUMENT_WORKFLOW,
) -> TransitionOutcome:
    """Resolve the next state for ``action``.

    Raises:
        InvalidStateTransitionError: no transition matches the current state.
    """
    action = LifecycleAction(action)
    status = DocumentStatus(status)
    edit_request_status = EditRequestStatus(edit_request_status)

    for t in workflow.transitions:
        if t.action is not action or status not in t.from_states:
            continue
        if t.edit_from is not None and edit_request_status not in t.edit_from:
            continue
        return TransitionOutcome(
            status=t.to_state if t.to_state is not None else status,
            edit_request_status=(
                t.edit_to if t.edit_to is not None else edit_request_status
            ),
            effect=t.effect,
        )

    raise InvalidStateTransitionError(
        document_id=document_id,
        action=action.value,
        status=status.value,
        edit_request_status=edit_request_status.value,
    )
