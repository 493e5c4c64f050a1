"""
BaseService -- common constructor for kernel services.

Every service receives the caller's Session and persists with
``session.flush()``.  Services never commit or roll back; the caller (the
LedgerPostingCore facade, ``session_scope()`` or a test harness) owns the
transaction, which is what lets allocate + withdraw + post + balance update
run as one unit of work.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Read-only queries live in ``ledger_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
