"""
Module: ledger_kernel.selectors.base
Responsibility: Base class for read-only selectors.
Architecture position: Kernel > Selectors.  May import db/ and models/.

Invariants enforced:
    - Selectors accept the caller's Session and never add, delete, flush
      or commit.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """Read-only query helper bound to the caller's session."""

    def __init__(self, session: Session):
        self.session = session
