"""
ledger_services.account_resolver -- account codes to typed AccountRefs.

Responsibility:
    Loads the active chart of accounts once and answers code / id lookups
    with AccountRef values, so posting code never passes raw strings to
    the journal engine.  System accounts named in configuration are
    resolved up front into PostingAccounts.

Failure modes:
    - AccountNotFoundError from ref_for_code / ref_for_id.
    - MissingAccountError from PostingAccounts.require when a configured
      system account is absent from the chart.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_config.schema import AccountCodes
from ledger_kernel.domain.dtos import AccountRef
from ledger_kernel.exceptions import AccountNotFoundError, MissingAccountError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account

logger = get_logger("services.account_resolver")


@dataclass(frozen=True)
class PostingAccounts:
    """System accounts; a field is None when its code is not in the chart."""

    receivable: AccountRef | None
    payable: AccountRef | None
    input_tax: AccountRef | None
    output_tax: AccountRef | None
    sales_discount: AccountRef | None
    purchase_discount: AccountRef | None
    reverse_charge_input: AccountRef | None
    reverse_charge_output: AccountRef | None

    def require(self, role: str) -> AccountRef:
        ref = getattr(self, role)
        if ref is None:
            raise MissingAccountError(role)
        return ref


class AccountResolver:
    def __init__(self, session: Session, codes: AccountCodes):
        accounts = session.execute(
            select(Account).where(Account.is_active.is_(True))
        ).scalars().all()
        self._by_code = {a.code: self._ref(a) for a in accounts}
        self._by_id = {ref.id: ref for ref in self._by_code.values()}

        system = codes.as_dict()
        self.posting_accounts = PostingAccounts(
            **{f.name: self._by_code.get(system[f.name]) for f in fields(PostingAccounts)}
        )
        missing = sorted(role for role, code in system.items() if code not in self._by_code)
        if missing:
            logger.warning("system_accounts_missing", extra={"roles": missing})

    @staticmethod
    def _ref(account: Account) -> AccountRef:
        return AccountRef(id=account.id, code=account.code, entity_type=account.entity_type)

    def ref_for_code(self, code: str) -> AccountRef:
        ref = self._by_code.get(code)
        if ref is None:
            raise AccountNotFoundError(code)
        return ref

    def ref_for_id(self, account_id: UUID) -> AccountRef:
        ref = self._by_id.get(account_id)
        if ref is None:
            raise AccountNotFoundError(str(account_id))
        return ref

    def find_code(self, code: str | None) -> AccountRef | None:
        if code is None:
            return None
        return self._by_code.get(code)
