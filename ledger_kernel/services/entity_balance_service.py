"""
EntityBalanceService -- cached running balance per trading partner.

Responsibility:
    Keeps EntityBalance rows equal to sum(debit - credit) of live journal
    lines per (company, entity type, entity id).  Updated incrementally by
    JournalEngine on every post and tombstone; rebuildable from the journal
    for recovery.

Architecture position:
    Kernel > Services.  Reads aggregates through JournalSelector.

Invariants enforced:
    - Incremental maintenance and rebuild() agree: both quantize to money
      scale and both ignore groups whose magnitude is at or below
      BALANCE_EPSILON, so balances() returns identical maps.
    - Balance rows are locked FOR UPDATE before being adjusted.

Failure modes:
    - IntegrityError on a concurrent first insert of the same key is
      absorbed by a savepoint and the row is re-read under lock.
"""

from collections import defaultdict
from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import EntityDelta
from ledger_kernel.domain.values import (
    BALANCE_EPSILON,
    ZERO,
    EntityType,
    quantize_money,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.entity_balance import EntityBalance
from ledger_kernel.models.journal import JournalLine
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_kernel.services.base import BaseService

logger = get_logger("services.entity_balance")

BalanceKey = tuple[str, str]


class EntityBalanceService(BaseService):
    """
    Incremental and full-rebuild maintenance of entity balances.

    Non-goals:
        - Does NOT validate entity types; JournalEngine rejects bad ones
          before lines reach this service.
    """

    def __init__(
        self,
        session: Session,
        default_company_id: str = "1",
        epsilon: Decimal = BALANCE_EPSILON,
    ):
        super().__init__(session)
        self._default_company_id = default_company_id
        self._epsilon = epsilon

    def _company(self, company_id: str | None) -> str:
        return company_id if company_id is not None else self._default_company_id

    def apply_lines(
        self,
        company_id: str,
        lines: Iterable[JournalLine],
        sign: int = 1,
    ) -> tuple[EntityDelta, ...]:
        """Group entity-bearing lines and add each group's net to its balance.

        ``sign=-1`` removes a journal's contribution (used when tombstoning).
        """
        grouped: dict[BalanceKey, Decimal] = defaultdict(lambda: ZERO)
        for line in lines:
            if line.entity_type is None or line.entity_id is None:
                continue
            grouped[(line.entity_type, line.entity_id)] += line.debit - line.credit

        deltas: list[EntityDelta] = []
        for (entity_type, entity_id), net in sorted(grouped.items()):
            delta = net * sign
            if abs(delta) <= self._epsilon:
                continue
            self.apply_delta(company_id, entity_type, entity_id, delta)
            deltas.append(
                EntityDelta(
                    company_id=company_id,
                    entity_type=EntityType(entity_type),
                    entity_id=entity_id,
                    delta=delta,
                )
            )
        return tuple(deltas)

    def apply_delta(
        self,
        company_id: str,
        entity_type: str,
        entity_id: str,
        delta: Decimal,
    ) -> Decimal:
        """Upsert the balance row at zero and add ``delta``; returns the new balance."""
        row = self._locked_row(company_id, entity_type, entity_id)
        if row is None:
            savepoint = self.session.begin_nested()
            try:
                row = EntityBalance(
                    company_id=company_id,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    balance=ZERO,
                )
                self.session.add(row)
                self.session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                row = self._locked_row(company_id, entity_type, entity_id)
                if row is None:
                    raise

        old = row.balance
        row.balance = quantize_money(old + delta)
        self.session.flush()
        logger.debug(
            "entity_balance_updated",
            extra={
                "company_id": company_id,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "delta": delta,
                "old_balance": old,
                "new_balance": row.balance,
            },
        )
        return row.balance

    def get_balance(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        company_id: str | None = None,
    ) -> Decimal:
        """Signed balance; zero for an entity with no postings."""
        row = self.session.execute(
            select(EntityBalance).where(
                EntityBalance.company_id == self._company(company_id),
                EntityBalance.entity_type == EntityType(entity_type).value,
                EntityBalance.entity_id == entity_id,
            )
        ).scalar_one_or_none()
        return row.balance if row is not None else ZERO

    def balances(self, company_id: str | None = None) -> dict[BalanceKey, Decimal]:
        """Non-zero balances of a company keyed by (entity_type, entity_id)."""
        rows = self.session.execute(
            select(EntityBalance).where(EntityBalance.company_id == self._company(company_id))
        ).scalars()
        return {
            (row.entity_type, row.entity_id): quantize_money(row.balance)
            for row in rows
            if abs(row.balance) > self._epsilon
        }

    def rebuild(self, company_id: str | None = None) -> int:
        """Recompute a company's balances from live journal lines.

        Returns:
            Number of balance rows written.
        """
        company = self._company(company_id)
        self.session.execute(
            delete(EntityBalance).where(EntityBalance.company_id == company)
        )

        written = 0
        for entity_type, entity_id, total in JournalSelector(self.session).live_entity_sums(company):
            if abs(total) <= self._epsilon:
                continue
            self.session.add(
                EntityBalance(
                    company_id=company,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    balance=quantize_money(total),
                )
            )
            written += 1
        self.session.flush()

        logger.info(
            "entity_balances_rebuilt",
            extra={"company_id": company, "rows_written": written},
        )
        return written

    def _locked_row(self, company_id: str, entity_type: str, entity_id: str) -> EntityBalance | None:
        return self.session.execute(
            select(EntityBalance)
            .where(
                EntityBalance.company_id == company_id,
                EntityBalance.entity_type == entity_type,
                EntityBalance.entity_id == entity_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
