"""
ledger_services.batch_allocator -- reads lot candidates and plans draws.

Thin imperative shell around ``ledger_engines.batch_allocation``: the
selector supplies candidates, the pure engine orders and splits them.
Nothing is written; the plan is executed by StockLedger.withdraw, which
re-checks quantities under a row lock.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy.orm import Session

from ledger_engines.batch_allocation import AllocationPlan, AllocationPolicy, plan_allocation
from ledger_kernel.logging_config import get_logger
from ledger_kernel.selectors.stock_selector import StockSelector

logger = get_logger("services.batch_allocator")


class BatchAllocator:
    def __init__(self, session: Session, default_policy: AllocationPolicy = AllocationPolicy.FIFO):
        self._selector = StockSelector(session)
        self._default_policy = default_policy

    def allocate(
        self,
        product_id: str,
        warehouse_id: str,
        quantity: Decimal,
        policy: AllocationPolicy | None = None,
    ) -> AllocationPlan:
        """Plan draws for ``quantity``; raises InsufficientStockError on shortfall."""
        policy = AllocationPolicy(policy) if policy is not None else self._default_policy
        plan = plan_allocation(
            candidates=self._selector.available_lots(product_id, warehouse_id),
            quantity=quantity,
            policy=policy,
            product_id=product_id,
            warehouse_id=warehouse_id,
        )
        logger.debug(
            "batches_allocated",
            extra={
                "product_id": product_id,
                "warehouse_id": warehouse_id,
                "policy": policy.value,
                "quantity": plan.total_quantity,
                "draw_count": len(plan.draws),
            },
        )
        return plan
