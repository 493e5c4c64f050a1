"""
Module: ledger_engines
Responsibility:
    Pure planning engines of the ledger core.  Engines take plain inputs,
    return frozen results, and never touch the session or the clock.

Architecture position:
    Engines -- may import ledger_kernel.domain and ledger_kernel.exceptions
    only.  MUST NOT import ledger_services.

Audit relevance:
    Every engine call emits LEDGER_ENGINE_TRACE (see ledger_engines.tracer).
"""

from ledger_engines.batch_allocation import (
    AllocationPlan,
    AllocationPolicy,
    PlannedDraw,
    order_candidates,
    plan_allocation,
)
from ledger_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "AllocationPlan",
    "AllocationPolicy",
    "PlannedDraw",
    "compute_input_fingerprint",
    "order_candidates",
    "plan_allocation",
    "traced_engine",
]
