"""
ledger_services -- orchestration above the kernel.

``LedgerPostingCore`` is the entry point; the other services are exposed
for callers that compose their own units of work.
"""

from ledger_services.account_resolver import AccountResolver, PostingAccounts
from ledger_services.batch_allocator import BatchAllocator
from ledger_services.document_lifecycle import DocumentLifecycleService, LifecycleResult
from ledger_services.document_posting import DocumentPostingService, PostingOptions
from ledger_services.lookups import (
    CurrencyRateLookup,
    MappingProductAccountLookup,
    ProductAccountLookup,
    ProductAccounts,
    StaticRateTable,
)
from ledger_services.posting_core import LedgerPostingCore

__all__ = [
    "AccountResolver",
    "BatchAllocator",
    "CurrencyRateLookup",
    "DocumentLifecycleService",
    "DocumentPostingService",
    "LedgerPostingCore",
    "LifecycleResult",
    "MappingProductAccountLookup",
    "PostingAccounts",
    "PostingOptions",
    "ProductAccountLookup",
    "ProductAccounts",
    "StaticRateTable",
]
