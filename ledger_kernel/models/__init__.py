"""ORM models for the ledger core."""

from ledger_kernel.models.account import Account, AccountTag, AccountType
from ledger_kernel.models.document import (
    DocumentLine,
    DocumentType,
    LineAllocation,
    SourceDocument,
)
from ledger_kernel.models.entity_balance import EntityBalance
from ledger_kernel.models.inventory import (
    InventoryLot,
    InventoryTransaction,
    StockBatch,
)
from ledger_kernel.models.journal import JournalHeader, JournalLine
from ledger_kernel.models.posting_log import PostingLogEntry

__all__ = [
    "Account",
    "AccountTag",
    "AccountType",
    "DocumentLine",
    "DocumentType",
    "EntityBalance",
    "InventoryLot",
    "InventoryTransaction",
    "JournalHeader",
    "JournalLine",
    "LineAllocation",
    "PostingLogEntry",
    "SourceDocument",
    "StockBatch",
]
