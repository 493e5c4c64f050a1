"""
Configuration schema (``ledger_config.schema``).

Frozen dataclasses for one ledger configuration set.  Instances are built
by ``ledger_config.loader`` and handed out by ``get_active_config()``;
nothing mutates them afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ledger_engines.batch_allocation import AllocationPolicy
from ledger_kernel.domain.movement import MovementType
from ledger_kernel.domain.values import POSTING_TOLERANCE


@dataclass(frozen=True)
class AccountCodes:
    """System account codes posted by the document orchestrator."""

    receivable: str
    payable: str
    input_tax: str
    output_tax: str
    sales_discount: str
    purchase_discount: str
    reverse_charge_input: str
    reverse_charge_output: str

    def as_dict(self) -> dict[str, str]:
        return {
            "receivable": self.receivable,
            "payable": self.payable,
            "input_tax": self.input_tax,
            "output_tax": self.output_tax,
            "sales_discount": self.sales_discount,
            "purchase_discount": self.purchase_discount,
            "reverse_charge_input": self.reverse_charge_input,
            "reverse_charge_output": self.reverse_charge_output,
        }


@dataclass(frozen=True)
class InventorySettings:
    movement_enabled: bool = True
    allocation_policy: AllocationPolicy = AllocationPolicy.FIFO
    # IN_TRANSIT records bill receipts without touching on-hand stock
    bill_receipt_movement: MovementType = MovementType.REGULAR_IN


@dataclass(frozen=True)
class JournalNumbering:
    prefix: str = "GLJ"
    width: int = 4


@dataclass(frozen=True)
class LedgerSettings:
    """One named configuration set."""

    config_id: str
    version: int
    base_currency: str
    default_company_id: str
    accounts: AccountCodes
    tolerance: Decimal = POSTING_TOLERANCE
    numbering: JournalNumbering = field(default_factory=JournalNumbering)
    inventory: InventorySettings = field(default_factory=InventorySettings)
    checksum: str = ""
