"""
Configuration loader (``ledger_config.loader``).

Responsibility
--------------
Reads one YAML set from disk and parses it into ``LedgerSettings``.  Only
``ledger_config.get_active_config()`` calls this at runtime.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing or invalid values  -> ``ValueError`` naming the key.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    AccountCodes,
    InventorySettings,
    JournalNumbering,
    LedgerSettings,
)
from ledger_engines.batch_allocation import AllocationPolicy
from ledger_kernel.domain.movement import MovementType

_ACCOUNT_KEYS = (
    "receivable",
    "payable",
    "input_tax",
    "output_tax",
    "sales_discount",
    "purchase_discount",
    "reverse_charge_input",
    "reverse_charge_output",
)

# Bill receipts may only be inflows.
_RECEIPT_MOVEMENTS = (MovementType.REGULAR_IN, MovementType.IN_TRANSIT)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML mapping; an empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _require(data: dict[str, Any], key: str, where: str) -> Any:
    if key not in data or data[key] in (None, ""):
        raise ValueError(f"{where}: missing required key '{key}'")
    return data[key]


def _parse_decimal(value: Any, where: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{where}: not a number: {value!r}") from exc
    if result < 0:
        raise ValueError(f"{where}: must not be negative: {value!r}")
    return result


def _parse_enum(enum_cls: type, value: Any, where: str):
    try:
        return enum_cls(str(value).upper())
    except ValueError as exc:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValueError(f"{where}: {value!r} is not one of {allowed}") from exc


def parse_accounts(data: dict[str, Any]) -> AccountCodes:
    return AccountCodes(**{key: str(_require(data, key, "accounts")) for key in _ACCOUNT_KEYS})


def parse_inventory(data: dict[str, Any]) -> InventorySettings:
    movement_enabled = data.get("movement_enabled", True)
    if not isinstance(movement_enabled, bool):
        raise ValueError(f"inventory.movement_enabled: expected a boolean, got {movement_enabled!r}")

    receipt = _parse_enum(
        MovementType, data.get("bill_receipt_movement", "REGULAR_IN"), "inventory.bill_receipt_movement"
    )
    if receipt not in _RECEIPT_MOVEMENTS:
        raise ValueError(f"inventory.bill_receipt_movement: {receipt.value} is not an inflow")

    return InventorySettings(
        movement_enabled=movement_enabled,
        allocation_policy=_parse_enum(
            AllocationPolicy, data.get("allocation_policy", "FIFO"), "inventory.allocation_policy"
        ),
        bill_receipt_movement=receipt,
    )


def parse_numbering(data: dict[str, Any]) -> JournalNumbering:
    prefix = str(data.get("prefix", "GLJ"))
    width = data.get("width", 4)
    if not prefix:
        raise ValueError("journal_numbering.prefix: must not be empty")
    if not isinstance(width, int) or isinstance(width, bool) or width < 1:
        raise ValueError(f"journal_numbering.width: expected a positive integer, got {width!r}")
    return JournalNumbering(prefix=prefix, width=width)


def parse_settings(data: dict[str, Any], config_id: str) -> LedgerSettings:
    """Build LedgerSettings from a parsed YAML mapping."""
    base_currency = str(_require(data, "base_currency", config_id))
    if len(base_currency) != 3 or not base_currency.isalpha():
        raise ValueError(f"{config_id}: base_currency must be a 3-letter code, got {base_currency!r}")

    version = data.get("version", 1)
    if not isinstance(version, int) or version < 1:
        raise ValueError(f"{config_id}: version must be a positive integer, got {version!r}")

    return LedgerSettings(
        config_id=str(data.get("config_id", config_id)),
        version=version,
        base_currency=base_currency.upper(),
        default_company_id=str(data.get("default_company_id", "1")),
        accounts=parse_accounts(_require(data, "accounts", config_id)),
        tolerance=_parse_decimal(data.get("tolerance", "0.01"), "tolerance"),
        numbering=parse_numbering(data.get("journal_numbering") or {}),
        inventory=parse_inventory(data.get("inventory") or {}),
        checksum=compute_checksum(data),
    )


def load_settings(path: Path) -> LedgerSettings:
    return parse_settings(load_yaml_file(path), path.stem)
