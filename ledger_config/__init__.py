"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains settings.
    Services receive the returned ``LedgerSettings`` by injection and never
    read YAML or environment variables themselves.

Architecture position:
    Configuration -- sits above ``ledger_kernel`` and ``ledger_engines``
    and below ``ledger_services``.  The kernel never imports this package.

Failure modes:
    - ``FileNotFoundError`` -- no set named ``config_id``.
    - ``ValueError`` -- a value failed validation.

Audit relevance:
    Every call emits ``LEDGER_CONFIG_TRACE`` with the set id, version and
    checksum, tying postings to the configuration that governed them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ledger_config.loader import load_settings
from ledger_config.schema import (
    AccountCodes,
    InventorySettings,
    JournalNumbering,
    LedgerSettings,
)

_logger = logging.getLogger("ledger_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    config_id: str = "default",
    config_dir: Path | None = None,
) -> LedgerSettings:
    """Load and validate the named configuration set.

    Args:
        config_id: File stem under the sets directory.
        config_dir: Override for the sets directory (tests).

    Raises:
        FileNotFoundError: If ``<config_dir>/<config_id>.yaml`` is absent.
        ValueError: If the set fails validation.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{config_id}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"No configuration set '{config_id}' in {sets_dir}")

    settings = load_settings(path)

    _logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "LEDGER_CONFIG_TRACE",
            "config_set_id": settings.config_id,
            "config_version": settings.version,
            "checksum": settings.checksum,
            "base_currency": settings.base_currency,
            "default_company_id": settings.default_company_id,
            "inventory_movement_enabled": settings.inventory.movement_enabled,
            "allocation_policy": settings.inventory.allocation_policy.value,
        },
    )
    return settings


__all__ = [
    "AccountCodes",
    "InventorySettings",
    "JournalNumbering",
    "LedgerSettings",
    "get_active_config",
]
