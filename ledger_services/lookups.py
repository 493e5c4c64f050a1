"""
ledger_services.lookups -- master-data lookups the posting core consumes.

The core does not own products or exchange rates.  It asks for them
through two small protocols; the mapping-backed implementations here are
what tests and simple deployments use.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, runtime_checkable

from ledger_kernel.domain.values import to_decimal


@dataclass(frozen=True)
class ProductAccounts:
    """Account codes configured for one product.

    ``revenue`` is credited on invoices, ``expense`` debited for
    non-stock bill lines, ``inventory`` debited on receipt and credited on
    issue, ``cost_of_sales`` debited for COGS.
    """

    revenue: str | None = None
    expense: str | None = None
    inventory: str | None = None
    cost_of_sales: str | None = None


@runtime_checkable
class ProductAccountLookup(Protocol):
    def accounts_for(self, product_id: str) -> ProductAccounts | None:
        """Configured accounts for ``product_id``, or None if unknown."""
        ...


@runtime_checkable
class CurrencyRateLookup(Protocol):
    def rate_for(self, currency_code: str) -> Decimal | None:
        """Units of base currency per unit of ``currency_code``, or None."""
        ...


class MappingProductAccountLookup:
    """ProductAccountLookup over a dict, with an optional fallback."""

    def __init__(
        self,
        accounts: Mapping[str, ProductAccounts],
        default: ProductAccounts | None = None,
    ):
        self._accounts = dict(accounts)
        self._default = default

    def accounts_for(self, product_id: str) -> ProductAccounts | None:
        return self._accounts.get(product_id, self._default)


class StaticRateTable:
    """CurrencyRateLookup over fixed rates; the base currency is always 1."""

    def __init__(self, base_currency: str, rates: Mapping[str, Decimal | str] | None = None):
        self._base = base_currency.upper()
        self._rates = {code.upper(): to_decimal(rate) for code, rate in (rates or {}).items()}

    def rate_for(self, currency_code: str) -> Decimal | None:
        code = currency_code.upper()
        if code == self._base:
            return Decimal("1")
        return self._rates.get(code)
