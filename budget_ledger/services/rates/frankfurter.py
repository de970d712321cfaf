"""
Exchange Rate Provider

Fetches a rate table (currency code -> multiplier relative to a base code)
from the Frankfurter API.

DESIGN DECISION: A fetch is a single attempt. If it fails, the caller
shows amounts unconverted and tells the user; we do not retry behind
their back. Successful tables are cached per base code for the session.
"""

from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional

import httpx

from budget_ledger.config import RatesSettings, get_settings


RateTable = dict[str, Decimal]


class RateProviderUnavailable(RuntimeError):
    """Raised when a rate table cannot be fetched."""


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


class FrankfurterRateProvider:
    """
    Rate provider backed by api.frankfurter.app.

    The response for a base code does not list the base itself, so it is
    added with rate 1.
    """

    def __init__(
        self,
        settings: Optional[RatesSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings or get_settings().rates
        self._http_client = http_client
        self._cache: dict[str, RateTable] = {}

    async def fetch_rates(self, base_code: str) -> RateTable:
        """Return the rate table for a base code, from cache when possible."""
        base = normalize_currency(base_code)
        cached = self._cache.get(base)
        if cached is not None:
            return dict(cached)

        rates = await self._fetch(base)
        self._cache[base] = rates
        return dict(rates)

    def invalidate(self, base_code: Optional[str] = None) -> None:
        """Drop cached tables (all of them, or one base) to force a refresh."""
        if base_code is None:
            self._cache.clear()
        else:
            self._cache.pop(normalize_currency(base_code), None)

    async def _fetch(self, base: str) -> RateTable:
        url = f"{self._settings.base_url.rstrip('/')}/latest"
        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, params={"from": base})
            else:
                async with httpx.AsyncClient(timeout=self._settings.timeout_seconds) as client:
                    response = await client.get(url, params={"from": base})
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RateProviderUnavailable(f"Exchange rates unavailable for {base}: {e}") from e

        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict):
            raise RateProviderUnavailable("Rate response missing 'rates'")

        try:
            table = {normalize_currency(code): Decimal(str(value)) for code, value in rates.items()}
        except (InvalidOperation, ValueError) as e:
            raise RateProviderUnavailable(f"Malformed rate response: {e}") from e
        table[base] = Decimal("1")
        return table


class StaticRateProvider:
    """Deterministic, in-memory rate tables, for tests and offline use."""

    def __init__(self, tables: Mapping[str, Mapping[str, Decimal]]):
        self._tables = {
            normalize_currency(base): {normalize_currency(c): Decimal(str(r)) for c, r in table.items()}
            for base, table in tables.items()
        }

    async def fetch_rates(self, base_code: str) -> RateTable:
        base = normalize_currency(base_code)
        try:
            table = dict(self._tables[base])
        except KeyError:
            raise RateProviderUnavailable(f"No static rates for {base}")
        table.setdefault(base, Decimal("1"))
        return table

    def invalidate(self, base_code: Optional[str] = None) -> None:
        pass
