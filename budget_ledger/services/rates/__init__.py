"""Exchange rate services package."""

from budget_ledger.services.rates.frankfurter import (
    FrankfurterRateProvider,
    RateProviderUnavailable,
    RateTable,
    StaticRateProvider,
    normalize_currency,
)

__all__ = [
    "FrankfurterRateProvider",
    "RateProviderUnavailable",
    "RateTable",
    "StaticRateProvider",
    "normalize_currency",
]
