"""Configuration package."""

from budget_ledger.config.settings import (
    FirestoreSettings,
    GeminiSettings,
    LedgerSettings,
    RatesSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "FirestoreSettings",
    "GeminiSettings",
    "LedgerSettings",
    "RatesSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
