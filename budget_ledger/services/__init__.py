"""Services package."""

from budget_ledger.services.rates import (
    FrankfurterRateProvider,
    RateProviderUnavailable,
    StaticRateProvider,
)
from budget_ledger.services.storage import (
    AuditStorageInterface,
    ConflictError,
    ConnectionError,
    FirestoreAuditStorage,
    FirestoreClient,
    FirestoreLedgerStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
    WriteBatch,
)

__all__ = [
    # Rate services
    "FrankfurterRateProvider",
    "RateProviderUnavailable",
    "StaticRateProvider",
    # Storage services
    "AuditStorageInterface",
    "ConflictError",
    "ConnectionError",
    "FirestoreAuditStorage",
    "FirestoreClient",
    "FirestoreLedgerStorage",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "LedgerStorageInterface",
    "NotFoundError",
    "StorageError",
    "WriteBatch",
]
