"""
Storage Services Package

Provides the abstract ledger store interface, a Firestore implementation
and an in-memory implementation for tests and offline use.
"""

from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    MAX_BATCH_WRITES,
    BatchOperation,
    BatchOpType,
    ConflictError,
    ConnectionError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
    WriteBatch,
)
from budget_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
)
from budget_ledger.services.storage.firestore import (
    FirestoreAuditStorage,
    FirestoreClient,
    FirestoreLedgerStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    "MAX_BATCH_WRITES",
    "BatchOperation",
    "BatchOpType",
    "WriteBatch",
    # Exceptions
    "ConflictError",
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    # Firestore implementation
    "FirestoreAuditStorage",
    "FirestoreClient",
    "FirestoreLedgerStorage",
]
