"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the engine against Firestore in production
2. Use in-memory storage for testing
3. Keep the materialization logic decoupled from the store's SDK

The store is assumed to offer get / set / per-document field update and an
atomic multi-document batch. Nothing else: no joins, no triggers, no
cross-document transactions. Every logical engine operation is therefore
expressed as ONE WriteBatch that the store accepts or rejects as a whole.
"""

from abc import ABC, abstractmethod
from datetime import date
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from budget_ledger.models.audit import AuditEvent
from budget_ledger.models.ledger import (
    ExpenseEntry,
    IncomeEntry,
    MonthlyLedger,
    RecurringRule,
)


class BatchOpType(str, Enum):
    """Mutations a WriteBatch can carry."""
    CREATE_LEDGER = "create_ledger"        # fails if the ledger already exists
    APPEND_EXPENSES = "append_expenses"    # additive array-union
    APPEND_INCOMES = "append_incomes"      # additive array-union
    REMOVE_EXPENSES = "remove_expenses"    # array-remove of exact entries
    REMOVE_INCOMES = "remove_incomes"
    UPDATE_RULE_CURSOR = "update_rule_cursor"


class BatchOperation(BaseModel):
    """One per-document mutation inside a batch."""

    op: BatchOpType
    key: str = Field(..., description="Ledger key or rule id")
    ledger: Optional[MonthlyLedger] = None
    expenses: list[ExpenseEntry] = Field(default_factory=list)
    incomes: list[IncomeEntry] = Field(default_factory=list)
    next_execution_date: Optional[date] = None


# Firestore rejects batched writes with more operations than this
MAX_BATCH_WRITES = 500


class WriteBatch:
    """
    Collects per-document mutations to be committed atomically.

    A ledger created in this batch absorbs later appends to the same key,
    so a lazily created month is written once, already seeded.
    """

    def __init__(self):
        self._operations: list[BatchOperation] = []
        self._created: dict[str, MonthlyLedger] = {}

    def create_ledger(self, ledger: MonthlyLedger) -> MonthlyLedger:
        if ledger.key in self._created:
            raise ValueError(f"Ledger {ledger.key} already created in this batch")
        self._created[ledger.key] = ledger
        self._operations.append(
            BatchOperation(op=BatchOpType.CREATE_LEDGER, key=ledger.key, ledger=ledger)
        )
        return ledger

    def append_expense(self, key: str, entry: ExpenseEntry) -> None:
        if key in self._created:
            self._created[key].expenses.append(entry)
            return
        self._append(BatchOpType.APPEND_EXPENSES, key, expenses=[entry])

    def append_income(self, key: str, entry: IncomeEntry) -> None:
        if key in self._created:
            self._created[key].income_transactions.append(entry)
            return
        self._append(BatchOpType.APPEND_INCOMES, key, incomes=[entry])

    def remove_expenses(self, key: str, entries: list[ExpenseEntry]) -> None:
        if entries:
            self._append(BatchOpType.REMOVE_EXPENSES, key, expenses=list(entries))

    def remove_incomes(self, key: str, entries: list[IncomeEntry]) -> None:
        if entries:
            self._append(BatchOpType.REMOVE_INCOMES, key, incomes=list(entries))

    def update_rule_cursor(self, rule_id: str, next_execution_date: date) -> None:
        self._operations.append(
            BatchOperation(
                op=BatchOpType.UPDATE_RULE_CURSOR,
                key=rule_id,
                next_execution_date=next_execution_date,
            )
        )

    def _append(self, op: BatchOpType, key: str, **payload: Any) -> None:
        # Consecutive mutations of the same kind on one document are merged
        last = self._operations[-1] if self._operations else None
        if last is not None and last.op == op and last.key == key:
            last.expenses.extend(payload.get("expenses", []))
            last.incomes.extend(payload.get("incomes", []))
            return
        self._operations.append(BatchOperation(op=op, key=key, **payload))

    @property
    def operations(self) -> list[BatchOperation]:
        return list(self._operations)

    @property
    def created_keys(self) -> list[str]:
        return list(self._created)

    @property
    def ledger_keys(self) -> list[str]:
        seen: dict[str, None] = {}
        for operation in self._operations:
            if operation.op != BatchOpType.UPDATE_RULE_CURSOR:
                seen.setdefault(operation.key, None)
        return list(seen)

    def __len__(self) -> int:
        return len(self._operations)


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger and recurring-rule storage.

    Any storage implementation (Firestore, in-memory, etc.)
    must implement these methods.
    """

    # -- ledgers -------------------------------------------------------------

    @abstractmethod
    async def get_ledger(self, key: str) -> Optional[MonthlyLedger]:
        """
        Retrieve a ledger by its "YYYY-MM" key.

        Returns:
            The ledger if found, None otherwise
        """
        pass

    @abstractmethod
    async def set_ledger(self, ledger: MonthlyLedger) -> bool:
        """Create or replace a ledger document."""
        pass

    @abstractmethod
    async def update_ledger_fields(self, key: str, fields: dict[str, Any]) -> bool:
        """
        Atomically update top-level fields of one ledger.

        Args:
            key: Ledger key
            fields: Field name -> already-serialized value

        Raises:
            NotFoundError: If the ledger doesn't exist
        """
        pass

    @abstractmethod
    async def delete_ledger(self, key: str) -> bool:
        """Delete a ledger. Only ever called on explicit user request."""
        pass

    @abstractmethod
    async def list_ledgers(self) -> list[MonthlyLedger]:
        """List every ledger of the user, newest key first."""
        pass

    # -- recurring rules -----------------------------------------------------

    @abstractmethod
    async def get_rule(self, rule_id: str) -> Optional[RecurringRule]:
        pass

    @abstractmethod
    async def save_rule(self, rule: RecurringRule) -> bool:
        pass

    @abstractmethod
    async def delete_rule(self, rule_id: str) -> bool:
        pass

    @abstractmethod
    async def list_rules(self) -> list[RecurringRule]:
        pass

    # -- batches -------------------------------------------------------------

    @abstractmethod
    async def commit(self, batch: WriteBatch) -> bool:
        """
        Apply every operation of the batch atomically.

        Raises:
            ConflictError: A CREATE_LEDGER target already exists
            NotFoundError: An append/remove/cursor target is missing
            StorageError: The store rejected the batch
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event to the log."""
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a correlation ID, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""

    default_retryable = False

    def __init__(self, message: str, retryable: Optional[bool] = None):
        super().__init__(message)
        self.retryable = self.default_retryable if retryable is None else retryable


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConflictError(StorageError):
    """A create-if-absent write found the document already present."""

    default_retryable = True


class ConnectionError(StorageError):
    """Could not reach the storage backend."""

    default_retryable = True
