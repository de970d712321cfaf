"""
In-Memory Storage Implementation

Keeps documents as serialized dicts, exactly as they would travel to the
document store, so the engine is exercised against the same round-trip
it sees in production.

Used by the test suite and for running the engine offline. Supports
failure injection so batch atomicity can be verified.
"""

import copy
from typing import Any, Callable, Optional
from uuid import UUID

from budget_ledger.models.audit import AuditEvent
from budget_ledger.models.ledger import MonthlyLedger, RecurringRule
from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    BatchOpType,
    ConflictError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
    WriteBatch,
)


BatchPredicate = Callable[[WriteBatch], bool]


class InMemoryLedgerStorage(LedgerStorageInterface):
    """
    Dict-backed ledger store with all-or-nothing batch commits.

    Batches are applied to a copy of the state and swapped in only if every
    operation succeeded.
    """

    def __init__(self):
        self._ledgers: dict[str, dict[str, Any]] = {}
        self._rules: dict[str, dict[str, Any]] = {}
        self._failures: list[tuple[BatchPredicate, StorageError]] = []
        self.committed_batches: list[WriteBatch] = []

    # -- failure injection ---------------------------------------------------

    def fail_next_commit(
        self,
        error: Optional[StorageError] = None,
        when: Optional[BatchPredicate] = None,
    ) -> None:
        """
        Reject the next commit matching `when` (any commit if None).

        Each registered failure fires once.
        """
        self._failures.append((
            when or (lambda batch: True),
            error or StorageError("Injected batch failure", retryable=True),
        ))

    def _pop_failure(self, batch: WriteBatch) -> Optional[StorageError]:
        for index, (predicate, error) in enumerate(self._failures):
            if predicate(batch):
                del self._failures[index]
                return error
        return None

    # -- ledgers -------------------------------------------------------------

    async def get_ledger(self, key: str) -> Optional[MonthlyLedger]:
        data = self._ledgers.get(key)
        return MonthlyLedger.from_document(copy.deepcopy(data)) if data else None

    async def set_ledger(self, ledger: MonthlyLedger) -> bool:
        self._ledgers[ledger.key] = ledger.to_document()
        return True

    async def update_ledger_fields(self, key: str, fields: dict[str, Any]) -> bool:
        if key not in self._ledgers:
            raise NotFoundError(f"Ledger not found: {key}")
        updated = {**self._ledgers[key], **copy.deepcopy(fields)}
        # Reject updates that would not load back
        MonthlyLedger.from_document(copy.deepcopy(updated))
        self._ledgers[key] = updated
        return True

    async def delete_ledger(self, key: str) -> bool:
        return self._ledgers.pop(key, None) is not None

    async def list_ledgers(self) -> list[MonthlyLedger]:
        return [
            MonthlyLedger.from_document(copy.deepcopy(self._ledgers[key]))
            for key in sorted(self._ledgers, reverse=True)
        ]

    # -- recurring rules -----------------------------------------------------

    async def get_rule(self, rule_id: str) -> Optional[RecurringRule]:
        data = self._rules.get(rule_id)
        return RecurringRule.from_document(copy.deepcopy(data)) if data else None

    async def save_rule(self, rule: RecurringRule) -> bool:
        self._rules[rule.id] = rule.to_document()
        return True

    async def delete_rule(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None

    async def list_rules(self) -> list[RecurringRule]:
        return [
            RecurringRule.from_document(copy.deepcopy(data))
            for data in self._rules.values()
        ]

    # -- batches -------------------------------------------------------------

    async def commit(self, batch: WriteBatch) -> bool:
        error = self._pop_failure(batch)
        if error is not None:
            raise error

        ledgers = copy.deepcopy(self._ledgers)
        rules = copy.deepcopy(self._rules)

        for operation in batch.operations:
            if operation.op == BatchOpType.CREATE_LEDGER:
                if operation.key in ledgers:
                    raise ConflictError(f"Ledger already exists: {operation.key}")
                ledgers[operation.key] = operation.ledger.to_document()

            elif operation.op == BatchOpType.APPEND_EXPENSES:
                document = self._require(ledgers, operation.key)
                _array_union(
                    document.setdefault("expenses", []),
                    [e.model_dump(mode="json") for e in operation.expenses],
                )

            elif operation.op == BatchOpType.APPEND_INCOMES:
                document = self._require(ledgers, operation.key)
                _array_union(
                    document.setdefault("income_transactions", []),
                    [t.model_dump(mode="json") for t in operation.incomes],
                )

            elif operation.op == BatchOpType.REMOVE_EXPENSES:
                document = self._require(ledgers, operation.key)
                removed = [e.model_dump(mode="json") for e in operation.expenses]
                document["expenses"] = [
                    item for item in document.get("expenses", [])
                    if item not in removed
                ]

            elif operation.op == BatchOpType.REMOVE_INCOMES:
                document = self._require(ledgers, operation.key)
                removed = [t.model_dump(mode="json") for t in operation.incomes]
                document["income_transactions"] = [
                    item for item in document.get("income_transactions", [])
                    if item not in removed
                ]

            elif operation.op == BatchOpType.UPDATE_RULE_CURSOR:
                rule = rules.get(operation.key)
                if rule is None:
                    raise NotFoundError(f"Recurring rule not found: {operation.key}")
                rule["next_execution_date"] = operation.next_execution_date.isoformat()

        self._ledgers = ledgers
        self._rules = rules
        self.committed_batches.append(batch)
        return True

    @staticmethod
    def _require(ledgers: dict[str, dict[str, Any]], key: str) -> dict[str, Any]:
        try:
            return ledgers[key]
        except KeyError:
            raise NotFoundError(f"Ledger not found: {key}")


def _array_union(target: list, items: list) -> None:
    """Append items not already present, like the store's array-union."""
    for item in items:
        if item not in target:
            target.append(item)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        matching = [e for e in self.events if e.correlation_id == correlation_id]
        return sorted(matching, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
