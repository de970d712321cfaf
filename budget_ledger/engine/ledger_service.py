"""
Ledger Service

Manual, user-initiated changes to monthly ledgers: month setup, single
entries, status changes, recurring rules and budget metadata.

Every change is one batch or one field update on one document. Entries are
added with the store's additive append, never by rewriting the list, so a
concurrent recurring tick or split cannot be overwritten by a manual edit.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID

from budget_ledger.audit import AuditLogger, create_correlation_id
from budget_ledger.config import LedgerSettings, get_settings
from budget_ledger.engine.errors import (
    BatchWriteFailed,
    EntryNotFound,
    ImmutableFieldError,
    InvalidRule,
    LedgerAlreadyExists,
    LedgerError,
    LedgerNotFound,
    RuleNotFound,
    StoreUnavailable,
)
from budget_ledger.engine.installments import InstallmentSplitter
from budget_ledger.engine.periods import as_instant
from budget_ledger.engine.results import OperationResult
from budget_ledger.models.audit import AuditEventType
from budget_ledger.models.ledger import (
    ExpenseEntry,
    ExpenseStatus,
    Frequency,
    IncomeEntry,
    IncomeStatus,
    MonthlyLedger,
    NewExpense,
    NewRecurringRule,
    RecurringRule,
    ledger_key,
    utcnow,
)
from budget_ledger.services.storage import (
    ConflictError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
    WriteBatch,
)


IMMUTABLE_FIELDS = frozenset({"base_currency", "year", "month", "id"})


class LedgerService:
    """
    Manual ledger operations.

    All methods return an OperationResult; none of them raises for
    store or validation failures.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        splitter: Optional[InstallmentSplitter] = None,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._audit_logger = audit_logger
        self._splitter = splitter or InstallmentSplitter(
            storage, self._settings, audit_logger
        )

    # =========================================================================
    # LEDGER LIFECYCLE
    # =========================================================================

    async def create_ledger(
        self,
        year: int,
        month: int,
        limit: Decimal = Decimal("0"),
        base_currency: Optional[str] = None,
        base_income: Decimal = Decimal("0"),
        income_goal: Optional[Decimal] = None,
        category_budgets: Optional[dict[str, Decimal]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        """
        Set up a month. Fails if the month already has a ledger.

        The ledger is written with create-if-absent semantics, so two
        concurrent setups of the same month cannot overwrite each other.
        """
        try:
            ledger = MonthlyLedger(
                year=year,
                month=month,
                limit=limit,
                base_currency=base_currency or self._settings.default_currency,
                base_income=base_income,
                income_goal=income_goal,
                category_budgets=category_budgets,
            )
        except ValueError as e:
            return _invalid(str(e))

        batch = WriteBatch()
        batch.create_ledger(ledger)
        try:
            await self._storage.commit(batch)
        except ConflictError:
            return OperationResult.failed(
                LedgerAlreadyExists(f"Ledger already exists: {ledger.key}")
            )
        except StorageError as e:
            return OperationResult.failed(BatchWriteFailed.from_storage_error(e))

        if self._audit_logger:
            await self._audit_logger.log_ledger_created(
                ledger.key, ledger.base_currency, correlation_id
            )
        return OperationResult.ok(ledger_keys=[ledger.key], created_keys=[ledger.key])

    async def delete_ledger(
        self,
        key: str,
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        """Delete a month's ledger (manual action only)."""
        try:
            deleted = await self._storage.delete_ledger(key)
        except StorageError as e:
            return OperationResult.failed(StoreUnavailable.from_storage_error(e))

        if not deleted:
            return OperationResult.failed(LedgerNotFound(f"Ledger not found: {key}"))

        if self._audit_logger:
            await self._audit_logger.log_ledger_deleted(key, correlation_id)
        return OperationResult.ok(ledger_keys=[key])

    # =========================================================================
    # EXPENSES
    # =========================================================================

    async def add_expense(
        self,
        key: str,
        expense: NewExpense,
        when: Optional[datetime] = None,
        status: ExpenseStatus = ExpenseStatus.PAID,
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        """Add a single (non-installment) expense to an existing ledger."""
        entry = ExpenseEntry(
            amount=expense.amount,
            description=expense.description,
            category=expense.category,
            date=as_instant(when) if when else utcnow(),
            payment_method=expense.payment_method,
            status=status,
        )

        try:
            await self._require_ledger(key)
            batch = WriteBatch()
            batch.append_expense(key, entry)
            await self._commit(batch)
        except LedgerError as e:
            return OperationResult.failed(e)

        await self._log_entry(AuditEventType.ENTRY_ADDED, key, entry.id, "expense", correlation_id)
        return OperationResult.ok(ledger_keys=[key], entry_ids=[entry.id])

    async def delete_expense(
        self,
        key: str,
        entry_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        """
        Delete an expense.

        An installment entry never disappears alone: the whole group is
        removed from every ledger that holds part of it.
        """
        try:
            ledger = await self._require_ledger(key)
            entry = ledger.find_expense(entry_id)
            if entry is None:
                raise EntryNotFound(f"Expense {entry_id} not found in {key}")

            if entry.group_id:
                return await self._splitter.delete_group(entry.group_id, correlation_id)

            batch = WriteBatch()
            batch.remove_expenses(key, [entry])
            await self._commit(batch)
        except LedgerError as e:
            return OperationResult.failed(e)

        await self._log_entry(AuditEventType.ENTRY_DELETED, key, entry_id, "expense", correlation_id)
        return OperationResult.ok(ledger_keys=[key], entry_ids=[entry_id])

    async def mark_expense_paid(
        self,
        key: str,
        entry_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        try:
            ledger = await self._require_ledger(key)
            entry = ledger.find_expense(entry_id)
            if entry is None:
                raise EntryNotFound(f"Expense {entry_id} not found in {key}")
            if entry.status == ExpenseStatus.PAID:
                return OperationResult.ok(ledger_keys=[key], entry_ids=[entry_id])

            batch = WriteBatch()
            batch.remove_expenses(key, [entry])
            batch.append_expense(key, entry.model_copy(update={"status": ExpenseStatus.PAID}))
            await self._commit(batch)
        except LedgerError as e:
            return OperationResult.failed(e)

        await self._log_entry(
            AuditEventType.ENTRY_STATUS_UPDATED, key, entry_id, "expense", correlation_id,
            status=ExpenseStatus.PAID.value,
        )
        return OperationResult.ok(ledger_keys=[key], entry_ids=[entry_id])

    # =========================================================================
    # INCOME
    # =========================================================================

    async def add_income(
        self,
        key: str,
        name: str,
        amount: Decimal,
        category: str,
        when: Optional[datetime] = None,
        status: IncomeStatus = IncomeStatus.PENDING,
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        try:
            entry = IncomeEntry(
                name=name,
                amount=amount,
                category=category,
                date=as_instant(when) if when else utcnow(),
                status=status,
            )
        except ValueError as e:
            return _invalid(str(e))

        try:
            await self._require_ledger(key)
            batch = WriteBatch()
            batch.append_income(key, entry)
            await self._commit(batch)
        except LedgerError as e:
            return OperationResult.failed(e)

        await self._log_entry(AuditEventType.ENTRY_ADDED, key, entry.id, "income", correlation_id)
        return OperationResult.ok(ledger_keys=[key], entry_ids=[entry.id])

    async def delete_income(
        self,
        key: str,
        entry_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        try:
            ledger = await self._require_ledger(key)
            entry = ledger.find_income(entry_id)
            if entry is None:
                raise EntryNotFound(f"Income {entry_id} not found in {key}")

            batch = WriteBatch()
            batch.remove_incomes(key, [entry])
            await self._commit(batch)
        except LedgerError as e:
            return OperationResult.failed(e)

        await self._log_entry(AuditEventType.ENTRY_DELETED, key, entry_id, "income", correlation_id)
        return OperationResult.ok(ledger_keys=[key], entry_ids=[entry_id])

    async def mark_income_completed(
        self,
        key: str,
        entry_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        try:
            ledger = await self._require_ledger(key)
            entry = ledger.find_income(entry_id)
            if entry is None:
                raise EntryNotFound(f"Income {entry_id} not found in {key}")
            if entry.status == IncomeStatus.COMPLETED:
                return OperationResult.ok(ledger_keys=[key], entry_ids=[entry_id])

            batch = WriteBatch()
            batch.remove_incomes(key, [entry])
            batch.append_income(key, entry.model_copy(update={"status": IncomeStatus.COMPLETED}))
            await self._commit(batch)
        except LedgerError as e:
            return OperationResult.failed(e)

        await self._log_entry(
            AuditEventType.ENTRY_STATUS_UPDATED, key, entry_id, "income", correlation_id,
            status=IncomeStatus.COMPLETED.value,
        )
        return OperationResult.ok(ledger_keys=[key], entry_ids=[entry_id])

    # =========================================================================
    # RECURRING RULES
    # =========================================================================

    async def add_rule(
        self,
        new_rule: Union[NewRecurringRule, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        """
        Save a new recurring rule.

        The rule gets a fresh id and its cursor starts at start_date. Input
        carrying an id or a cursor is rejected; catch-up happens on the next
        tick, never here.
        """
        try:
            if not isinstance(new_rule, NewRecurringRule):
                new_rule = NewRecurringRule.model_validate(new_rule)
        except ValueError as e:
            return _invalid(str(e))

        if new_rule.frequency.strip().lower() != Frequency.MONTHLY.value:
            return OperationResult.failed(
                InvalidRule(f"Unsupported frequency {new_rule.frequency!r}")
            )

        rule = RecurringRule(**new_rule.model_dump())
        try:
            await self._storage.save_rule(rule)
        except StorageError as e:
            return OperationResult.failed(BatchWriteFailed.from_storage_error(e))

        if self._audit_logger:
            await self._audit_logger.log_rule_created(
                rule.id, rule.description, rule.start_date, correlation_id
            )
        return OperationResult.ok(entry_ids=[rule.id])

    async def delete_rule(
        self,
        rule_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        """
        Stop a recurring rule.

        Entries it already generated stay in their ledgers.
        """
        try:
            rule = await self._storage.get_rule(rule_id)
        except StorageError as e:
            return OperationResult.failed(StoreUnavailable.from_storage_error(e))
        if rule is None:
            return OperationResult.failed(RuleNotFound(f"Recurring rule not found: {rule_id}"))

        try:
            await self._storage.delete_rule(rule_id)
        except StorageError as e:
            return OperationResult.failed(BatchWriteFailed.from_storage_error(e))

        if self._audit_logger:
            await self._audit_logger.log_rule_deleted(rule_id, correlation_id)
        return OperationResult.ok(entry_ids=[rule_id])

    # =========================================================================
    # BUDGET METADATA
    # =========================================================================

    async def update_limit(
        self,
        key: str,
        limit: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        if limit < 0:
            return _invalid("Limit cannot be negative")
        return await self.update_fields(key, {"limit": str(limit)}, correlation_id)

    async def update_income_goal(
        self,
        key: str,
        income_goal: Optional[Decimal],
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        if income_goal is not None and income_goal < 0:
            return _invalid("Income goal cannot be negative")
        value = str(income_goal) if income_goal is not None else None
        return await self.update_fields(key, {"income_goal": value}, correlation_id)

    async def update_category_budgets(
        self,
        key: str,
        category_budgets: dict[str, Decimal],
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        if any(amount < 0 for amount in category_budgets.values()):
            return _invalid("Category budgets cannot be negative")
        budgets = {category: str(amount) for category, amount in category_budgets.items()}
        return await self.update_fields(key, {"category_budgets": budgets}, correlation_id)

    async def update_fields(
        self,
        key: str,
        fields: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        """
        Update ledger metadata fields in place.

        Fields fixed at creation (base currency, the month itself) are
        rejected; entry lists are never replaced through this path.
        """
        correlation_id = correlation_id or create_correlation_id()

        immutable = IMMUTABLE_FIELDS.intersection(fields)
        if immutable:
            return OperationResult.failed(ImmutableFieldError(
                f"Cannot change {', '.join(sorted(immutable))} of ledger {key}"
            ))
        if {"expenses", "income_transactions"}.intersection(fields):
            return _invalid("Entries are changed through entry operations only")

        try:
            await self._storage.update_ledger_fields(key, fields)
        except NotFoundError:
            return OperationResult.failed(LedgerNotFound(f"Ledger not found: {key}"))
        except StorageError as e:
            return OperationResult.failed(BatchWriteFailed.from_storage_error(e))
        except ValueError as e:
            return _invalid(str(e))

        if self._audit_logger:
            await self._audit_logger.log_ledger_updated(key, sorted(fields), correlation_id)
        return OperationResult.ok(ledger_keys=[key])

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def get_ledger(self, year: int, month: int) -> Optional[MonthlyLedger]:
        return await self._storage.get_ledger(ledger_key(year, month))

    async def _require_ledger(self, key: str) -> MonthlyLedger:
        try:
            ledger = await self._storage.get_ledger(key)
        except StorageError as e:
            raise StoreUnavailable.from_storage_error(e)
        if ledger is None:
            raise LedgerNotFound(f"Ledger not found: {key}")
        return ledger

    async def _commit(self, batch: WriteBatch) -> None:
        try:
            await self._storage.commit(batch)
        except StorageError as e:
            raise BatchWriteFailed.from_storage_error(e)

    async def _log_entry(
        self,
        event_type: AuditEventType,
        key: str,
        entry_id: str,
        kind: str,
        correlation_id: Optional[UUID],
        **details: Any,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_entry_changed(
                event_type, key, entry_id, kind, correlation_id, **details
            )


def _invalid(message: str) -> OperationResult:
    return OperationResult(success=False, error_code="invalid_input", error_message=message)
