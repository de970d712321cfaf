"""
Recurring Materializer

Advances recurring rules forward in time, generating exactly one entry per
elapsed period into the ledger of that period's month.

CRITICAL INVARIANTS:
1. A rule's generated entries and its cursor update are ONE atomic batch.
   Either the periods and the new cursor land together or neither does.
2. The cursor only advances in that batch, so a re-run starts strictly from
   the persisted cursor and never duplicates a period.
3. One batch per rule. A failing rule is reported and skipped; it never
   blocks the catch-up of the others.

Entry ids are derived from (rule id, period), so re-submitting a batch whose
outcome was unknown appends nothing new.
"""

from datetime import date
from typing import Iterable, Optional
from uuid import NAMESPACE_URL, UUID, uuid5

from pydantic import ValidationError

from budget_ledger.audit import AuditLogger, create_correlation_id
from budget_ledger.config import LedgerSettings, get_settings
from budget_ledger.engine.errors import (
    BatchTooLarge,
    BatchWriteFailed,
    InvalidRule,
    LedgerError,
    StoreUnavailable,
)
from budget_ledger.engine.periods import add_months, materialization_cutoff, start_of_day
from budget_ledger.engine.results import RuleOutcome, TickSummary
from budget_ledger.engine.templates import LedgerProvisioner, TemplateSource
from budget_ledger.models.ledger import (
    ExpenseEntry,
    ExpenseStatus,
    Frequency,
    IncomeEntry,
    IncomeStatus,
    MAX_TEXT_LENGTH,
    RecurringRule,
    RuleType,
    ledger_key_for,
)
from budget_ledger.services.storage import (
    MAX_BATCH_WRITES,
    LedgerStorageInterface,
    StorageError,
    WriteBatch,
)


RECURRING_ENTRY_NAMESPACE = uuid5(NAMESPACE_URL, "budget-ledger:recurring-entry")


def recurring_entry_id(rule_id: str, period: date) -> str:
    """Stable id of the entry a rule generates for one period."""
    return str(uuid5(RECURRING_ENTRY_NAMESPACE, f"{rule_id}/{period.isoformat()}"))


class RecurringMaterializer:
    """
    Catches recurring rules up to "today".

    Usage:
        materializer = RecurringMaterializer(storage, audit_logger=audit)
        summary = await materializer.run(date.today())
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._audit_logger = audit_logger

    async def run(
        self,
        today: date,
        template_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TickSummary:
        """Load the persisted rules and tick them."""
        try:
            rules = await self._storage.list_rules()
        except StorageError as e:
            error = StoreUnavailable.from_storage_error(e)
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type=error.code,
                    error_message=str(error),
                    details={"stage": "load_rules"},
                    correlation_id=correlation_id,
                )
            return TickSummary(
                today=today,
                cutoff=self.cutoff(today),
                error_code=error.code,
                error_message=str(error),
                retryable=error.retryable,
            )

        return await self.tick(rules, today, template_key, correlation_id)

    async def tick(
        self,
        rules: Iterable[RecurringRule],
        today: date,
        template_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TickSummary:
        """
        Materialize every elapsed period of every rule.

        Args:
            rules: Rules as currently persisted
            today: Reference date of the tick
            template_key: Ledger missing months are cloned from;
                defaults to today's month

        Returns:
            TickSummary with one outcome per rule
        """
        rules = list(rules)
        correlation_id = correlation_id or create_correlation_id()
        cutoff = self.cutoff(today)
        templates = TemplateSource(
            self._storage,
            template_key or ledger_key_for(today),
            self._settings,
        )

        if self._audit_logger:
            await self._audit_logger.log_tick_started(today, len(rules), correlation_id)

        summary = TickSummary(today=today, cutoff=cutoff)
        for rule in rules:
            outcome = await self._materialize_rule(rule, cutoff, templates, correlation_id)
            summary.outcomes.append(outcome)
            summary.updated_rules.append(
                rule.model_copy(update={"next_execution_date": outcome.next_execution_date})
            )

        if self._audit_logger:
            await self._audit_logger.log_tick_completed(
                summary.entries_generated,
                len(summary.failures),
                correlation_id,
            )

        return summary

    def cutoff(self, today: date) -> date:
        return materialization_cutoff(today, self._settings.include_current_period)

    async def _materialize_rule(
        self,
        rule: RecurringRule,
        cutoff: date,
        templates: TemplateSource,
        correlation_id: UUID,
    ) -> RuleOutcome:
        try:
            self._check_schedulable(rule)

            provisioner = LedgerProvisioner(self._storage, templates)
            batch = WriteBatch()
            periods = []
            cursor = rule.next_execution_date

            while cursor <= cutoff:
                key = ledger_key_for(cursor)
                try:
                    await provisioner.ensure(batch, key)
                except StorageError as e:
                    raise StoreUnavailable.from_storage_error(e)

                if rule.type == RuleType.INCOME:
                    batch.append_income(key, self._income_entry(rule, cursor))
                else:
                    batch.append_expense(key, self._expense_entry(rule, cursor))
                periods.append(key)

                # One slot stays free for the cursor update
                if len(batch) >= MAX_BATCH_WRITES:
                    raise BatchTooLarge(
                        f"Rule {rule.id} is more than {MAX_BATCH_WRITES - 1} periods "
                        f"behind; catch-up does not fit in one atomic batch"
                    )

                cursor = add_months(cursor, 1, anchor_day=rule.start_date.day)

            if not periods:
                return RuleOutcome(
                    rule_id=rule.id,
                    success=True,
                    next_execution_date=rule.next_execution_date,
                )

            batch.update_rule_cursor(rule.id, cursor)
            try:
                await self._storage.commit(batch)
            except StorageError as e:
                raise BatchWriteFailed.from_storage_error(e)

        except LedgerError as e:
            if self._audit_logger:
                await self._audit_logger.log_rule_failed(rule.id, e.code, str(e), correlation_id)
            return RuleOutcome(
                rule_id=rule.id,
                success=False,
                next_execution_date=rule.next_execution_date,
                error_code=e.code,
                error_message=str(e),
                retryable=e.retryable,
            )

        if self._audit_logger:
            await self._audit_logger.log_rule_materialized(rule.id, periods, cursor, correlation_id)

        return RuleOutcome(
            rule_id=rule.id,
            success=True,
            generated=len(periods),
            periods=periods,
            created_keys=batch.created_keys,
            next_execution_date=cursor,
        )

    @staticmethod
    def _check_schedulable(rule: RecurringRule) -> None:
        if rule.frequency.strip().lower() != Frequency.MONTHLY.value:
            raise InvalidRule(f"Unsupported frequency {rule.frequency!r} for rule {rule.id}")

    def _entry_text(self, rule: RecurringRule) -> str:
        suffix = self._settings.recurring_suffix
        room = MAX_TEXT_LENGTH - len(suffix)
        return f"{rule.description[:room].rstrip()}{suffix}"

    def _expense_entry(self, rule: RecurringRule, period: date) -> ExpenseEntry:
        try:
            return ExpenseEntry(
                id=recurring_entry_id(rule.id, period),
                amount=rule.amount,
                description=self._entry_text(rule),
                category=rule.category,
                date=start_of_day(period),
                payment_method=rule.payment_method,
                status=ExpenseStatus.PENDING,
            )
        except ValidationError as e:
            raise InvalidRule(f"Rule {rule.id} cannot produce an expense: {e}")

    def _income_entry(self, rule: RecurringRule, period: date) -> IncomeEntry:
        try:
            return IncomeEntry(
                id=recurring_entry_id(rule.id, period),
                name=self._entry_text(rule),
                amount=rule.amount,
                date=start_of_day(period),
                category=rule.category,
                status=IncomeStatus.PENDING,
            )
        except ValidationError as e:
            raise InvalidRule(f"Rule {rule.id} cannot produce an income: {e}")
