"""
Main Orchestrator for Budget Ledger

This module ties together all the components and defines the session
flows:
1. Start (load rules -> recurring catch-up, once per session)
2. Installment submission (split -> one atomic batch, retried if transient)
3. Display (ledger -> conversion factor -> report)

DESIGN DECISION: The engine reports failures as results; the orchestrator
owns retry. Retries are only issued for failures the engine marked
retryable, and only for operations whose re-application is a no-op:
recurring entries and installment entries have ids derived from their
rule/period or group/position, so a batch that did land is not appended
twice.
"""

from datetime import date
from typing import Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from budget_ledger.agents import CategoryAdvisor
from budget_ledger.audit import AuditLogger, create_correlation_id
from budget_ledger.config import LedgerSettings, get_settings
from budget_ledger.engine import (
    CurrencyProjector,
    InstallmentSplitter,
    LedgerService,
    OperationResult,
    RecurringMaterializer,
    RuleOutcome,
    TickSummary,
)
from budget_ledger.engine.results import ConversionFactor
from budget_ledger.models.ledger import NewExpense, new_entry_id
from budget_ledger.reports import MonthlySummary, monthly_summary
from budget_ledger.services.rates import FrankfurterRateProvider
from budget_ledger.services.storage import (
    FirestoreAuditStorage,
    FirestoreClient,
    FirestoreLedgerStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    StorageError,
)


logger = structlog.get_logger("budget_ledger.orchestrator")

ResultT = TypeVar("ResultT")


class LedgerSession:
    """
    One user's session against the ledger store.

    Flow:
    1. start() runs the recurring catch-up once
    2. submit_installment() / ledger operations as the user acts
    3. display_factor() / summary() whenever money is shown
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
        rate_provider=None,
        advisor: Optional[CategoryAdvisor] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._audit_logger = audit_logger or AuditLogger()

        self.splitter = InstallmentSplitter(storage, self._settings, self._audit_logger)
        self.materializer = RecurringMaterializer(storage, self._settings, self._audit_logger)
        self.ledgers = LedgerService(
            storage, self.splitter, self._settings, self._audit_logger
        )
        self.projector = CurrencyProjector(
            rate_provider or FrankfurterRateProvider(),
            self._audit_logger,
        )
        self.advisor = advisor or CategoryAdvisor(audit_logger=self._audit_logger)

        self._start_summary: Optional[TickSummary] = None

    @property
    def started(self) -> bool:
        return self._start_summary is not None

    async def start(
        self,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TickSummary:
        """
        Run the recurring catch-up for this session.

        Runs once; later calls return the first summary. Rules whose batch
        failed with a retryable error are re-read and retried individually.
        """
        if self._start_summary is not None:
            return self._start_summary

        today = today or date.today()
        correlation_id = correlation_id or create_correlation_id()

        summary = await self._retrying(
            lambda: self.materializer.run(today, correlation_id=correlation_id),
            lambda s: s.error_code is not None and s.retryable,
        )

        for index, outcome in enumerate(summary.outcomes):
            if outcome.success or not outcome.retryable:
                continue
            retried = await self._retrying(
                lambda: self._retick(outcome, today, correlation_id),
                lambda o: not o.success and o.retryable,
            )
            summary.outcomes[index] = retried
            summary.updated_rules[index] = summary.updated_rules[index].model_copy(
                update={"next_execution_date": retried.next_execution_date}
            )

        if not summary.success:
            logger.warning(
                "recurring_catch_up_incomplete",
                failures=[o.rule_id for o in summary.failures],
                error=summary.error_code,
            )

        self._start_summary = summary
        return summary

    async def submit_installment(
        self,
        expense: NewExpense,
        total_periods: int,
        anchor_date: date,
        template_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        """
        Split an installment expense, retrying transient batch failures.

        The group id is fixed before the first attempt, so every attempt
        writes the same entries.
        """
        group_id = new_entry_id()
        correlation_id = correlation_id or create_correlation_id()
        return await self._retrying(
            lambda: self.splitter.split(
                expense,
                total_periods,
                anchor_date,
                template_key=template_key,
                group_id=group_id,
                correlation_id=correlation_id,
            ),
            lambda r: not r.success and r.retryable,
        )

    async def delete_expense(self, key: str, entry_id: str) -> OperationResult:
        """Delete an expense (a whole installment group if it has one)."""
        return await self._retrying(
            lambda: self.ledgers.delete_expense(key, entry_id),
            lambda r: not r.success and r.retryable,
        )

    async def display_factor(
        self,
        base_currency: str,
        display_currency: str,
    ) -> ConversionFactor:
        return await self.projector.factor_for(base_currency, display_currency)

    async def summary(self, key: str, display_currency: Optional[str] = None) -> Optional[MonthlySummary]:
        """Monthly summary in the display currency, or None if no ledger."""
        ledger = await self._storage.get_ledger(key)
        if ledger is None:
            return None
        factor = await self.display_factor(
            ledger.base_currency,
            display_currency or ledger.base_currency,
        )
        return monthly_summary(ledger, factor)

    async def _retick(
        self,
        previous: RuleOutcome,
        today: date,
        correlation_id: UUID,
    ) -> RuleOutcome:
        # Re-read the rule so the retry starts from the persisted cursor
        try:
            rule = await self._storage.get_rule(previous.rule_id)
        except StorageError as e:
            return previous.model_copy(update={
                "error_message": str(e),
                "retryable": e.retryable,
            })
        if rule is None:
            return previous.model_copy(update={
                "error_message": f"Recurring rule {previous.rule_id} no longer exists",
                "retryable": False,
            })

        summary = await self.materializer.tick([rule], today, correlation_id=correlation_id)
        return summary.outcomes[0]

    async def _retrying(
        self,
        operation: Callable[[], Awaitable[ResultT]],
        should_retry: Callable[[ResultT], bool],
    ) -> ResultT:
        """Run `operation`, re-running it while should_retry(result) holds."""
        result = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._settings.retry_attempts),
            wait=wait_exponential(
                multiplier=self._settings.retry_wait_min,
                min=self._settings.retry_wait_min,
                max=self._settings.retry_wait_max,
            ),
            retry=retry_if_result(should_retry),
            # Out of attempts: hand back the last result instead of RetryError
            retry_error_callback=lambda state: state.outcome.result(),
        ):
            with attempt:
                result = await operation()
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(result)
        return result


def create_app_components(
    use_storage: bool = True,
    advisor_model=None,
) -> tuple[LedgerSession, Optional[FirestoreClient]]:
    """
    Factory function to create a session with its collaborators.

    Args:
        use_storage: Whether to use Firestore. Set to False for an
                    in-memory store (tests, offline use).
        advisor_model: A prebuilt Gemini model to inject; built lazily
                    on first AI call otherwise.

    Returns:
        (session, firestore_client)
    """
    firestore_client = None

    if use_storage:
        try:
            firestore_client = FirestoreClient()
            firestore_client.connect()
            storage = FirestoreLedgerStorage(firestore_client)
            audit_logger = AuditLogger(FirestoreAuditStorage(firestore_client))
        except StorageError as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            firestore_client = None
            storage = InMemoryLedgerStorage()
            audit_logger = AuditLogger()  # Local-only logging
    else:
        storage = InMemoryLedgerStorage()
        audit_logger = AuditLogger(InMemoryAuditStorage())

    session = LedgerSession(
        storage,
        audit_logger=audit_logger,
        advisor=CategoryAdvisor(model=advisor_model, audit_logger=audit_logger),
    )
    return session, firestore_client
