"""
Audit Logger

DESIGN DECISION: Every write the engine issues is logged.
This provides:
1. Traceability of machine-generated entries
2. Debugging capability when a batch is rejected
3. A history of which tick produced which periods

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (a lost audit record never fails a ledger write)
- Supports correlation IDs to trace related events
"""

from datetime import date
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from budget_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from budget_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit collection (when storage is configured)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("budget_ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_ledger_created(
        self,
        key: str,
        base_currency: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.ledger_created(key, base_currency, correlation_id))

    async def log_ledger_updated(
        self,
        key: str,
        fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.ledger_updated(key, fields, correlation_id))

    async def log_ledger_deleted(
        self,
        key: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.ledger_deleted(key, correlation_id))

    async def log_rule_created(
        self,
        rule_id: str,
        description: str,
        start_date: date,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.rule_created(
            rule_id, description, start_date, correlation_id
        ))

    async def log_rule_deleted(
        self,
        rule_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.rule_deleted(rule_id, correlation_id))

    async def log_entry_changed(
        self,
        event_type: AuditEventType,
        key: str,
        entry_id: str,
        kind: str,
        correlation_id: Optional[UUID] = None,
        **details: Any,
    ) -> None:
        """Log a manual add / delete / status change of one entry."""
        await self.log(AuditEventBuilder.entry_changed(
            event_type, key, entry_id, kind, correlation_id, **details
        ))

    async def log_installment_split(
        self,
        group_id: str,
        ledger_keys: list[str],
        amount: str,
        created_keys: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.installment_split(
            group_id=group_id,
            ledger_keys=ledger_keys,
            amount=amount,
            created_keys=created_keys,
            correlation_id=correlation_id,
        ))

    async def log_installment_split_failed(
        self,
        amount: str,
        total_periods: int,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.installment_split_failed(
            amount=amount,
            total_periods=total_periods,
            error_code=error_code,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_installment_group_deleted(
        self,
        group_id: str,
        removed: int,
        ledger_keys: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.installment_group_deleted(
            group_id, removed, ledger_keys, correlation_id
        ))

    async def log_tick_started(
        self,
        today: date,
        rule_count: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_tick_started(today, rule_count, correlation_id))

    async def log_rule_materialized(
        self,
        rule_id: str,
        periods: list[str],
        next_execution_date: date,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_materialized(
            rule_id, periods, next_execution_date, correlation_id
        ))

    async def log_rule_failed(
        self,
        rule_id: str,
        error_code: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_failed(
            rule_id, error_code, error_message, correlation_id
        ))

    async def log_tick_completed(
        self,
        generated: int,
        failed: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_tick_completed(generated, failed, correlation_id))

    async def log_rates_unavailable(
        self,
        base_currency: str,
        display_currency: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.rates_unavailable(
            base_currency, display_currency, correlation_id
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a logical operation (a split, a tick).
    Pass it through all subsequent writes.
    """
    return uuid4()
