"""
Audit Models for Budget Ledger

Every write the engine performs against the ledger store is logged.
This provides:
1. Traceability of machine-generated entries
2. Debugging information when a batch is rejected
3. A way to reconstruct which tick produced which entries

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from budget_ledger.models.ledger import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Ledger lifecycle
    LEDGER_CREATED = "ledger_created"
    LEDGER_UPDATED = "ledger_updated"
    LEDGER_DELETED = "ledger_deleted"

    # Manual entries
    ENTRY_ADDED = "entry_added"
    ENTRY_DELETED = "entry_deleted"
    ENTRY_STATUS_UPDATED = "entry_status_updated"

    # Installments
    INSTALLMENT_SPLIT = "installment_split"
    INSTALLMENT_SPLIT_FAILED = "installment_split_failed"
    INSTALLMENT_GROUP_DELETED = "installment_group_deleted"

    # Recurring rules
    RECURRING_TICK_STARTED = "recurring_tick_started"
    RECURRING_MATERIALIZED = "recurring_materialized"
    RECURRING_FAILED = "recurring_failed"
    RECURRING_TICK_COMPLETED = "recurring_tick_completed"
    RULE_CREATED = "rule_created"
    RULE_DELETED = "rule_deleted"

    # Currency
    RATES_UNAVAILABLE = "rates_unavailable"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every engine write creates one of these.
    """

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # What entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'ledger', 'rule', 'installment_group')"
    )
    entity_id: Optional[str] = None

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one tick)"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_document(self) -> dict:
        """Convert to a document for the audit collection."""
        data = self.to_log_dict()
        data["details"] = json.dumps(self.details, default=str) if self.details else ""
        return data


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.installment_split(group_id, keys, total, correlation_id)
    """

    @staticmethod
    def ledger_created(
        key: str,
        base_currency: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_CREATED,
            entity_type="ledger",
            entity_id=key,
            correlation_id=correlation_id,
            description=f"Ledger {key} created",
            details={"base_currency": base_currency},
        )

    @staticmethod
    def ledger_updated(
        key: str,
        fields: list[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_UPDATED,
            entity_type="ledger",
            entity_id=key,
            correlation_id=correlation_id,
            description=f"Ledger {key} updated: {', '.join(fields)}",
            details={"fields": fields},
        )

    @staticmethod
    def ledger_deleted(key: str, correlation_id: Optional[UUID] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_DELETED,
            severity=AuditSeverity.WARNING,
            entity_type="ledger",
            entity_id=key,
            correlation_id=correlation_id,
            description=f"Ledger {key} deleted",
        )

    @staticmethod
    def rule_created(
        rule_id: str,
        description: str,
        start_date: date,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_CREATED,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Recurring rule {description!r} created",
            details={"start_date": start_date.isoformat()},
        )

    @staticmethod
    def rule_deleted(rule_id: str, correlation_id: Optional[UUID] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_DELETED,
            severity=AuditSeverity.WARNING,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Recurring rule {rule_id} deleted",
        )

    @staticmethod
    def entry_changed(
        event_type: AuditEventType,
        key: str,
        entry_id: str,
        kind: str,
        correlation_id: Optional[UUID] = None,
        **details: Any,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type=kind,
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"{kind.capitalize()} {event_type.value.replace('_', ' ')} in {key}",
            details={"ledger": key, **details},
        )

    @staticmethod
    def installment_split(
        group_id: str,
        ledger_keys: list[str],
        amount: str,
        created_keys: list[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSTALLMENT_SPLIT,
            entity_type="installment_group",
            entity_id=group_id,
            correlation_id=correlation_id,
            description=f"Split {amount} into {len(ledger_keys)} installments",
            details={
                "ledgers": ledger_keys,
                "created_ledgers": created_keys,
                "amount": amount,
            },
        )

    @staticmethod
    def installment_split_failed(
        amount: str,
        total_periods: int,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSTALLMENT_SPLIT_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="installment_group",
            correlation_id=correlation_id,
            description=f"Installment split of {amount} over {total_periods} periods failed",
            details={"amount": amount, "total_periods": total_periods},
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def installment_group_deleted(
        group_id: str,
        removed: int,
        ledger_keys: list[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSTALLMENT_GROUP_DELETED,
            entity_type="installment_group",
            entity_id=group_id,
            correlation_id=correlation_id,
            description=f"Removed {removed} installment entries",
            details={"removed": removed, "ledgers": ledger_keys},
        )

    @staticmethod
    def recurring_tick_started(
        today: date,
        rule_count: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_TICK_STARTED,
            entity_type="tick",
            correlation_id=correlation_id,
            description=f"Recurring tick for {today.isoformat()} over {rule_count} rules",
            details={"today": today.isoformat(), "rules": rule_count},
        )

    @staticmethod
    def recurring_materialized(
        rule_id: str,
        periods: list[str],
        next_execution_date: date,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_MATERIALIZED,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Materialized {len(periods)} periods",
            details={
                "periods": periods,
                "next_execution_date": next_execution_date.isoformat(),
            },
        )

    @staticmethod
    def recurring_failed(
        rule_id: str,
        error_code: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description="Recurring catch-up failed; cursor left unchanged",
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def recurring_tick_completed(
        generated: int,
        failed: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_TICK_COMPLETED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            entity_type="tick",
            correlation_id=correlation_id,
            description=f"Recurring tick generated {generated} entries, {failed} rules failed",
            details={"generated": generated, "failed": failed},
        )

    @staticmethod
    def rates_unavailable(
        base_currency: str,
        display_currency: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RATES_UNAVAILABLE,
            severity=AuditSeverity.WARNING,
            entity_type="rates",
            entity_id=base_currency,
            correlation_id=correlation_id,
            description=f"No usable rate {base_currency}->{display_currency}; showing unconverted",
            details={"base": base_currency, "display": display_currency},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )
