"""
Data Models Package

This package contains all Pydantic models used by the ledger engine.
All documents read from or written to the store conform to these schemas.
"""

from budget_ledger.models.ledger import (
    MAX_TEXT_LENGTH,
    TWO_PLACES,
    ExpenseEntry,
    ExpenseStatus,
    Frequency,
    IncomeEntry,
    IncomeStatus,
    InstallmentGroup,
    MonthlyLedger,
    NewExpense,
    NewRecurringRule,
    PaymentMethod,
    RecurringRule,
    RuleType,
    ledger_key,
    ledger_key_for,
    parse_ledger_key,
)
from budget_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "MAX_TEXT_LENGTH",
    "TWO_PLACES",
    "ExpenseEntry",
    "ExpenseStatus",
    "Frequency",
    "IncomeEntry",
    "IncomeStatus",
    "InstallmentGroup",
    "MonthlyLedger",
    "NewExpense",
    "NewRecurringRule",
    "PaymentMethod",
    "RecurringRule",
    "RuleType",
    "ledger_key",
    "ledger_key_for",
    "parse_ledger_key",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
