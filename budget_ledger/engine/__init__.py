"""
Ledger Materialization Engine

Installment splitting, recurring-rule materialization, currency projection
and the manual ledger operations built on the same atomic-batch model.
"""

from budget_ledger.engine.currency import (
    CurrencyProjector,
    conversion_factor,
    display_amount,
    project_amount,
)
from budget_ledger.engine.errors import (
    BatchTooLarge,
    BatchWriteFailed,
    EntryNotFound,
    ImmutableFieldError,
    InvalidPeriodCount,
    InvalidRule,
    LedgerAlreadyExists,
    LedgerError,
    LedgerNotFound,
    RuleNotFound,
    StaleRateTable,
    StoreUnavailable,
)
from budget_ledger.engine.installments import (
    InstallmentSplitter,
    installment_entry_id,
    split_amount,
)
from budget_ledger.engine.ledger_service import LedgerService
from budget_ledger.engine.periods import add_months, materialization_cutoff
from budget_ledger.engine.recurring import RecurringMaterializer, recurring_entry_id
from budget_ledger.engine.results import (
    ConversionFactor,
    OperationResult,
    RuleOutcome,
    TickSummary,
)
from budget_ledger.engine.templates import (
    LedgerProvisioner,
    LedgerTemplate,
    TemplateSource,
    resolve_template,
)

__all__ = [
    # Components
    "CurrencyProjector",
    "InstallmentSplitter",
    "LedgerService",
    "RecurringMaterializer",
    # Functions
    "add_months",
    "conversion_factor",
    "display_amount",
    "installment_entry_id",
    "materialization_cutoff",
    "project_amount",
    "recurring_entry_id",
    "resolve_template",
    "split_amount",
    # Templates
    "LedgerProvisioner",
    "LedgerTemplate",
    "TemplateSource",
    # Results
    "ConversionFactor",
    "OperationResult",
    "RuleOutcome",
    "TickSummary",
    # Errors
    "BatchTooLarge",
    "BatchWriteFailed",
    "EntryNotFound",
    "ImmutableFieldError",
    "InvalidPeriodCount",
    "InvalidRule",
    "LedgerAlreadyExists",
    "LedgerError",
    "LedgerNotFound",
    "RuleNotFound",
    "StaleRateTable",
    "StoreUnavailable",
]
