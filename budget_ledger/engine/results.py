"""
Operation Results

DESIGN DECISION: Engine operations return explicit result objects instead
of raising. The caller (UI layer, orchestrator) owns retry and user-facing
presentation; the engine owns correctness only.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from budget_ledger.engine.errors import LedgerError
from budget_ledger.models.ledger import RecurringRule


class OperationResult(BaseModel):
    """Outcome of one logical ledger operation (one atomic batch at most)."""

    success: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    retryable: bool = False

    ledger_keys: list[str] = Field(
        default_factory=list,
        description="Ledgers written by the operation"
    )
    created_keys: list[str] = Field(
        default_factory=list,
        description="Ledgers created lazily by the operation"
    )
    entry_ids: list[str] = Field(default_factory=list)
    group_id: Optional[str] = None

    @classmethod
    def ok(cls, **fields: Any) -> "OperationResult":
        return cls(success=True, **fields)

    @classmethod
    def failed(cls, error: LedgerError, **fields: Any) -> "OperationResult":
        return cls(
            success=False,
            error_code=error.code,
            error_message=str(error),
            retryable=error.retryable,
            **fields,
        )


class RuleOutcome(BaseModel):
    """What one recurring rule's catch-up did during a tick."""

    rule_id: str
    success: bool
    generated: int = 0
    periods: list[str] = Field(
        default_factory=list,
        description="Ledger keys that received an entry, in chronological order"
    )
    created_keys: list[str] = Field(default_factory=list)
    next_execution_date: date
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    retryable: bool = False


class TickSummary(BaseModel):
    """Result of one materializer tick over a set of rules."""

    today: date
    cutoff: date = Field(
        ...,
        description="Latest cursor date that counted as an elapsed period"
    )
    outcomes: list[RuleOutcome] = Field(default_factory=list)
    updated_rules: list[RecurringRule] = Field(
        default_factory=list,
        description="Rules with their cursors as persisted after the tick"
    )

    # Set when the tick could not start at all (e.g. rules failed to load)
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    retryable: bool = False

    @property
    def entries_generated(self) -> int:
        return sum(outcome.generated for outcome in self.outcomes)

    @property
    def failures(self) -> list[RuleOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]

    @property
    def success(self) -> bool:
        return self.error_code is None and not self.failures

    @property
    def retryable_failures(self) -> list[RuleOutcome]:
        return [outcome for outcome in self.failures if outcome.retryable]


class ConversionFactor(BaseModel):
    """
    Multiplier from a ledger's base currency to the display currency.

    stale=True means no usable rate was available and value fell back to 1:
    the caller should flag the amounts as unconverted.
    """

    base_currency: str
    display_currency: str
    value: Decimal = Decimal("1")
    stale: bool = False

    @property
    def converted(self) -> bool:
        return not self.stale and self.base_currency != self.display_currency
