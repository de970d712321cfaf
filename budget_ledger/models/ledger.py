"""
Core Data Models for Budget Ledger

These models define the schemas of the documents the engine reads and
writes. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Round-trip through the document store as plain JSON-compatible dicts

DESIGN DECISION: Money is Decimal with two places everywhere.
Floating point never touches a stored amount.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


TWO_PLACES = Decimal("0.01")
MAX_TEXT_LENGTH = 300


def new_entry_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# LEDGER KEYS - "YYYY-MM"
# =============================================================================

def ledger_key(year: int, month: int) -> str:
    """Build the document key of the ledger for a calendar month."""
    if not 1 <= month <= 12:
        raise ValueError(f"Month out of range: {month}")
    return f"{year:04d}-{month:02d}"


def ledger_key_for(value: date) -> str:
    """Key of the ledger a date (or datetime) belongs to."""
    return ledger_key(value.year, value.month)


def parse_ledger_key(key: str) -> tuple[int, int]:
    """Split a "YYYY-MM" key into (year, month)."""
    try:
        year_part, month_part = key.split("-")
        year, month = int(year_part), int(month_part)
    except ValueError as e:
        raise ValueError(f"Invalid ledger key: {key!r}") from e
    if len(year_part) != 4 or len(month_part) != 2 or not 1 <= month <= 12:
        raise ValueError(f"Invalid ledger key: {key!r}")
    return year, month


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ExpenseStatus(str, Enum):
    """Whether an expense has actually been paid yet."""
    PENDING = "pending"
    PAID = "paid"


class IncomeStatus(str, Enum):
    """Whether an income transaction has been received."""
    PENDING = "pending"
    COMPLETED = "completed"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CREDIT_CARD = "credit-card"


class RuleType(str, Enum):
    """What a recurring rule materializes into."""
    EXPENSE = "expense"
    INCOME = "income"


class Frequency(str, Enum):
    """
    Supported recurring frequencies.

    Rules store frequency as free text so that a document written by a newer
    client still loads; the materializer rejects what it cannot schedule.
    """
    MONTHLY = "monthly"


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

class InstallmentGroup(BaseModel):
    """
    Link between the entries produced by one installment split.

    Every entry of a split carries the same group_id; position is 1-based.
    """

    group_id: str = Field(
        ...,
        min_length=1,
        description="Shared identifier of the split"
    )
    position: int = Field(
        ...,
        ge=1,
        description="1-based position of this entry within the split"
    )
    total: int = Field(
        ...,
        ge=2,
        description="Number of periods the purchase was split into"
    )

    @model_validator(mode='after')
    def validate_position(self) -> 'InstallmentGroup':
        if self.position > self.total:
            raise ValueError("Installment position cannot exceed total")
        return self


class ExpenseEntry(BaseModel):
    """A single expense recorded in a monthly ledger."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_entry_id)
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount in the ledger's base currency"
    )
    description: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)
    category: str = Field(..., min_length=1)
    date: datetime = Field(
        default_factory=utcnow,
        description="When the expense happened (UTC instant)"
    )
    payment_method: PaymentMethod = PaymentMethod.CASH
    status: ExpenseStatus = ExpenseStatus.PAID
    installment_group: Optional[InstallmentGroup] = None

    @property
    def group_id(self) -> Optional[str]:
        return self.installment_group.group_id if self.installment_group else None


class IncomeEntry(BaseModel):
    """A single income transaction recorded in a monthly ledger."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_entry_id)
    name: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    date: datetime = Field(default_factory=utcnow)
    category: str = Field(..., min_length=1)
    status: IncomeStatus = IncomeStatus.PENDING


class NewExpense(BaseModel):
    """
    An expense as submitted by the user, before it is placed in a ledger.

    The installment splitter turns one of these into N ExpenseEntry objects.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)
    category: str = Field(..., min_length=1)
    payment_method: PaymentMethod = PaymentMethod.CASH


# =============================================================================
# MONTHLY LEDGER
# =============================================================================

class MonthlyLedger(BaseModel):
    """
    One calendar month's budget, expenses and income.

    CRITICAL: base_currency is fixed at creation. Every stored amount in
    the ledger is expressed in it, so changing it would silently corrupt
    the month.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    year: int = Field(..., ge=1, le=9999)
    month: int = Field(..., ge=1, le=12)
    limit: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Spending cap in base currency"
    )
    base_income: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Recurring salary-like income in base currency"
    )
    base_currency: str = Field(
        ...,
        pattern="^[A-Z]{3}$",
        description="ISO 4217 code all amounts are stored in"
    )
    income_goal: Optional[Decimal] = Field(default=None, ge=0)
    category_budgets: Optional[dict[str, Decimal]] = None
    expenses: list[ExpenseEntry] = Field(default_factory=list)
    income_transactions: list[IncomeEntry] = Field(default_factory=list)

    @field_validator('base_currency', mode='before')
    @classmethod
    def normalize_currency(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @property
    def key(self) -> str:
        return ledger_key(self.year, self.month)

    @classmethod
    def for_key(cls, key: str, **fields: Any) -> 'MonthlyLedger':
        year, month = parse_ledger_key(key)
        return cls(year=year, month=month, **fields)

    def find_expense(self, entry_id: str) -> Optional[ExpenseEntry]:
        return next((e for e in self.expenses if e.id == entry_id), None)

    def find_income(self, entry_id: str) -> Optional[IncomeEntry]:
        return next((t for t in self.income_transactions if t.id == entry_id), None)

    def to_document(self) -> dict[str, Any]:
        """Serialize for the document store (Decimal and dates become strings)."""
        data = self.model_dump(mode="json")
        data["id"] = self.key
        return data

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> 'MonthlyLedger':
        return cls.model_validate(data)


# =============================================================================
# RECURRING RULES
# =============================================================================

class RecurringRule(BaseModel):
    """
    A template that materializes one entry per elapsed period.

    next_execution_date is the only record of materialization progress.
    It is advanced exclusively by the materializer, in the same atomic
    batch as the entries it generates.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_entry_id)
    description: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    category: str = Field(..., min_length=1)
    type: RuleType
    frequency: str = Field(default=Frequency.MONTHLY.value)
    start_date: date
    next_execution_date: Optional[date] = None
    payment_method: PaymentMethod = PaymentMethod.CASH

    @model_validator(mode='after')
    def validate_cursor(self) -> 'RecurringRule':
        """A new rule starts at its start date; the cursor never precedes it."""
        if self.next_execution_date is None:
            self.next_execution_date = self.start_date
        elif self.next_execution_date < self.start_date:
            raise ValueError("Next execution date cannot be before start date")
        return self

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> 'RecurringRule':
        return cls.model_validate(data)


class NewRecurringRule(BaseModel):
    """
    A recurring rule as submitted by the user.

    Carries no id and no cursor: both are assigned when the rule is saved,
    and the cursor always starts at start_date.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    description: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    category: str = Field(..., min_length=1)
    type: RuleType
    frequency: str = Field(default=Frequency.MONTHLY.value)
    start_date: date
    payment_method: PaymentMethod = PaymentMethod.CASH
