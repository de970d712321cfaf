"""
Ledger Reports

DESIGN DECISION: Reports are DETERMINISTIC projections of stored ledgers.
They read entries exactly as stored and apply the display conversion factor
last, rounding only the displayed figures. Nothing here writes back.
"""

from decimal import ROUND_HALF_EVEN, Decimal
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from budget_ledger.engine.currency import display_amount
from budget_ledger.engine.results import ConversionFactor
from budget_ledger.models.ledger import (
    ExpenseStatus,
    IncomeStatus,
    MonthlyLedger,
)


ZERO = Decimal("0")
ONE_PERCENT = Decimal("0.1")


class CategorySpending(BaseModel):
    """Spending of one category, in the display currency."""

    category: str
    spent: Decimal
    budget: Optional[Decimal] = None
    share_percent: Decimal = Field(
        default=ZERO,
        description="Share of the total, rounded to one decimal"
    )

    @property
    def over_budget(self) -> bool:
        return self.budget is not None and self.spent > self.budget


class MonthlySummary(BaseModel):
    """Figures shown on a month's dashboard."""

    key: str
    display_currency: str
    converted: bool
    stale_rates: bool

    limit: Decimal
    spent: Decimal = Field(..., description="Paid expenses only")
    pending_expenses: Decimal
    income: Decimal = Field(..., description="Base income plus completed transactions")
    pending_income: Decimal
    remaining: Decimal = Field(..., description="Limit minus spent; negative when over")
    percent_spent: Decimal
    income_goal: Optional[Decimal] = None
    income_goal_progress: Optional[Decimal] = None
    categories: list[CategorySpending] = Field(default_factory=list)


class MonthOverview(BaseModel):
    """One row of the annual overview."""

    key: str
    month: int
    income: Decimal
    expenses: Decimal
    budget: Decimal

    @property
    def balance(self) -> Decimal:
        return self.income - self.expenses


class AnnualOverview(BaseModel):
    year: int
    display_currency: str
    stale_rates: bool
    months: list[MonthOverview] = Field(default_factory=list)
    categories: list[CategorySpending] = Field(default_factory=list)

    @property
    def total_income(self) -> Decimal:
        return sum((m.income for m in self.months), ZERO)

    @property
    def total_expenses(self) -> Decimal:
        return sum((m.expenses for m in self.months), ZERO)


def _identity(ledger: MonthlyLedger) -> ConversionFactor:
    return ConversionFactor(
        base_currency=ledger.base_currency,
        display_currency=ledger.base_currency,
    )


def _percent(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= 0:
        return ZERO
    return (part / whole * 100).quantize(ONE_PERCENT, rounding=ROUND_HALF_EVEN)


def _category_breakdown(
    totals: dict[str, Decimal],
    budgets: Optional[dict[str, Decimal]],
    factor: ConversionFactor,
) -> list[CategorySpending]:
    grand_total = sum(totals.values(), ZERO)
    breakdown = [
        CategorySpending(
            category=category,
            spent=display_amount(amount, factor),
            budget=display_amount(budgets[category], factor) if budgets and category in budgets else None,
            share_percent=_percent(amount, grand_total),
        )
        for category, amount in totals.items()
    ]
    # Largest first, then alphabetical for a stable order
    breakdown.sort(key=lambda c: (-c.spent, c.category))
    return breakdown


def monthly_summary(
    ledger: MonthlyLedger,
    factor: Optional[ConversionFactor] = None,
) -> MonthlySummary:
    """
    Summarize a ledger for display.

    Args:
        ledger: The month to summarize
        factor: Conversion to the display currency (identity if None)
    """
    factor = factor or _identity(ledger)

    spent = ZERO
    pending_expenses = ZERO
    by_category: dict[str, Decimal] = {}
    for expense in ledger.expenses:
        if expense.status == ExpenseStatus.PAID:
            spent += expense.amount
            by_category[expense.category] = by_category.get(expense.category, ZERO) + expense.amount
        else:
            pending_expenses += expense.amount

    income = ledger.base_income
    pending_income = ZERO
    for transaction in ledger.income_transactions:
        if transaction.status == IncomeStatus.COMPLETED:
            income += transaction.amount
        else:
            pending_income += transaction.amount

    goal_progress = None
    if ledger.income_goal:
        goal_progress = _percent(income, ledger.income_goal)

    return MonthlySummary(
        key=ledger.key,
        display_currency=factor.display_currency,
        converted=factor.converted,
        stale_rates=factor.stale,
        limit=display_amount(ledger.limit, factor),
        spent=display_amount(spent, factor),
        pending_expenses=display_amount(pending_expenses, factor),
        income=display_amount(income, factor),
        pending_income=display_amount(pending_income, factor),
        remaining=display_amount(ledger.limit - spent, factor),
        percent_spent=_percent(spent, ledger.limit),
        income_goal=display_amount(ledger.income_goal, factor) if ledger.income_goal is not None else None,
        income_goal_progress=goal_progress,
        categories=_category_breakdown(by_category, ledger.category_budgets, factor),
    )


def annual_overview(
    ledgers: Iterable[MonthlyLedger],
    year: int,
    factor: Optional[ConversionFactor] = None,
) -> AnnualOverview:
    """
    Month-by-month income, expenses and budget for one year.

    Expenses count every entry regardless of status; income counts base
    income plus completed transactions. Months without a ledger are omitted.
    """
    selected = sorted((l for l in ledgers if l.year == year), key=lambda l: l.month)
    if factor is None:
        factor = _identity(selected[0]) if selected else ConversionFactor(
            base_currency="USD", display_currency="USD"
        )

    months = []
    by_category: dict[str, Decimal] = {}
    for ledger in selected:
        expenses = sum((e.amount for e in ledger.expenses), ZERO)
        income = ledger.base_income + sum(
            (t.amount for t in ledger.income_transactions if t.status == IncomeStatus.COMPLETED),
            ZERO,
        )
        for expense in ledger.expenses:
            by_category[expense.category] = by_category.get(expense.category, ZERO) + expense.amount

        months.append(MonthOverview(
            key=ledger.key,
            month=ledger.month,
            income=display_amount(income, factor),
            expenses=display_amount(expenses, factor),
            budget=display_amount(ledger.limit, factor),
        ))

    return AnnualOverview(
        year=year,
        display_currency=factor.display_currency,
        stale_rates=factor.stale,
        months=months,
        categories=_category_breakdown(by_category, None, factor),
    )
