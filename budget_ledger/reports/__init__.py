"""Ledger reporting package."""

from budget_ledger.reports.summary import (
    AnnualOverview,
    CategorySpending,
    MonthlySummary,
    MonthOverview,
    annual_overview,
    monthly_summary,
)

__all__ = [
    "AnnualOverview",
    "CategorySpending",
    "MonthlySummary",
    "MonthOverview",
    "annual_overview",
    "monthly_summary",
]
