"""AI collaborator package."""

from budget_ledger.agents.ai_agents import (
    DEFAULT_EXPENSE_CATEGORIES,
    AIServiceError,
    CategoryAdvisor,
    ReceiptScan,
    build_model,
)

__all__ = [
    "DEFAULT_EXPENSE_CATEGORIES",
    "AIServiceError",
    "CategoryAdvisor",
    "ReceiptScan",
    "build_model",
]
