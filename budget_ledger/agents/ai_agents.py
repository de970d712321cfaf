"""
AI Collaborator

DESIGN DECISION: The Gemini model is built lazily, once, by whoever owns
the session (the orchestrator), and injected here. Nothing reads an API
key or a client from module-level state.

BOUNDARIES:
- CAN: Suggest a category, read a receipt, write budgeting advice
- CANNOT: Write to a ledger. Every suggestion goes back to the user
- Calls are single attempts; a failure is reported, never retried
"""

import json
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Sequence
from uuid import UUID

import google.generativeai as genai
from pydantic import BaseModel, Field, ValidationError

from budget_ledger.audit import AuditLogger
from budget_ledger.config import GeminiSettings, get_settings


DEFAULT_EXPENSE_CATEGORIES = (
    "food",
    "transport",
    "housing",
    "utilities",
    "health",
    "entertainment",
    "shopping",
    "education",
    "other",
)


class AIServiceError(Exception):
    """The model call failed or returned something unusable."""


class ReceiptScan(BaseModel):
    """What the model read off a receipt. The user confirms before saving."""

    amount: Decimal = Field(..., gt=0)
    description: str = Field(..., min_length=1)
    category: str


def build_model(settings: Optional[GeminiSettings] = None) -> genai.GenerativeModel:
    """Configure the SDK and build the model. Call once per process."""
    settings = settings or get_settings().gemini
    genai.configure(api_key=settings.api_key)
    return genai.GenerativeModel(
        model_name=settings.model_name,
        generation_config={
            "temperature": settings.temperature,
            "max_output_tokens": settings.max_tokens,
        },
    )


def _extract_json(text: str) -> dict[str, Any]:
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        raise AIServiceError("Model response contained no JSON object")
    try:
        return json.loads(text[start:end])
    except json.JSONDecodeError as e:
        raise AIServiceError(f"Model returned invalid JSON: {e}") from e


class CategoryAdvisor:
    """
    Best-effort AI helpers around expense entry.

    Usage:
        advisor = CategoryAdvisor(model=build_model())
        category = await advisor.suggest_category("Uber to airport")
    """

    def __init__(
        self,
        model: Optional[Any] = None,
        settings: Optional[GeminiSettings] = None,
        categories: Sequence[str] = DEFAULT_EXPENSE_CATEGORIES,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._model = model
        self._settings = settings
        self._categories = tuple(categories)
        self._audit_logger = audit_logger

    @property
    def model(self):
        if self._model is None:
            self._model = build_model(self._settings)
        return self._model

    async def suggest_category(
        self,
        description: str,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """
        Suggest one of the known categories for an expense description.

        Anything the model answers outside the known list becomes "other".
        """
        prompt = f"""You are categorizing an expense in a personal budgeting app.

Expense description: {description}

Available categories: {', '.join(self._categories)}

Respond with ONLY the category id, nothing else."""

        text = await self._generate(prompt, correlation_id)
        answer = text.strip().strip('"').strip("'").lower()
        if answer in self._categories:
            return answer
        return "other" if "other" in self._categories else self._categories[-1]

    async def scan_receipt(
        self,
        image: bytes,
        mime_type: str,
        correlation_id: Optional[UUID] = None,
    ) -> ReceiptScan:
        """Read amount, description and category from a receipt image."""
        prompt = f"""Extract the purchase from this receipt.

Respond with ONLY a JSON object in this exact format:
{{"amount": 12.34, "description": "short description", "category": "category_id"}}

The category must be one of: {', '.join(self._categories)}"""

        text = await self._generate(
            [prompt, {"mime_type": mime_type, "data": image}],
            correlation_id,
            generation_config={"response_mime_type": "application/json"},
        )
        data = _extract_json(text)

        try:
            scan = ReceiptScan(
                amount=Decimal(str(data.get("amount"))),
                description=str(data.get("description", "")),
                category=str(data.get("category", "other")).lower(),
            )
        except (InvalidOperation, ValidationError) as e:
            raise AIServiceError(f"Receipt could not be read: {e}") from e

        if scan.category not in self._categories:
            scan.category = "other"
        return scan

    async def generate_advice(
        self,
        prompt: str,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """Free-text budgeting advice for a prompt built by the caller."""
        return (await self._generate(prompt, correlation_id)).strip()

    async def _generate(
        self,
        contents: Any,
        correlation_id: Optional[UUID],
        **kwargs: Any,
    ) -> str:
        try:
            response = await self.model.generate_content_async(contents, **kwargs)
            return response.text
        except Exception as e:
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    service="gemini",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise AIServiceError(f"AI request failed: {e}") from e
