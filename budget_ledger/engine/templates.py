"""
Ledger Templates

When a split or a recurring rule needs to write into a month that has no
ledger yet, the month is created from a template: the current ledger's
limit, base currency and category budgets, seeded only with the new entry.
Income, goals and existing entries are never copied.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from budget_ledger.config import LedgerSettings
from budget_ledger.models.ledger import MonthlyLedger
from budget_ledger.services.storage import LedgerStorageInterface, WriteBatch


class LedgerTemplate(BaseModel):
    """The parts of a ledger that carry over into lazily created months."""

    limit: Decimal = Field(default=Decimal("0"), ge=0)
    base_currency: str = Field(..., pattern="^[A-Z]{3}$")
    category_budgets: Optional[dict[str, Decimal]] = None
    source_key: Optional[str] = Field(
        default=None,
        description="Ledger the template was cloned from (None for defaults)"
    )

    @classmethod
    def from_ledger(cls, ledger: MonthlyLedger) -> "LedgerTemplate":
        return cls(
            limit=ledger.limit,
            base_currency=ledger.base_currency,
            category_budgets=dict(ledger.category_budgets) if ledger.category_budgets else None,
            source_key=ledger.key,
        )

    @classmethod
    def from_settings(cls, settings: LedgerSettings) -> "LedgerTemplate":
        return cls(
            limit=Decimal(str(settings.default_limit)),
            base_currency=settings.default_currency,
        )

    def materialize(self, key: str) -> MonthlyLedger:
        """A fresh, empty ledger for `key` built from this template."""
        return MonthlyLedger.for_key(
            key,
            limit=self.limit,
            base_currency=self.base_currency,
            category_budgets=dict(self.category_budgets) if self.category_budgets else None,
        )


async def resolve_template(
    storage: LedgerStorageInterface,
    reference_key: Optional[str],
    settings: LedgerSettings,
) -> LedgerTemplate:
    """
    Pick the ledger new months are cloned from.

    Order: the ledger at reference_key; else the latest ledger not after
    it; else the newest ledger; else configured defaults.
    """
    if reference_key:
        ledger = await storage.get_ledger(reference_key)
        if ledger is not None:
            return LedgerTemplate.from_ledger(ledger)

    ledgers = await storage.list_ledgers()
    if ledgers:
        ledgers.sort(key=lambda l: l.key, reverse=True)
        earlier = [l for l in ledgers if reference_key and l.key <= reference_key]
        return LedgerTemplate.from_ledger(earlier[0] if earlier else ledgers[0])

    return LedgerTemplate.from_settings(settings)


class TemplateSource:
    """Resolves the template once, on first need."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        reference_key: Optional[str],
        settings: LedgerSettings,
    ):
        self._storage = storage
        self._reference_key = reference_key
        self._settings = settings
        self._template: Optional[LedgerTemplate] = None

    async def get(self) -> LedgerTemplate:
        if self._template is None:
            self._template = await resolve_template(
                self._storage, self._reference_key, self._settings
            )
        return self._template


class LedgerProvisioner:
    """
    Makes sure every ledger a batch writes into will exist once it commits.

    Existing ledgers are appended to; missing ones are created in the same
    batch with create-if-absent semantics.
    """

    def __init__(self, storage: LedgerStorageInterface, templates: TemplateSource):
        self._storage = storage
        self._templates = templates
        self._known: dict[str, bool] = {}

    async def ensure(self, batch: WriteBatch, key: str) -> bool:
        """Returns True if this batch creates the ledger."""
        if key in batch.created_keys:
            return False
        if key not in self._known:
            self._known[key] = await self._storage.get_ledger(key) is not None
        if self._known[key]:
            return False

        template = await self._templates.get()
        batch.create_ledger(template.materialize(key))
        return True
