"""Shared fixtures: in-memory store, audit trail and fast-retry settings."""

from decimal import Decimal

import pytest

from budget_ledger.audit import AuditLogger
from budget_ledger.config import LedgerSettings
from budget_ledger.models.ledger import MonthlyLedger
from budget_ledger.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage


@pytest.fixture
def settings() -> LedgerSettings:
    return LedgerSettings(
        default_currency="EUR",
        default_limit=500.0,
        retry_attempts=3,
        retry_wait_min=0.0,
        retry_wait_max=0.0,
    )


@pytest.fixture
def storage() -> InMemoryLedgerStorage:
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


def make_ledger(key: str, **fields) -> MonthlyLedger:
    """A ledger for `key` with USD / 1000 defaults."""
    fields.setdefault("limit", Decimal("1000"))
    fields.setdefault("base_currency", "USD")
    return MonthlyLedger.for_key(key, **fields)


@pytest.fixture(name="make_ledger")
def make_ledger_fixture():
    return make_ledger
