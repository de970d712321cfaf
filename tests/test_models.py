"""
Tests for Budget Ledger

Test strategy:
1. Unit tests for individual components (models, batches, periods)
2. Engine tests against the in-memory store (atomic, failure-injectable)
3. No real API calls in tests (in-memory store, mock HTTP transport, fake model)
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from budget_ledger.models.ledger import (
    ExpenseEntry,
    ExpenseStatus,
    IncomeEntry,
    IncomeStatus,
    InstallmentGroup,
    MonthlyLedger,
    NewExpense,
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


class TestLedgerKeys:
    """Tests for "YYYY-MM" ledger keys."""

    def test_ledger_key_is_zero_padded(self):
        assert ledger_key(2024, 3) == "2024-03"

    def test_ledger_key_for_datetime(self):
        assert ledger_key_for(datetime(2024, 12, 31, 23, 0, tzinfo=timezone.utc)) == "2024-12"

    def test_parse_ledger_key(self):
        assert parse_ledger_key("2025-01") == (2025, 1)

    @pytest.mark.parametrize("key", ["2024-13", "2024-1", "24-01", "2024/01", "abc"])
    def test_parse_rejects_malformed_keys(self, key):
        with pytest.raises(ValueError):
            parse_ledger_key(key)

    def test_ledger_key_rejects_bad_month(self):
        with pytest.raises(ValueError):
            ledger_key(2024, 0)


class TestEntryModels:
    """Tests for expense and income entries."""

    def test_expense_entry_defaults(self):
        """Test that a manual expense is paid and ungrouped by default."""
        entry = ExpenseEntry(amount=Decimal("10.50"), description="Taxi", category="transport")
        assert entry.status == ExpenseStatus.PAID
        assert entry.payment_method == PaymentMethod.CASH
        assert entry.group_id is None
        assert entry.id

    def test_expense_strips_whitespace(self):
        entry = ExpenseEntry(amount=Decimal("1"), description="  Taxi  ", category="transport")
        assert entry.description == "Taxi"

    @pytest.mark.parametrize("amount", ["0", "-5", "1.234"])
    def test_expense_rejects_invalid_amounts(self, amount):
        """Test that amounts are positive with at most two places."""
        with pytest.raises(ValueError):
            ExpenseEntry(amount=Decimal(amount), description="X", category="other")

    def test_payment_method_values(self):
        assert PaymentMethod("credit-card") == PaymentMethod.CREDIT_CARD

    def test_installment_group_position_bounds(self):
        """Test that a position cannot exceed the group size."""
        InstallmentGroup(group_id="g", position=3, total=3)
        with pytest.raises(ValueError, match="cannot exceed total"):
            InstallmentGroup(group_id="g", position=4, total=3)
        with pytest.raises(ValueError):
            InstallmentGroup(group_id="g", position=1, total=1)

    def test_grouped_entry_exposes_group_id(self):
        entry = ExpenseEntry(
            amount=Decimal("5"),
            description="Sofa",
            category="home",
            installment_group=InstallmentGroup(group_id="g-1", position=1, total=2),
        )
        assert entry.group_id == "g-1"

    def test_income_entry_defaults_to_pending(self):
        income = IncomeEntry(name="Bonus", amount=Decimal("100"), category="salary")
        assert income.status == IncomeStatus.PENDING

    def test_new_expense_validation(self):
        with pytest.raises(ValueError):
            NewExpense(amount=Decimal("10"), description="", category="food")


class TestMonthlyLedger:
    """Tests for the monthly ledger document."""

    def test_for_key(self):
        ledger = MonthlyLedger.for_key("2024-02", base_currency="usd")
        assert (ledger.year, ledger.month) == (2024, 2)
        assert ledger.key == "2024-02"
        assert ledger.base_currency == "USD"
        assert ledger.limit == Decimal("0")

    def test_rejects_invalid_currency(self):
        with pytest.raises(ValueError):
            MonthlyLedger.for_key("2024-02", base_currency="dollars")

    def test_document_round_trip(self):
        """Test that a ledger survives serialization to the store."""
        ledger = MonthlyLedger.for_key(
            "2024-02",
            base_currency="EUR",
            limit=Decimal("1200.50"),
            category_budgets={"food": Decimal("300")},
            expenses=[ExpenseEntry(amount=Decimal("12.30"), description="Book", category="education")],
        )
        document = ledger.to_document()

        assert document["id"] == "2024-02"
        assert document["limit"] == "1200.50"
        assert MonthlyLedger.from_document(document) == ledger

    def test_find_entries(self):
        expense = ExpenseEntry(amount=Decimal("1"), description="A", category="other")
        income = IncomeEntry(name="B", amount=Decimal("2"), category="other")
        ledger = MonthlyLedger.for_key(
            "2024-02", base_currency="EUR", expenses=[expense], income_transactions=[income],
        )
        assert ledger.find_expense(expense.id) == expense
        assert ledger.find_income(income.id) == income
        assert ledger.find_expense("missing") is None


class TestRecurringRule:
    """Tests for recurring rules."""

    def test_cursor_defaults_to_start_date(self):
        rule = RecurringRule(
            description="Gym",
            amount=Decimal("30"),
            category="health",
            type=RuleType.EXPENSE,
            start_date=date(2024, 1, 15),
        )
        assert rule.next_execution_date == date(2024, 1, 15)
        assert rule.frequency == "monthly"

    def test_cursor_cannot_precede_start(self):
        with pytest.raises(ValueError, match="cannot be before start date"):
            RecurringRule(
                description="Gym",
                amount=Decimal("30"),
                category="health",
                type=RuleType.EXPENSE,
                start_date=date(2024, 1, 15),
                next_execution_date=date(2024, 1, 1),
            )

    def test_document_round_trip(self):
        rule = RecurringRule(
            description="Salary",
            amount=Decimal("2500"),
            category="salary",
            type="income",
            start_date=date(2024, 1, 1),
            next_execution_date=date(2024, 4, 1),
        )
        document = rule.to_document()
        assert document["next_execution_date"] == "2024-04-01"
        assert RecurringRule.from_document(document) == rule


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.LEDGER_CREATED,
            description="Ledger created",
        )
        assert event.event_type == AuditEventType.LEDGER_CREATED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.ENTRY_ADDED,
            description="Expense added",
            details={"ledger": "2024-01", "amount": "10.00"},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "entry_added"
        assert log_dict["details"]["ledger"] == "2024-01"

    def test_audit_event_to_document(self):
        """Test that details are stored as a JSON string."""
        event = AuditEvent(
            event_type=AuditEventType.RATES_UNAVAILABLE,
            description="No rates",
            details={"base": "EUR"},
        )
        document = event.to_document()
        assert document["details"] == '{"base": "EUR"}'
        assert document["event_type"] == "rates_unavailable"

    def test_builder_installment_split(self):
        correlation_id = uuid4()

        event = AuditEventBuilder.installment_split(
            group_id="g-1",
            ledger_keys=["2024-01", "2024-02"],
            amount="300",
            created_keys=["2024-02"],
            correlation_id=correlation_id,
        )

        assert event.event_type == AuditEventType.INSTALLMENT_SPLIT
        assert event.entity_id == "g-1"
        assert event.correlation_id == correlation_id
        assert event.details["created_ledgers"] == ["2024-02"]

    def test_builder_recurring_failed_is_error(self):
        event = AuditEventBuilder.recurring_failed(
            rule_id="rent",
            error_code="batch_write_failed",
            error_message="rejected",
            correlation_id=uuid4(),
        )
        assert event.severity == AuditSeverity.ERROR
        assert event.error_code == "batch_write_failed"

    def test_tick_completed_with_failures_is_warning(self):
        event = AuditEventBuilder.recurring_tick_completed(3, 1, uuid4())
        assert event.severity == AuditSeverity.WARNING


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
