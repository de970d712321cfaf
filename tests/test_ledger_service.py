"""Tests for manual ledger operations."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from budget_ledger.engine import InstallmentSplitter, LedgerService, RecurringMaterializer
from budget_ledger.models.audit import AuditEventType
from budget_ledger.models.ledger import (
    ExpenseStatus,
    IncomeStatus,
    NewExpense,
    NewRecurringRule,
    RuleType,
)


@pytest.fixture
def service(storage, settings, audit_logger) -> LedgerService:
    return LedgerService(storage, settings=settings, audit_logger=audit_logger)


def groceries() -> NewExpense:
    return NewExpense(amount=Decimal("42.10"), description="Groceries", category="food")


class TestLedgerLifecycle:
    """Tests for month setup and deletion."""

    @pytest.mark.asyncio
    async def test_create_ledger(self, service, storage):
        result = await service.create_ledger(
            2024, 1,
            limit=Decimal("1500"),
            base_currency="usd",
            base_income=Decimal("3200"),
            category_budgets={"food": Decimal("400")},
        )

        assert result.success
        assert result.created_keys == ["2024-01"]
        ledger = await storage.get_ledger("2024-01")
        assert ledger.base_currency == "USD"
        assert ledger.limit == Decimal("1500")
        assert ledger.category_budgets == {"food": Decimal("400")}

    @pytest.mark.asyncio
    async def test_create_ledger_uses_default_currency(self, service, storage):
        await service.create_ledger(2024, 2)

        assert (await storage.get_ledger("2024-02")).base_currency == "EUR"

    @pytest.mark.asyncio
    async def test_create_existing_ledger_is_rejected(self, service, storage, make_ledger):
        """Test that setup never overwrites an existing month."""
        await storage.set_ledger(make_ledger("2024-01", limit=Decimal("800")))

        result = await service.create_ledger(2024, 1, limit=Decimal("1"))

        assert not result.success
        assert result.error_code == "ledger_exists"
        assert (await storage.get_ledger("2024-01")).limit == Decimal("800")

    @pytest.mark.asyncio
    async def test_create_invalid_ledger(self, service):
        result = await service.create_ledger(2024, 13)

        assert not result.success
        assert result.error_code == "invalid_input"

    @pytest.mark.asyncio
    async def test_delete_ledger(self, service, storage, make_ledger, audit_storage):
        await storage.set_ledger(make_ledger("2024-01"))

        result = await service.delete_ledger("2024-01")
        missing = await service.delete_ledger("2024-01")

        assert result.success
        assert await storage.get_ledger("2024-01") is None
        assert missing.error_code == "ledger_not_found"
        assert audit_storage.events[-1].event_type == AuditEventType.LEDGER_DELETED


class TestExpenses:
    """Tests for single expense entries."""

    @pytest.mark.asyncio
    async def test_add_expense(self, service, storage, make_ledger):
        await storage.set_ledger(make_ledger("2024-01"))
        when = datetime(2024, 1, 9, 12, 0, tzinfo=timezone.utc)

        result = await service.add_expense("2024-01", groceries(), when=when)

        assert result.success
        expense = (await storage.get_ledger("2024-01")).expenses[0]
        assert expense.id == result.entry_ids[0]
        assert expense.amount == Decimal("42.10")
        assert expense.status == ExpenseStatus.PAID
        assert expense.date == when
        assert expense.installment_group is None

    @pytest.mark.asyncio
    async def test_add_expense_to_missing_ledger(self, service):
        result = await service.add_expense("2024-01", groceries())

        assert not result.success
        assert result.error_code == "ledger_not_found"

    @pytest.mark.asyncio
    async def test_delete_ungrouped_expense(self, service, storage, make_ledger):
        """Test that a plain expense is removed alone."""
        await storage.set_ledger(make_ledger("2024-01"))
        first = await service.add_expense("2024-01", groceries())
        second = await service.add_expense("2024-01", groceries())

        result = await service.delete_expense("2024-01", first.entry_ids[0])

        assert result.success
        remaining = (await storage.get_ledger("2024-01")).expenses
        assert [e.id for e in remaining] == second.entry_ids

    @pytest.mark.asyncio
    async def test_delete_grouped_expense_removes_group(self, service, storage, settings, make_ledger):
        """Test that deleting one installment removes the whole chain."""
        await storage.set_ledger(make_ledger("2024-01"))
        splitter = InstallmentSplitter(storage, settings)
        split = await splitter.split(
            NewExpense(amount=Decimal("600"), description="Phone", category="shopping"),
            3,
            date(2024, 1, 20),
        )
        await service.add_expense("2024-02", groceries())

        result = await service.delete_expense("2024-02", split.entry_ids[1])

        assert result.success
        assert result.group_id == split.group_id
        assert sorted(result.entry_ids) == sorted(split.entry_ids)
        assert (await storage.get_ledger("2024-01")).expenses == []
        assert [e.description for e in (await storage.get_ledger("2024-02")).expenses] == ["Groceries"]
        assert (await storage.get_ledger("2024-03")).expenses == []

    @pytest.mark.asyncio
    async def test_delete_unknown_expense(self, service, storage, make_ledger):
        await storage.set_ledger(make_ledger("2024-01"))

        result = await service.delete_expense("2024-01", "missing")

        assert result.error_code == "entry_not_found"

    @pytest.mark.asyncio
    async def test_mark_expense_paid(self, service, storage, make_ledger, audit_storage):
        await storage.set_ledger(make_ledger("2024-01"))
        added = await service.add_expense(
            "2024-01", groceries(), status=ExpenseStatus.PENDING,
        )

        result = await service.mark_expense_paid("2024-01", added.entry_ids[0])

        assert result.success
        expenses = (await storage.get_ledger("2024-01")).expenses
        assert len(expenses) == 1
        assert expenses[0].status == ExpenseStatus.PAID
        assert audit_storage.events[-1].event_type == AuditEventType.ENTRY_STATUS_UPDATED

    @pytest.mark.asyncio
    async def test_failed_write_is_retryable(self, service, storage, make_ledger):
        await storage.set_ledger(make_ledger("2024-01"))
        storage.fail_next_commit()

        result = await service.add_expense("2024-01", groceries())

        assert not result.success
        assert result.retryable
        assert (await storage.get_ledger("2024-01")).expenses == []


class TestIncome:
    """Tests for income transactions."""

    @pytest.mark.asyncio
    async def test_add_and_complete_income(self, service, storage, make_ledger):
        await storage.set_ledger(make_ledger("2024-01"))

        added = await service.add_income("2024-01", "Freelance", Decimal("800"), "freelance")
        completed = await service.mark_income_completed("2024-01", added.entry_ids[0])

        assert added.success and completed.success
        income = (await storage.get_ledger("2024-01")).income_transactions
        assert len(income) == 1
        assert income[0].status == IncomeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_add_invalid_income(self, service, storage, make_ledger):
        await storage.set_ledger(make_ledger("2024-01"))

        result = await service.add_income("2024-01", "Refund", Decimal("-5"), "other")

        assert result.error_code == "invalid_input"

    @pytest.mark.asyncio
    async def test_delete_income(self, service, storage, make_ledger):
        await storage.set_ledger(make_ledger("2024-01"))
        added = await service.add_income("2024-01", "Gift", Decimal("50"), "other")

        result = await service.delete_income("2024-01", added.entry_ids[0])

        assert result.success
        assert (await storage.get_ledger("2024-01")).income_transactions == []


def gym(**fields) -> dict:
    return {
        "description": "Gym",
        "amount": "35.00",
        "category": "health",
        "type": "expense",
        "start_date": "2024-01-05",
        **fields,
    }


class TestRecurringRules:
    """Tests for adding and removing recurring rules."""

    @pytest.mark.asyncio
    async def test_add_rule_starts_cursor_at_start_date(self, service, storage, audit_storage):
        result = await service.add_rule(gym())

        assert result.success
        rule = await storage.get_rule(result.entry_ids[0])
        assert rule.description == "Gym"
        assert rule.amount == Decimal("35.00")
        assert rule.type == RuleType.EXPENSE
        assert rule.next_execution_date == date(2024, 1, 5)
        assert audit_storage.events[-1].event_type == AuditEventType.RULE_CREATED

    @pytest.mark.asyncio
    async def test_add_rule_from_model(self, service, storage):
        new_rule = NewRecurringRule(**gym(type="income", description="Rent received"))

        result = await service.add_rule(new_rule)

        assert result.success
        assert (await storage.get_rule(result.entry_ids[0])).type == RuleType.INCOME

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fields", [
        {"next_execution_date": "2024-06-05"},
        {"id": "chosen-id"},
    ])
    async def test_caller_cannot_set_cursor_or_id(self, service, storage, fields):
        """Test that progress and identity are never taken from the caller."""
        result = await service.add_rule(gym(**fields))

        assert not result.success
        assert result.error_code == "invalid_input"
        assert await storage.list_rules() == []

    @pytest.mark.asyncio
    async def test_invalid_rule_fields(self, service, storage):
        result = await service.add_rule(gym(amount="-10"))

        assert result.error_code == "invalid_input"
        assert await storage.list_rules() == []

    @pytest.mark.asyncio
    async def test_unsupported_frequency(self, service, storage):
        result = await service.add_rule(gym(frequency="weekly"))

        assert not result.success
        assert result.error_code == "invalid_rule"
        assert await storage.list_rules() == []

    @pytest.mark.asyncio
    async def test_delete_rule_keeps_generated_entries(
        self, service, storage, settings, audit_logger, audit_storage
    ):
        """Test that deleting a rule stops it without touching past entries."""
        added = await service.add_rule(gym())
        rule_id = added.entry_ids[0]
        await RecurringMaterializer(storage, settings, audit_logger).run(date(2024, 3, 10))

        result = await service.delete_rule(rule_id)

        assert result.success
        assert await storage.get_rule(rule_id) is None
        assert len((await storage.get_ledger("2024-01")).expenses) == 1
        assert len((await storage.get_ledger("2024-02")).expenses) == 1
        assert audit_storage.events[-1].event_type == AuditEventType.RULE_DELETED

    @pytest.mark.asyncio
    async def test_delete_unknown_rule(self, service):
        result = await service.delete_rule("missing")

        assert not result.success
        assert result.error_code == "rule_not_found"
        assert not result.retryable


class TestBudgetMetadata:
    """Tests for limit, goal and category budget updates."""

    @pytest.mark.asyncio
    async def test_update_limit(self, service, storage, make_ledger, audit_storage):
        await storage.set_ledger(make_ledger("2024-01"))

        result = await service.update_limit("2024-01", Decimal("1250.50"))

        assert result.success
        assert (await storage.get_ledger("2024-01")).limit == Decimal("1250.50")
        event = audit_storage.events[-1]
        assert event.event_type == AuditEventType.LEDGER_UPDATED
        assert event.details["fields"] == ["limit"]

    @pytest.mark.asyncio
    async def test_update_income_goal_and_budgets(self, service, storage, make_ledger):
        await storage.set_ledger(make_ledger("2024-01"))

        await service.update_income_goal("2024-01", Decimal("5000"))
        await service.update_category_budgets("2024-01", {"food": Decimal("300")})

        ledger = await storage.get_ledger("2024-01")
        assert ledger.income_goal == Decimal("5000")
        assert ledger.category_budgets == {"food": Decimal("300")}

    @pytest.mark.asyncio
    async def test_negative_limit_rejected(self, service, storage, make_ledger):
        await storage.set_ledger(make_ledger("2024-01"))

        result = await service.update_limit("2024-01", Decimal("-1"))

        assert result.error_code == "invalid_input"

    @pytest.mark.asyncio
    async def test_base_currency_is_immutable(self, service, storage, make_ledger):
        """Test that a ledger's currency cannot change after creation."""
        await storage.set_ledger(make_ledger("2024-01"))

        result = await service.update_fields("2024-01", {"base_currency": "EUR"})

        assert not result.success
        assert result.error_code == "immutable_field"
        assert not result.retryable
        assert (await storage.get_ledger("2024-01")).base_currency == "USD"

    @pytest.mark.asyncio
    async def test_entries_cannot_be_replaced_wholesale(self, service, storage, make_ledger):
        await storage.set_ledger(make_ledger("2024-01"))

        result = await service.update_fields("2024-01", {"expenses": []})

        assert result.error_code == "invalid_input"

    @pytest.mark.asyncio
    async def test_update_missing_ledger(self, service):
        result = await service.update_limit("2030-01", Decimal("10"))

        assert result.error_code == "ledger_not_found"
