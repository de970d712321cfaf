"""Tests for write batches and the storage implementations."""

from datetime import date
from decimal import Decimal

import pytest
from google.api_core import exceptions as google_exceptions
from google.cloud import firestore

from budget_ledger.models.audit import AuditEventBuilder, AuditEventType
from budget_ledger.models.ledger import ExpenseEntry, IncomeEntry
from budget_ledger.services.storage import (
    BatchOpType,
    ConflictError,
    FirestoreAuditStorage,
    FirestoreLedgerStorage,
    NotFoundError,
    StorageError,
    WriteBatch,
)
from budget_ledger.services.storage.firestore import _translate


def coffee() -> ExpenseEntry:
    return ExpenseEntry(amount=Decimal("3.20"), description="Coffee", category="food")


class TestWriteBatch:
    """Tests for batch assembly."""

    def test_consecutive_appends_are_merged(self):
        batch = WriteBatch()
        batch.append_expense("2024-01", coffee())
        batch.append_expense("2024-01", coffee())
        batch.append_expense("2024-02", coffee())

        assert len(batch) == 2
        assert len(batch.operations[0].expenses) == 2
        assert batch.ledger_keys == ["2024-01", "2024-02"]

    def test_created_ledger_absorbs_appends(self, make_ledger):
        """Test that a lazily created month is written once, already seeded."""
        batch = WriteBatch()
        batch.create_ledger(make_ledger("2024-02"))
        batch.append_expense("2024-02", coffee())
        batch.append_income("2024-02", IncomeEntry(name="Tip", amount=Decimal("5"), category="other"))

        assert len(batch) == 1
        created = batch.operations[0]
        assert created.op == BatchOpType.CREATE_LEDGER
        assert len(created.ledger.expenses) == 1
        assert len(created.ledger.income_transactions) == 1
        assert batch.created_keys == ["2024-02"]

    def test_ledger_created_twice_is_rejected(self, make_ledger):
        batch = WriteBatch()
        batch.create_ledger(make_ledger("2024-02"))
        with pytest.raises(ValueError):
            batch.create_ledger(make_ledger("2024-02"))

    def test_rule_cursor_is_not_a_ledger_key(self):
        batch = WriteBatch()
        batch.append_expense("2024-01", coffee())
        batch.update_rule_cursor("rent", date(2024, 2, 1))

        assert batch.ledger_keys == ["2024-01"]
        assert len(batch) == 2


class TestInMemoryStorage:
    """Tests for the in-memory store's batch semantics."""

    @pytest.mark.asyncio
    async def test_batch_is_all_or_nothing(self, storage, make_ledger):
        """Test that a failing operation late in a batch discards earlier ones."""
        await storage.set_ledger(make_ledger("2024-01"))
        await storage.set_ledger(make_ledger("2024-02"))
        batch = WriteBatch()
        batch.append_expense("2024-01", coffee())
        batch.create_ledger(make_ledger("2024-02"))

        with pytest.raises(ConflictError):
            await storage.commit(batch)

        assert (await storage.get_ledger("2024-01")).expenses == []
        assert storage.committed_batches == []

    @pytest.mark.asyncio
    async def test_append_to_missing_ledger_fails(self, storage):
        batch = WriteBatch()
        batch.append_expense("2024-01", coffee())

        with pytest.raises(NotFoundError):
            await storage.commit(batch)

    @pytest.mark.asyncio
    async def test_cursor_update_requires_rule(self, storage):
        batch = WriteBatch()
        batch.update_rule_cursor("ghost", date(2024, 2, 1))

        with pytest.raises(NotFoundError):
            await storage.commit(batch)

    @pytest.mark.asyncio
    async def test_append_is_array_union(self, storage, make_ledger):
        """Test that appending an identical entry twice stores it once."""
        await storage.set_ledger(make_ledger("2024-01"))
        entry = coffee()
        for _ in range(2):
            batch = WriteBatch()
            batch.append_expense("2024-01", entry)
            await storage.commit(batch)

        assert len((await storage.get_ledger("2024-01")).expenses) == 1

    @pytest.mark.asyncio
    async def test_injected_failure_fires_once(self, storage, make_ledger):
        await storage.set_ledger(make_ledger("2024-01"))
        storage.fail_next_commit()
        batch = WriteBatch()
        batch.append_expense("2024-01", coffee())

        with pytest.raises(StorageError):
            await storage.commit(batch)
        await storage.commit(batch)

        assert len((await storage.get_ledger("2024-01")).expenses) == 1

    @pytest.mark.asyncio
    async def test_list_ledgers_newest_first(self, storage, make_ledger):
        for key in ("2023-12", "2024-02", "2024-01"):
            await storage.set_ledger(make_ledger(key))

        assert [l.key for l in await storage.list_ledgers()] == ["2024-02", "2024-01", "2023-12"]

    @pytest.mark.asyncio
    async def test_update_fields_rejects_invalid_document(self, storage, make_ledger):
        await storage.set_ledger(make_ledger("2024-01"))

        with pytest.raises(ValueError):
            await storage.update_ledger_fields("2024-01", {"limit": "-10"})

        assert (await storage.get_ledger("2024-01")).limit == Decimal("1000")


class FakeDocument:
    def __init__(self, path: str):
        self.path = path


class FakeCollection:
    def __init__(self, name: str):
        self.name = name

    def document(self, key: str) -> FakeDocument:
        return FakeDocument(f"{self.name}/{key}")


class FakeWriteBatch:
    def __init__(self, error: Exception = None):
        self.writes = []
        self.committed = False
        self._error = error

    def create(self, reference, data):
        self.writes.append(("create", reference.path, data))

    def update(self, reference, data):
        self.writes.append(("update", reference.path, data))

    async def commit(self):
        if self._error:
            raise self._error
        self.committed = True


class FakeFirestoreClient:
    """Stands in for FirestoreClient: collection references and batches only."""

    def __init__(self, error: Exception = None):
        self.write = FakeWriteBatch(error)

    def connect(self):
        return self

    def batch(self) -> FakeWriteBatch:
        return self.write

    def ledgers(self) -> FakeCollection:
        return FakeCollection("monthlyData")

    def rules(self) -> FakeCollection:
        return FakeCollection("recurringTransactions")


class TestFirestoreLedgerStorage:
    """Tests for batch translation into Firestore writes."""

    @pytest.fixture
    def batch(self, make_ledger) -> WriteBatch:
        batch = WriteBatch()
        batch.create_ledger(make_ledger("2024-02"))
        batch.append_expense("2024-01", coffee())
        batch.remove_expenses("2024-03", [coffee()])
        batch.update_rule_cursor("rent", date(2024, 3, 1))
        return batch

    @pytest.mark.asyncio
    async def test_commit_maps_operations(self, batch):
        client = FakeFirestoreClient()
        storage = FirestoreLedgerStorage(client)

        await storage.commit(batch)

        writes = client.write.writes
        assert client.write.committed
        assert [(kind, path) for kind, path, _ in writes] == [
            ("create", "monthlyData/2024-02"),
            ("update", "monthlyData/2024-01"),
            ("update", "monthlyData/2024-03"),
            ("update", "recurringTransactions/rent"),
        ]
        assert writes[0][2]["id"] == "2024-02"
        assert isinstance(writes[1][2]["expenses"], firestore.ArrayUnion)
        assert isinstance(writes[2][2]["expenses"], firestore.ArrayRemove)
        assert writes[3][2] == {"next_execution_date": "2024-03-01"}

    @pytest.mark.asyncio
    async def test_commit_translates_conflict(self, batch):
        client = FakeFirestoreClient(google_exceptions.AlreadyExists("exists"))
        storage = FirestoreLedgerStorage(client)

        with pytest.raises(ConflictError) as info:
            await storage.commit(batch)
        assert info.value.retryable
        assert not client.write.committed


class TestFirestoreAuditStorage:
    """Tests for reading audit documents back into events."""

    def test_details_are_decoded(self):
        event = AuditEventBuilder.rule_created("gym", "Gym", date(2024, 1, 5))

        parsed = FirestoreAuditStorage._document_to_event(event.to_document())

        assert parsed.event_type == AuditEventType.RULE_CREATED
        assert parsed.entity_id == "gym"
        assert parsed.details == {"start_date": "2024-01-05"}
        assert parsed.timestamp == event.timestamp

    def test_empty_details(self):
        event = AuditEventBuilder.rule_deleted("gym")

        parsed = FirestoreAuditStorage._document_to_event(event.to_document())

        assert parsed.details == {}


class TestErrorTranslation:
    """Tests for mapping SDK errors onto the storage taxonomy."""

    def test_transient_errors_are_retryable(self):
        assert _translate(google_exceptions.ServiceUnavailable("down"), "x").retryable
        assert _translate(google_exceptions.DeadlineExceeded("slow"), "x").retryable

    def test_not_found(self):
        assert isinstance(_translate(google_exceptions.NotFound("gone"), "x"), NotFoundError)

    def test_permission_denied_is_final(self):
        error = _translate(google_exceptions.PermissionDenied("no"), "x")
        assert not error.retryable

    def test_storage_errors_pass_through(self):
        original = StorageError("boom", retryable=True)
        assert _translate(original, "x") is original
