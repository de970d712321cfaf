"""
Firestore Storage Implementation

DESIGN DECISION: Ledgers live in Firestore, one document per month under
users/{uid}/monthlyData/{YYYY-MM}, recurring rules under
users/{uid}/recurringTransactions/{rule_id}.

TRADEOFFS:
- Batched writes are atomic, but two batches touching the same document
  are not isolated from each other (last write wins)
- We therefore append with ArrayUnion instead of rewriting whole lists,
  and create lazily-made ledgers with create() so a concurrent creation
  fails the batch instead of being silently overwritten
- No range queries are needed: only get-by-key and "list all for user"

The implementation follows the abstract interface, so the engine can be
tested against the in-memory store without touching the SDK.
"""

import json
from typing import Any, Optional
from uuid import UUID

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.oauth2.service_account import Credentials
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from budget_ledger.config import FirestoreSettings, get_settings
from budget_ledger.models.audit import AuditEvent
from budget_ledger.models.ledger import MonthlyLedger, RecurringRule
from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    BatchOpType,
    ConflictError,
    ConnectionError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
    WriteBatch,
)


TRANSIENT_ERRORS = (
    google_exceptions.Aborted,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
    google_exceptions.ServiceUnavailable,
    google_exceptions.TooManyRequests,
)


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, StorageError) and error.retryable


def _translate(error: Exception, action: str) -> StorageError:
    """Map SDK errors onto the storage taxonomy."""
    if isinstance(error, StorageError):
        return error
    if isinstance(error, google_exceptions.AlreadyExists):
        return ConflictError(f"Failed to {action}: {error}")
    if isinstance(error, google_exceptions.NotFound):
        return NotFoundError(f"Failed to {action}: {error}")
    if isinstance(error, TRANSIENT_ERRORS):
        return StorageError(f"Failed to {action}: {error}", retryable=True)
    return StorageError(f"Failed to {action}: {error}")


read_retry = retry(
    retry=retry_if_exception(_is_transient),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    reraise=True,
)


class FirestoreClient:
    """
    Low-level Firestore client wrapper.

    Handles authentication and collection references.
    """

    def __init__(self, settings: Optional[FirestoreSettings] = None):
        self._client: Optional[firestore.AsyncClient] = None
        self._settings = settings or get_settings().firestore

    def connect(self) -> firestore.AsyncClient:
        """
        Create the async client on first use.

        Uses the service account file when configured, application default
        credentials otherwise.
        """
        if self._client is None:
            try:
                credentials = None
                if self._settings.credentials_path:
                    credentials = Credentials.from_service_account_file(
                        self._settings.credentials_path,
                    )
                self._client = firestore.AsyncClient(
                    project=self._settings.project_id,
                    credentials=credentials,
                )
            except FileNotFoundError:
                raise ConnectionError(
                    f"Firestore credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Firestore: {e}")

        return self._client

    def _user_document(self):
        return self.connect().collection("users").document(self._settings.user_id)

    def ledgers(self):
        return self._user_document().collection(self._settings.ledgers_collection)

    def rules(self):
        return self._user_document().collection(self._settings.rules_collection)

    def audit(self):
        return self._user_document().collection(self._settings.audit_collection)


class FirestoreLedgerStorage(LedgerStorageInterface):
    """
    Firestore implementation of ledger storage.

    Entries are stored inline in the month document as arrays of maps,
    which is what makes ArrayUnion / ArrayRemove usable for appends and
    group deletion.
    """

    def __init__(self, client: Optional[FirestoreClient] = None):
        self._client = client or FirestoreClient()

    # -- ledgers -------------------------------------------------------------

    @read_retry
    async def get_ledger(self, key: str) -> Optional[MonthlyLedger]:
        try:
            snapshot = await self._client.ledgers().document(key).get()
        except Exception as e:
            raise _translate(e, f"get ledger {key}")
        if not snapshot.exists:
            return None
        return MonthlyLedger.from_document(snapshot.to_dict())

    async def set_ledger(self, ledger: MonthlyLedger) -> bool:
        try:
            await self._client.ledgers().document(ledger.key).set(ledger.to_document())
            return True
        except Exception as e:
            raise _translate(e, f"save ledger {ledger.key}")

    async def update_ledger_fields(self, key: str, fields: dict[str, Any]) -> bool:
        try:
            await self._client.ledgers().document(key).update(fields)
            return True
        except Exception as e:
            raise _translate(e, f"update ledger {key}")

    async def delete_ledger(self, key: str) -> bool:
        try:
            await self._client.ledgers().document(key).delete()
            return True
        except Exception as e:
            raise _translate(e, f"delete ledger {key}")

    @read_retry
    async def list_ledgers(self) -> list[MonthlyLedger]:
        try:
            query = self._client.ledgers().order_by(
                "id", direction=firestore.Query.DESCENDING
            )
            return [
                MonthlyLedger.from_document(snapshot.to_dict())
                async for snapshot in query.stream()
            ]
        except Exception as e:
            raise _translate(e, "list ledgers")

    # -- recurring rules -----------------------------------------------------

    @read_retry
    async def get_rule(self, rule_id: str) -> Optional[RecurringRule]:
        try:
            snapshot = await self._client.rules().document(rule_id).get()
        except Exception as e:
            raise _translate(e, f"get rule {rule_id}")
        if not snapshot.exists:
            return None
        return RecurringRule.from_document({**snapshot.to_dict(), "id": snapshot.id})

    async def save_rule(self, rule: RecurringRule) -> bool:
        try:
            await self._client.rules().document(rule.id).set(rule.to_document())
            return True
        except Exception as e:
            raise _translate(e, f"save rule {rule.id}")

    async def delete_rule(self, rule_id: str) -> bool:
        try:
            await self._client.rules().document(rule_id).delete()
            return True
        except Exception as e:
            raise _translate(e, f"delete rule {rule_id}")

    @read_retry
    async def list_rules(self) -> list[RecurringRule]:
        try:
            return [
                RecurringRule.from_document({**snapshot.to_dict(), "id": snapshot.id})
                async for snapshot in self._client.rules().stream()
            ]
        except Exception as e:
            raise _translate(e, "list rules")

    # -- batches -------------------------------------------------------------

    async def commit(self, batch: WriteBatch) -> bool:
        """Translate the WriteBatch into one Firestore batched write."""
        try:
            write = self._client.connect().batch()
            ledgers = self._client.ledgers()

            for operation in batch.operations:
                if operation.op == BatchOpType.CREATE_LEDGER:
                    write.create(
                        ledgers.document(operation.key),
                        operation.ledger.to_document(),
                    )
                elif operation.op == BatchOpType.APPEND_EXPENSES:
                    write.update(ledgers.document(operation.key), {
                        "expenses": firestore.ArrayUnion(
                            [e.model_dump(mode="json") for e in operation.expenses]
                        ),
                    })
                elif operation.op == BatchOpType.APPEND_INCOMES:
                    write.update(ledgers.document(operation.key), {
                        "income_transactions": firestore.ArrayUnion(
                            [t.model_dump(mode="json") for t in operation.incomes]
                        ),
                    })
                elif operation.op == BatchOpType.REMOVE_EXPENSES:
                    write.update(ledgers.document(operation.key), {
                        "expenses": firestore.ArrayRemove(
                            [e.model_dump(mode="json") for e in operation.expenses]
                        ),
                    })
                elif operation.op == BatchOpType.REMOVE_INCOMES:
                    write.update(ledgers.document(operation.key), {
                        "income_transactions": firestore.ArrayRemove(
                            [t.model_dump(mode="json") for t in operation.incomes]
                        ),
                    })
                elif operation.op == BatchOpType.UPDATE_RULE_CURSOR:
                    write.update(self._client.rules().document(operation.key), {
                        "next_execution_date": operation.next_execution_date.isoformat(),
                    })

            await write.commit()
            return True
        except Exception as e:
            raise _translate(e, f"commit batch of {len(batch)} writes")


class FirestoreAuditStorage(AuditStorageInterface):
    """Audit events as documents keyed by event id."""

    def __init__(self, client: Optional[FirestoreClient] = None):
        self._client = client or FirestoreClient()

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            await self._client.audit().document(str(event.event_id)).set(event.to_document())
            return True
        except Exception as e:
            raise _translate(e, "append audit event")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            query = self._client.audit().where(
                filter=firestore.FieldFilter("correlation_id", "==", str(correlation_id))
            )
            events = [self._document_to_event(s.to_dict()) async for s in query.stream()]
        except Exception as e:
            raise _translate(e, "get audit events")
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        try:
            query = self._client.audit().order_by(
                "timestamp", direction=firestore.Query.DESCENDING
            ).limit(limit)
            return [self._document_to_event(s.to_dict()) async for s in query.stream()]
        except Exception as e:
            raise _translate(e, "get recent audit events")

    @staticmethod
    def _document_to_event(data: dict[str, Any]) -> AuditEvent:
        details = data.get("details") or "{}"
        return AuditEvent.model_validate({
            **data,
            "details": json.loads(details) if isinstance(details, str) else details,
        })
