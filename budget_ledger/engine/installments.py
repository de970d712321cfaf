"""
Installment Splitter

Turns one purchase paid in N installments into N linked expense entries,
one per consecutive month, and removes all of them again when any one is
deleted.

CRITICAL: a split is ONE atomic batch. If the store rejects it, no month
is touched; there is never a half-created installment chain to repair.
"""

from datetime import date
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Optional
from uuid import NAMESPACE_URL, UUID, uuid5

from budget_ledger.audit import AuditLogger, create_correlation_id
from budget_ledger.config import LedgerSettings, get_settings
from budget_ledger.engine.errors import (
    BatchWriteFailed,
    InvalidPeriodCount,
    LedgerError,
    StoreUnavailable,
)
from budget_ledger.engine.periods import add_months, as_instant
from budget_ledger.engine.results import OperationResult
from budget_ledger.engine.templates import LedgerProvisioner, TemplateSource
from budget_ledger.models.ledger import (
    TWO_PLACES,
    ExpenseEntry,
    ExpenseStatus,
    InstallmentGroup,
    NewExpense,
    ledger_key_for,
    new_entry_id,
)
from budget_ledger.services.storage import (
    MAX_BATCH_WRITES,
    LedgerStorageInterface,
    StorageError,
    WriteBatch,
)


INSTALLMENT_ENTRY_NAMESPACE = uuid5(NAMESPACE_URL, "budget-ledger:installment-entry")


def installment_entry_id(group_id: str, position: int) -> str:
    """Stable id of one installment of a group."""
    return str(uuid5(INSTALLMENT_ENTRY_NAMESPACE, f"{group_id}/{position}"))


def split_amount(amount: Decimal, total_periods: int) -> list[Decimal]:
    """
    Per-period amounts for an installment split.

    Every period gets amount / N rounded half-even to the cent; the last
    period absorbs the remainder so the parts add up exactly.

    Raises:
        InvalidPeriodCount: Fewer than 2 periods, or so many that a period
            would round to nothing.
    """
    if total_periods < 2:
        raise InvalidPeriodCount(
            f"An installment needs at least 2 periods, got {total_periods}"
        )

    share = (amount / total_periods).quantize(TWO_PLACES, rounding=ROUND_HALF_EVEN)
    last = amount - share * (total_periods - 1)
    if share <= 0 or last <= 0:
        raise InvalidPeriodCount(
            f"{amount} cannot be split into {total_periods} non-zero installments"
        )
    return [share] * (total_periods - 1) + [last]


class InstallmentSplitter:
    """
    Writes installment chains into consecutive monthly ledgers.

    The first installment is marked paid (the purchase happened), the rest
    are pending until their month comes around.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._audit_logger = audit_logger

    async def split(
        self,
        original: NewExpense,
        total_periods: int,
        anchor_date: date,
        template_key: Optional[str] = None,
        group_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        """
        Split `original` over `total_periods` months starting at anchor_date.

        Args:
            original: The expense as submitted
            total_periods: Number of installments (>= 2)
            anchor_date: Date (or instant) of the first installment
            template_key: Ledger that missing months are cloned from;
                defaults to the anchor month's ledger
            group_id: Group identifier to use. Entry ids derive from it, so
                re-submitting a split with the same group_id after an
                ambiguous failure cannot append a second chain.

        Returns:
            OperationResult with the group id, entry ids and touched ledgers
        """
        correlation_id = correlation_id or create_correlation_id()
        group_id = group_id or new_entry_id()

        try:
            if total_periods > MAX_BATCH_WRITES:
                raise InvalidPeriodCount(
                    f"At most {MAX_BATCH_WRITES} installments fit in one atomic batch, "
                    f"got {total_periods}"
                )
            amounts = split_amount(original.amount, total_periods)
            anchor = as_instant(anchor_date)

            templates = TemplateSource(
                self._storage,
                template_key or ledger_key_for(anchor),
                self._settings,
            )
            provisioner = LedgerProvisioner(self._storage, templates)
            batch = WriteBatch()
            entry_ids = []

            for index, amount in enumerate(amounts):
                when = add_months(anchor, index)
                key = ledger_key_for(when)
                entry = ExpenseEntry(
                    id=installment_entry_id(group_id, index + 1),
                    amount=amount,
                    description=original.description,
                    category=original.category,
                    date=when,
                    payment_method=original.payment_method,
                    status=ExpenseStatus.PAID if index == 0 else ExpenseStatus.PENDING,
                    installment_group=InstallmentGroup(
                        group_id=group_id,
                        position=index + 1,
                        total=total_periods,
                    ),
                )
                await self._ensure(provisioner, batch, key)
                batch.append_expense(key, entry)
                entry_ids.append(entry.id)

            await self._commit(batch)

        except LedgerError as e:
            if self._audit_logger:
                await self._audit_logger.log_installment_split_failed(
                    amount=str(original.amount),
                    total_periods=total_periods,
                    error_code=e.code,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return OperationResult.failed(e, group_id=group_id)

        if self._audit_logger:
            await self._audit_logger.log_installment_split(
                group_id=group_id,
                ledger_keys=batch.ledger_keys,
                amount=str(original.amount),
                created_keys=batch.created_keys,
                correlation_id=correlation_id,
            )

        return OperationResult.ok(
            group_id=group_id,
            entry_ids=entry_ids,
            ledger_keys=batch.ledger_keys,
            created_keys=batch.created_keys,
        )

    async def delete_group(
        self,
        group_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        """
        Remove every entry of an installment group, across all ledgers.

        Deleting a group that no longer has entries succeeds with nothing
        removed, so a retried deletion is harmless.
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            try:
                ledgers = await self._storage.list_ledgers()
            except StorageError as e:
                raise StoreUnavailable.from_storage_error(e)

            batch = WriteBatch()
            removed = []
            for ledger in ledgers:
                matches = [e for e in ledger.expenses if e.group_id == group_id]
                batch.remove_expenses(ledger.key, matches)
                removed.extend(e.id for e in matches)

            if removed:
                await self._commit(batch)

        except LedgerError as e:
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type=e.code,
                    error_message=str(e),
                    details={"group_id": group_id},
                    correlation_id=correlation_id,
                )
            return OperationResult.failed(e, group_id=group_id)

        if self._audit_logger and removed:
            await self._audit_logger.log_installment_group_deleted(
                group_id=group_id,
                removed=len(removed),
                ledger_keys=batch.ledger_keys,
                correlation_id=correlation_id,
            )

        return OperationResult.ok(
            group_id=group_id,
            entry_ids=removed,
            ledger_keys=batch.ledger_keys,
        )

    async def _ensure(self, provisioner: LedgerProvisioner, batch: WriteBatch, key: str) -> None:
        try:
            await provisioner.ensure(batch, key)
        except StorageError as e:
            raise StoreUnavailable.from_storage_error(e)

    async def _commit(self, batch: WriteBatch) -> None:
        try:
            await self._storage.commit(batch)
        except StorageError as e:
            raise BatchWriteFailed.from_storage_error(e)
