"""
Ledger Engine Errors

Every engine operation catches these at its boundary and reports them as
an OperationResult. None of them is allowed to escape a tick and stop
unrelated rules from being processed.
"""

from typing import Optional

from budget_ledger.services.storage import NotFoundError, StorageError


class LedgerError(Exception):
    """Base exception for ledger engine operations."""

    code = "ledger_error"
    default_retryable = False

    def __init__(self, message: str, retryable: Optional[bool] = None):
        super().__init__(message)
        self.retryable = self.default_retryable if retryable is None else retryable


class LedgerNotFound(LedgerError):
    """A ledger that was expected to exist is missing."""

    code = "ledger_not_found"


class LedgerAlreadyExists(LedgerError):
    """Setup of a month that already has a ledger."""

    code = "ledger_exists"


class EntryNotFound(LedgerError):
    """An entry id is not present in the ledger."""

    code = "entry_not_found"


class BatchWriteFailed(LedgerError):
    """The store rejected an atomic multi-document commit. Nothing was applied."""

    code = "batch_write_failed"
    default_retryable = True

    @classmethod
    def from_storage_error(cls, error: StorageError) -> "BatchWriteFailed":
        # A concurrently created or deleted ledger resolves itself on re-read
        retryable = error.retryable or isinstance(error, NotFoundError)
        return cls(f"Batch commit rejected: {error}", retryable=retryable)


class StoreUnavailable(LedgerError):
    """A read from the store failed before any write was attempted."""

    code = "store_unavailable"

    @classmethod
    def from_storage_error(cls, error: StorageError) -> "StoreUnavailable":
        return cls(f"Ledger store unavailable: {error}", retryable=error.retryable)


class RuleNotFound(LedgerError):
    """A recurring rule expected to exist is missing."""

    code = "rule_not_found"


class InvalidPeriodCount(LedgerError):
    """Installment count below 2, or too many periods for the amount."""

    code = "invalid_period_count"


class InvalidRule(LedgerError):
    """A recurring rule the materializer cannot schedule."""

    code = "invalid_rule"


class ImmutableFieldError(LedgerError):
    """Attempt to change a field fixed at ledger creation."""

    code = "immutable_field"


class StaleRateTable(LedgerError):
    """
    No usable rate for a display conversion.

    Always recovered by the projector: the display falls back to factor 1
    and is flagged as unconverted.
    """

    code = "stale_rate_table"


class BatchTooLarge(LedgerError):
    """An operation needs more writes than one atomic batch may hold."""

    code = "batch_too_large"
