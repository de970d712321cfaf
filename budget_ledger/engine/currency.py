"""
Currency Projector

Computes the multiplier from a ledger's base currency to the currency the
user wants to see. Display only: stored amounts are never converted or
rounded.

The projector never raises. A missing rate degrades to factor 1 with the
result flagged stale, so the UI can say "shown unconverted".
"""

from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Mapping, Optional
from uuid import UUID

import structlog

from budget_ledger.audit import AuditLogger
from budget_ledger.engine.errors import StaleRateTable
from budget_ledger.engine.results import ConversionFactor
from budget_ledger.models.ledger import TWO_PLACES
from budget_ledger.services.rates import RateProviderUnavailable


logger = structlog.get_logger("budget_ledger.currency")

ONE = Decimal("1")


def _rate(rate_table: Mapping[str, Decimal], code: str) -> Decimal:
    try:
        rate = Decimal(str(rate_table[code]))
    except KeyError:
        raise StaleRateTable(f"No rate for {code}")
    except (InvalidOperation, TypeError, ValueError):
        raise StaleRateTable(f"Non-numeric rate for {code}: {rate_table[code]!r}")
    if not rate.is_finite() or rate <= 0:
        raise StaleRateTable(f"Unusable rate for {code}: {rate}")
    return rate


def conversion_factor(
    base_currency: str,
    display_currency: str,
    rate_table: Optional[Mapping[str, Decimal]],
) -> ConversionFactor:
    """
    Factor that turns base-currency amounts into display-currency amounts.

    The table may be relative to any pivot currency: the factor is
    rate[display] / rate[base], which reduces to a direct lookup when the
    pivot is one of the two.
    """
    base = base_currency.strip().upper()
    display = display_currency.strip().upper()

    if base == display:
        return ConversionFactor(base_currency=base, display_currency=display, value=ONE)

    try:
        if not rate_table:
            raise StaleRateTable("Rate table unavailable")
        value = _rate(rate_table, display) / _rate(rate_table, base)
    except StaleRateTable as e:
        logger.warning(
            "conversion_unavailable",
            base_currency=base,
            display_currency=display,
            reason=str(e),
        )
        return ConversionFactor(
            base_currency=base,
            display_currency=display,
            value=ONE,
            stale=True,
        )

    return ConversionFactor(base_currency=base, display_currency=display, value=value)


def project_amount(amount: Decimal, factor: ConversionFactor) -> Decimal:
    """Unrounded display value of a stored amount."""
    return amount * factor.value


def display_amount(amount: Decimal, factor: ConversionFactor) -> Decimal:
    """Display value rounded to cents for a formatter."""
    return project_amount(amount, factor).quantize(TWO_PLACES, rounding=ROUND_HALF_EVEN)


class CurrencyProjector:
    """
    Resolves conversion factors through a rate provider.

    Rate tables are fetched relative to the ledger's base currency and
    cached by the provider for the session.
    """

    def __init__(self, rate_provider, audit_logger: Optional[AuditLogger] = None):
        self._rate_provider = rate_provider
        self._audit_logger = audit_logger

    async def factor_for(
        self,
        base_currency: str,
        display_currency: str,
        correlation_id: Optional[UUID] = None,
    ) -> ConversionFactor:
        if base_currency.strip().upper() == display_currency.strip().upper():
            return conversion_factor(base_currency, display_currency, None)

        try:
            rate_table = await self._rate_provider.fetch_rates(base_currency)
        except (RateProviderUnavailable, ValueError) as e:
            logger.warning("rate_fetch_failed", base_currency=base_currency, error=str(e))
            rate_table = None

        factor = conversion_factor(base_currency, display_currency, rate_table)
        if factor.stale and self._audit_logger:
            await self._audit_logger.log_rates_unavailable(
                factor.base_currency,
                factor.display_currency,
                correlation_id,
            )
        return factor
