from __future__ import annotations

from decimal import Decimal

from fxledger.rates import DEFAULT_RATES, ONE, RateTable


def convert_amount(
    amount: Decimal | int | float | str,
    source_currency: str | None,
    target_currency: str,
    table: RateTable | None = None,
) -> Decimal:
    """Convert a signed amount between currencies using ``table``.

    Codes missing from both ``table`` and the built-in rates count as rate 1.
    Without a table the built-in EUR-anchored rates are used.
    """
    coerced_amount = _coerce_amount(amount)
    target = target_currency.strip().upper()
    if source_currency:
        source = source_currency.strip().upper()
    elif table is not None and table.base:
        source = table.base
    else:
        source = target

    if source == target:
        return coerced_amount

    rate_from = _lookup_rate(source, table)
    rate_to = _lookup_rate(target, table)
    amount_in_base = coerced_amount / rate_from
    return amount_in_base * rate_to


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def safe_normalize_currency(value: str | None, fallback: str) -> str:
    if not value:
        return fallback
    try:
        return normalize_currency(value)
    except ValueError:
        return fallback


def _lookup_rate(currency: str, table: RateTable | None) -> Decimal:
    if table is not None:
        rate = table.get(currency)
        if rate is not None:
            return rate
    return DEFAULT_RATES.get(currency, ONE)


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
