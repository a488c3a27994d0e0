from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Iterable, Optional

from fxledger.currency_conversion import convert_amount
from fxledger.rates import RateTable


@dataclass(frozen=True)
class Transaction:
    id: str
    description: str
    amount: Decimal
    date: datetime
    currency: Optional[str] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class BudgetRecord:
    amount: Decimal
    currency: Optional[str] = None

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError("Budget amount must not be negative.")


@dataclass(frozen=True)
class ConvertedTransaction:
    transaction: Transaction
    converted_amount: Decimal
    currency: str

    @property
    def date(self) -> datetime:
        return self.transaction.date

    @property
    def month_key(self) -> str:
        return month_key(self.transaction.date)


def convert_transactions(
    transactions: Iterable[Transaction],
    display_currency: str,
    table: RateTable | None,
    default_currency: str | None = None,
) -> list[ConvertedTransaction]:
    """Express every transaction in ``display_currency``.

    Transactions without a currency are taken to be in ``default_currency``,
    or in the display currency when no default is given.
    """
    display = display_currency.strip().upper()
    fallback_currency = default_currency or display
    return [
        ConvertedTransaction(
            transaction=txn,
            converted_amount=convert_amount(
                txn.amount, txn.currency or fallback_currency, display, table
            ),
            currency=display,
        )
        for txn in transactions
    ]


def parse_timestamp(value: str | date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    cleaned = value.strip()
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(cleaned)
    except ValueError as exc:
        raise ValueError(f"Invalid ISO-8601 timestamp: {value!r}") from exc


def sort_key(value: datetime) -> datetime:
    """Naive timestamps are ordered as if they were UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def month_key(value: date | datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"
