from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from fxledger.rates import RateTable
from fxledger.transactions import (
    ConvertedTransaction,
    Transaction,
    convert_transactions,
    sort_key,
)

ZERO = Decimal("0")


@dataclass(frozen=True)
class BalancePoint:
    date: datetime
    amount: Decimal
    balance: Decimal
    transaction_id: str


@dataclass(frozen=True)
class BalanceSeries:
    currency: str
    points: tuple[BalancePoint, ...] = ()

    @property
    def has_data(self) -> bool:
        return bool(self.points)

    @property
    def values(self) -> list[Decimal]:
        return [point.balance for point in self.points]

    @property
    def latest(self) -> Optional[Decimal]:
        if not self.points:
            return None
        return self.points[-1].balance

    @property
    def trend(self) -> Optional[Decimal]:
        """Last balance minus first; None without data."""
        if not self.points:
            return None
        return self.points[-1].balance - self.points[0].balance


def build_balance_series(
    transactions: Iterable[Transaction],
    display_currency: str,
    table: RateTable | None,
    default_currency: str | None = None,
) -> BalanceSeries:
    converted = convert_transactions(transactions, display_currency, table, default_currency)
    return balance_from_converted(converted, display_currency)


def balance_from_converted(
    converted: Iterable[ConvertedTransaction], display_currency: str
) -> BalanceSeries:
    # sorted() is stable, so equal dates keep their input order.
    ordered = sorted(converted, key=lambda item: sort_key(item.date))
    balance = ZERO
    points: list[BalancePoint] = []
    for item in ordered:
        balance += item.converted_amount
        points.append(
            BalancePoint(
                date=item.date,
                amount=item.converted_amount,
                balance=balance,
                transaction_id=item.transaction.id,
            )
        )
    return BalanceSeries(currency=display_currency.strip().upper(), points=tuple(points))
