from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from fxledger.currency_conversion import convert_amount
from fxledger.rates import RateTable
from fxledger.transactions import (
    BudgetRecord,
    ConvertedTransaction,
    Transaction,
    convert_transactions,
    month_key,
)

ZERO = Decimal("0")
DEFAULT_MONTHS = 6


@dataclass(frozen=True)
class MonthSummary:
    month: str
    net: Decimal
    expenses: Decimal
    budget: Decimal
    over_budget: bool

    @property
    def remaining(self) -> Decimal:
        return self.budget - self.expenses


def summarize_months(
    transactions: Iterable[Transaction],
    budgets: Mapping[str, BudgetRecord] | None,
    display_currency: str,
    table: RateTable | None,
    months: int = DEFAULT_MONTHS,
    today: Optional[date] = None,
    default_currency: str | None = None,
) -> list[MonthSummary]:
    converted = convert_transactions(transactions, display_currency, table, default_currency)
    return summarize_converted(
        converted, budgets, display_currency, table, months=months, today=today
    )


def summarize_converted(
    converted: Iterable[ConvertedTransaction],
    budgets: Mapping[str, BudgetRecord] | None,
    display_currency: str,
    table: RateTable | None,
    months: int = DEFAULT_MONTHS,
    today: Optional[date] = None,
) -> list[MonthSummary]:
    if months < 1:
        raise ValueError("months must be at least 1.")
    display = display_currency.strip().upper()
    window = trailing_months(today or date.today(), months)

    net_by_month: dict[str, Decimal] = {}
    expenses_by_month: dict[str, Decimal] = {}
    for item in converted:
        key = item.month_key
        amount = item.converted_amount
        net_by_month[key] = net_by_month.get(key, ZERO) + amount
        if amount < 0:
            expenses_by_month[key] = expenses_by_month.get(key, ZERO) + abs(amount)

    summaries: list[MonthSummary] = []
    for key in window:
        expenses = expenses_by_month.get(key, ZERO)
        budget = _budget_for_month(budgets, key, display, table)
        summaries.append(
            MonthSummary(
                month=key,
                net=net_by_month.get(key, ZERO),
                expenses=expenses,
                budget=budget,
                over_budget=budget > ZERO and expenses > budget,
            )
        )
    return summaries


def trailing_months(today: date, months: int) -> list[str]:
    current = month_start(today)
    return [month_key(shift_month(current, -offset)) for offset in range(months - 1, -1, -1)]


def month_start(value: date) -> date:
    return value.replace(day=1)


def shift_month(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)


def _budget_for_month(
    budgets: Mapping[str, BudgetRecord] | None,
    key: str,
    display: str,
    table: RateTable | None,
) -> Decimal:
    if not budgets:
        return ZERO
    record = budgets.get(key)
    if record is None:
        return ZERO
    return convert_amount(record.amount, record.currency or display, display, table)
