from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Mapping, Optional

from fxledger.balance_series import BalanceSeries, balance_from_converted
from fxledger.budget_engine import DEFAULT_MONTHS, MonthSummary, summarize_converted
from fxledger.coordinator import FetchState, RateSnapshot
from fxledger.transactions import BudgetRecord, Transaction, convert_transactions

RATES_SETTLED = "settled"
RATES_OPTIMISTIC = "optimistic"
RATES_UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class DashboardSummary:
    display_currency: str
    rates_status: str
    balance: Optional[BalanceSeries] = None
    months: list[MonthSummary] = field(default_factory=list)

    @property
    def rates_available(self) -> bool:
        return self.rates_status != RATES_UNAVAILABLE


def build_dashboard(
    transactions: Iterable[Transaction],
    budgets: Mapping[str, BudgetRecord] | None,
    snapshot: RateSnapshot,
    months: int = DEFAULT_MONTHS,
    today: Optional[date] = None,
) -> DashboardSummary:
    """Aggregate ``transactions`` in the snapshot's currency.

    When no usable rates were ever obtained the summary says so instead of
    reporting totals computed at 1:1.
    """
    display = snapshot.currency or (snapshot.table.base if snapshot.table else None)
    if display is None or snapshot.table is None or snapshot.state == FetchState.ERRORED:
        return DashboardSummary(display_currency=display or "", rates_status=RATES_UNAVAILABLE)

    # One conversion pass feeds both views so they see the same table.
    converted = convert_transactions(transactions, display, snapshot.table)
    status = RATES_SETTLED if snapshot.authoritative else RATES_OPTIMISTIC
    return DashboardSummary(
        display_currency=display,
        rates_status=status,
        balance=balance_from_converted(converted, display),
        months=summarize_converted(
            converted, budgets, display, snapshot.table, months=months, today=today
        ),
    )
