import unittest
from datetime import date, datetime
from decimal import Decimal

from fxledger.budget_engine import shift_month, summarize_months, trailing_months
from fxledger.rates import RateTable
from fxledger.transactions import BudgetRecord, Transaction


def txn(txn_id: str, amount: str, when: date, currency: str = "EUR") -> Transaction:
    return Transaction(
        id=txn_id,
        description=txn_id,
        amount=Decimal(amount),
        date=datetime(when.year, when.month, when.day),
        currency=currency,
    )


class MonthlySummaryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.table = RateTable.from_mapping(
            {"EUR": 1, "USD": "1.25", "PLN": "4", "base": "EUR"}
        )
        self.today = date(2024, 3, 15)

    def test_window_is_contiguous_and_ends_at_current_month(self) -> None:
        summaries = summarize_months([], None, "EUR", self.table, months=4, today=self.today)

        self.assertEqual(
            [summary.month for summary in summaries],
            ["2023-12", "2024-01", "2024-02", "2024-03"],
        )
        for summary in summaries:
            self.assertEqual(summary.net, Decimal("0"))
            self.assertEqual(summary.expenses, Decimal("0"))
            self.assertEqual(summary.budget, Decimal("0"))
            self.assertFalse(summary.over_budget)

    def test_net_and_expenses_are_converted(self) -> None:
        transactions = [
            txn("salary", "1000", date(2024, 3, 1)),
            txn("rent", "-125", date(2024, 3, 2), "USD"),
            txn("food", "-40", date(2024, 3, 3), "PLN"),
            txn("old", "-999", date(2023, 1, 1)),
        ]

        summaries = summarize_months(
            transactions, None, "EUR", self.table, months=2, today=self.today
        )

        february, march = summaries
        self.assertEqual(february.net, Decimal("0"))
        self.assertEqual(march.net, Decimal("1000") - Decimal("100") - Decimal("10"))
        self.assertEqual(march.expenses, Decimal("110"))

    def test_budget_is_converted_and_compared(self) -> None:
        transactions = [
            txn("rent", "-500", date(2024, 2, 2)),
            txn("food", "-100", date(2024, 3, 3)),
        ]
        budgets = {
            "2024-02": BudgetRecord(amount=Decimal("1600"), currency="PLN"),
            "2024-03": BudgetRecord(amount=Decimal("500")),
        }

        february, march = summarize_months(
            transactions, budgets, "EUR", self.table, months=2, today=self.today
        )

        self.assertEqual(february.budget, Decimal("400"))
        self.assertTrue(february.over_budget)
        self.assertEqual(february.remaining, Decimal("-100"))
        self.assertEqual(march.budget, Decimal("500"))
        self.assertFalse(march.over_budget)

    def test_month_without_budget_is_never_over_budget(self) -> None:
        transactions = [txn("rent", "-500", date(2024, 3, 2))]

        (march,) = summarize_months(
            transactions, {}, "EUR", self.table, months=1, today=self.today
        )

        self.assertEqual(march.budget, Decimal("0"))
        self.assertEqual(march.expenses, Decimal("500"))
        self.assertFalse(march.over_budget)

    def test_display_currency_changes_every_value(self) -> None:
        transactions = [txn("rent", "-100", date(2024, 3, 2))]
        budgets = {"2024-03": BudgetRecord(amount=Decimal("50"), currency="EUR")}

        (march,) = summarize_months(
            transactions, budgets, "pln", self.table, months=1, today=self.today
        )

        self.assertEqual(march.expenses, Decimal("400"))
        self.assertEqual(march.budget, Decimal("200"))
        self.assertTrue(march.over_budget)

    def test_rejects_empty_window(self) -> None:
        with self.assertRaises(ValueError):
            summarize_months([], None, "EUR", self.table, months=0, today=self.today)


class MonthHelperTests(unittest.TestCase):
    def test_shift_month_crosses_years(self) -> None:
        self.assertEqual(shift_month(date(2024, 1, 1), -1), date(2023, 12, 1))
        self.assertEqual(shift_month(date(2024, 11, 1), 3), date(2025, 2, 1))

    def test_trailing_months(self) -> None:
        self.assertEqual(trailing_months(date(2024, 1, 31), 2), ["2023-12", "2024-01"])


class BudgetRecordTests(unittest.TestCase):
    def test_negative_budget_rejected(self) -> None:
        with self.assertRaises(ValueError):
            BudgetRecord(amount=Decimal("-1"))


if __name__ == "__main__":
    unittest.main()
