import unittest
from decimal import Decimal

from fxledger.currency_conversion import convert_amount
from fxledger.rates import (
    IncompleteRateTable,
    InvalidRateValue,
    RateTable,
    normalize,
    validate_table,
)


class NormalizeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.eur_table = RateTable.from_mapping(
            {"EUR": 1, "USD": "1.1", "PLN": "4.6", "base": "EUR"}
        )

    def test_rebases_to_target_currency(self) -> None:
        table = normalize(self.eur_table, "USD")

        self.assertEqual(table.base, "USD")
        self.assertEqual(table["USD"], Decimal("1"))
        self.assertEqual(table["PLN"], Decimal("4.6") / Decimal("1.1"))
        self.assertEqual(table["EUR"], Decimal("1") / Decimal("1.1"))

    def test_upper_cases_keys_and_base(self) -> None:
        table = normalize({"eur": 1, "usd": 1.1, "base": "eur"}, "usd")

        self.assertEqual(set(table), {"EUR", "USD"})
        self.assertEqual(table.base, "USD")
        self.assertEqual(table["usd"], Decimal("1"))

    def test_same_base_forces_one(self) -> None:
        table = normalize(self.eur_table, "eur")

        self.assertEqual(table["EUR"], Decimal("1"))
        self.assertEqual(table["PLN"], Decimal("4.6"))

    def test_missing_base_keeps_values_and_adds_target(self) -> None:
        table = normalize({"USD": "1.1", "PLN": "4.6"}, "EUR")

        self.assertEqual(table.base, "EUR")
        self.assertEqual(table["EUR"], Decimal("1"))
        self.assertEqual(table["USD"], Decimal("1.1"))

    def test_target_absent_from_based_table_is_treated_one_to_one(self) -> None:
        table = normalize(self.eur_table, "JPY")

        self.assertEqual(table["JPY"], Decimal("1"))
        self.assertEqual(table["USD"], Decimal("1.1"))

    def test_does_not_mutate_input(self) -> None:
        normalize(self.eur_table, "PLN")

        self.assertEqual(self.eur_table.base, "EUR")
        self.assertEqual(self.eur_table["USD"], Decimal("1.1"))

    def test_non_numeric_value_raises(self) -> None:
        with self.assertRaises(InvalidRateValue):
            normalize({"EUR": 1, "USD": "abc", "base": "EUR"}, "EUR")

    def test_non_finite_and_non_positive_values_raise(self) -> None:
        for value in ("NaN", "Infinity", 0, -2, None, True):
            with self.subTest(value=value):
                with self.assertRaises(InvalidRateValue):
                    normalize({"EUR": 1, "USD": value}, "EUR")

    def test_invalid_rate_value_is_a_value_error(self) -> None:
        with self.assertRaises(ValueError):
            RateTable.from_mapping({"USD": "x"})

    def test_rebase_invariance(self) -> None:
        original = RateTable.from_mapping(
            {"EUR": 1, "USD": "1.1", "PLN": "4.6", "DKK": "7.44", "GBP": "0.86", "base": "EUR"}
        )
        amount = Decimal("123.45")
        reference = convert_amount(amount, "GBP", "DKK", normalize(original, "EUR"))

        for base in ("USD", "PLN", "DKK", "GBP"):
            with self.subTest(base=base):
                result = convert_amount(amount, "GBP", "DKK", normalize(original, base))
                self.assertAlmostEqual(result, reference, delta=abs(reference) * Decimal("1e-9"))

    def test_equivalent_tables_after_rebase(self) -> None:
        self.assertTrue(normalize(self.eur_table, "PLN").equivalent(self.eur_table))
        other = RateTable.from_mapping({"EUR": 1, "USD": "1.2", "base": "EUR"})
        self.assertFalse(other.equivalent(self.eur_table))

    def test_defaults_rebased(self) -> None:
        table = RateTable.defaults("USD")

        self.assertEqual(table.base, "USD")
        self.assertEqual(table["USD"], Decimal("1"))
        self.assertEqual(table["PLN"], Decimal("4.6") / Decimal("1.1"))


class RateTableTests(unittest.TestCase):
    def test_constructor_coerces_float_values(self) -> None:
        table = RateTable(rates={"EUR": 1, "USD": 1.1, "PLN": 4.6}, base="EUR")

        self.assertEqual(table.rates["USD"], Decimal("1.1"))
        self.assertIsInstance(table.rates["EUR"], Decimal)
        self.assertEqual(convert_amount(100, "EUR", "USD", table), Decimal("110"))

    def test_constructor_upper_cases_keys(self) -> None:
        table = RateTable(rates={"eur": 1, " usd ": "2"}, base="eur")

        self.assertEqual(set(table.rates), {"EUR", "USD"})
        self.assertEqual(table.base, "EUR")
        self.assertEqual(convert_amount(100, "EUR", "USD", table), Decimal("200"))

    def test_constructor_rejects_invalid_values(self) -> None:
        with self.assertRaises(InvalidRateValue):
            RateTable(rates={"EUR": 1, "USD": 0}, base="EUR")
        with self.assertRaises(InvalidRateValue):
            RateTable(rates={"EUR": 1, "USD": "n/a"}, base="EUR")


class ValidateTableTests(unittest.TestCase):
    def test_accepts_base_and_one_other(self) -> None:
        table = RateTable(rates={"PLN": Decimal("1"), "USD": Decimal("0.25")}, base="PLN")

        self.assertIs(validate_table(table, "PLN"), table)

    def test_missing_base_raises(self) -> None:
        table = RateTable(rates={"USD": Decimal("0.25")}, base="PLN")

        with self.assertRaises(IncompleteRateTable):
            validate_table(table, "PLN")

    def test_only_base_raises(self) -> None:
        table = RateTable(rates={"PLN": Decimal("1"), "JPY": Decimal("37")}, base="PLN")

        with self.assertRaises(IncompleteRateTable):
            validate_table(table, "PLN")


if __name__ == "__main__":
    unittest.main()
