import unittest
from decimal import Decimal

from posfleet.errors import ValidationError
from posfleet.money import format_cents, line_total_cents, split_installments, to_cents


class ToCentsTests(unittest.TestCase):
    def test_rounds_half_up(self):
        self.assertEqual(to_cents("10.005"), 1001)
        self.assertEqual(to_cents("10.004"), 1000)
        self.assertEqual(to_cents(Decimal("0.125")), 13)

    def test_accepts_ints_floats_and_strings(self):
        self.assertEqual(to_cents(250), 25000)
        self.assertEqual(to_cents(0.1 + 0.2), 30)
        self.assertEqual(to_cents("120.50"), 12050)

    def test_negative_amounts_round_away_from_zero(self):
        self.assertEqual(to_cents("-1.005"), -101)

    def test_rejects_non_numbers(self):
        for value in (None, True, "abc", "NaN", "Infinity"):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError):
                    to_cents(value)

    def test_error_names_the_field(self):
        with self.assertRaises(ValidationError) as ctx:
            to_cents("x", field="cost")
        self.assertIn("cost", str(ctx.exception))

    def test_format_and_line_totals(self):
        self.assertEqual(format_cents(50000), "500.00")
        self.assertEqual(format_cents(None), "0.00")
        self.assertEqual(line_total_cents(25000, 2), 50000)


class SplitInstallmentsTests(unittest.TestCase):
    def test_sum_matches_remaining_balance(self):
        for total, paid, count in ((10000, 0, 3), (99999, 1, 7), (100, 99, 4), (50000, 12345, 12)):
            with self.subTest(total=total, paid=paid, count=count):
                amounts = split_installments(total, paid, count)
                self.assertEqual(len(amounts), count)
                self.assertEqual(sum(amounts), total - paid)

    def test_last_installment_absorbs_remainder(self):
        self.assertEqual(split_installments(10000, 0, 3), [3333, 3333, 3334])

    def test_invalid_arguments(self):
        with self.assertRaises(ValidationError):
            split_installments(100, 0, 0)
        with self.assertRaises(ValidationError):
            split_installments(100, 200, 2)


if __name__ == "__main__":
    unittest.main()
