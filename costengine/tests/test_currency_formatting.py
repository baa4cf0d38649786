import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from costengine.currency_formatting import (
    JUST_NOW,
    NEVER_UPDATED,
    format_age,
    format_amount,
    format_with_conversion,
)

NOW = datetime(2025, 5, 15, 12, 0, tzinfo=timezone.utc)


class FormatAmountTests(unittest.TestCase):
    def test_usd_uses_symbol_and_grouping(self) -> None:
        self.assertEqual(format_amount(Decimal("1234.56"), "USD"), "$1,234.56")

    def test_negative_amount_keeps_minus(self) -> None:
        self.assertEqual(format_amount(Decimal("-5"), "usd"), "-$5.00")

    def test_minus_leads_even_where_locale_puts_it_after_symbol(self) -> None:
        text = format_amount(Decimal("-12.34"), "CHF")

        self.assertTrue(text.startswith("-CHF"), text)
        self.assertTrue(text.endswith("12.34"), text)
        self.assertEqual(text.count("-"), 1)

    def test_minus_leads_for_trailing_symbol_currency(self) -> None:
        text = format_amount(Decimal("-12.34"), "EUR")

        self.assertTrue(text.startswith("-12,34"), text)
        self.assertTrue(text.endswith("€"), text)

    def test_negative_compact_amount(self) -> None:
        self.assertEqual(format_amount(Decimal("-1500"), "USD", compact=True), "-$1.5K")

    def test_zero_decimal_currency_has_no_fraction(self) -> None:
        text = format_amount(Decimal("1234"), "JPY")

        self.assertIn("1,234", text)
        self.assertNotIn(".", text)

    def test_compact_only_applies_to_large_amounts(self) -> None:
        self.assertEqual(format_amount(Decimal("1500"), "USD", compact=True), "$1.5K")
        self.assertEqual(format_amount(Decimal("999"), "USD", compact=True), "$999.00")

    def test_unknown_locale_falls_back_to_default(self) -> None:
        self.assertEqual(format_amount(Decimal("5"), "USD", locale="xx_XX"), "$5.00")

    def test_accepts_plain_numbers(self) -> None:
        self.assertEqual(format_amount(2, "USD"), "$2.00")


class FormatWithConversionTests(unittest.TestCase):
    def test_same_currency_shows_only_original(self) -> None:
        text = format_with_conversion(Decimal("10"), "USD", Decimal("20"), "USD")

        self.assertEqual(text, "$10.00")

    def test_converted_amount_is_parenthesized(self) -> None:
        text = format_with_conversion(Decimal("10"), "GBP", Decimal("12.50"), "USD")

        self.assertTrue(text.startswith("£10.00"))
        self.assertTrue(text.endswith("($12.50)"))


class FormatAgeTests(unittest.TestCase):
    def test_never_updated(self) -> None:
        self.assertEqual(format_age(None, NOW), NEVER_UPDATED)

    def test_recent_update(self) -> None:
        self.assertEqual(format_age(NOW - timedelta(seconds=20), NOW), JUST_NOW)

    def test_naive_now_is_treated_as_utc(self) -> None:
        naive_now = datetime(2025, 5, 15, 15, 0)

        self.assertEqual(format_age(NOW, naive_now), "3 hours ago")

    def test_relative_hours_and_days(self) -> None:
        self.assertEqual(format_age(NOW - timedelta(hours=3), NOW), "3 hours ago")
        self.assertEqual(format_age(NOW - timedelta(days=2), NOW), "2 days ago")


if __name__ == "__main__":
    unittest.main()
