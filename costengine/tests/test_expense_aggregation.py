import unittest
from datetime import date, timedelta
from decimal import Decimal

from costengine.billing_cycle import BillingCycle
from costengine.currency_conversion import CurrencyConverter, RateTable, StaticRateProvider
from costengine.expense_aggregation import (
    Receipt,
    ReceiptItem,
    category_totals,
    summary,
)
from costengine.subscriptions import Subscription

NOW = date(2024, 6, 10)


def identity(amount: Decimal, source: str, target: str) -> Decimal:
    return amount


def make_receipt(**overrides) -> Receipt:
    values = dict(
        id="r-1",
        store_name="Corner Market",
        purchase_date=date(2024, 6, 1),
        currency="USD",
        total_amount=Decimal("50.00"),
        total_tax=Decimal("4.00"),
        items=(
            ReceiptItem(name="Bread", price=Decimal("20.00"), category="Groceries"),
            ReceiptItem(name="Soap", price=Decimal("26.00"), category="Household"),
        ),
    )
    values.update(overrides)
    return Receipt(**values)


def make_subscription(**overrides) -> Subscription:
    values = dict(
        id="sub-1",
        name="Streaming",
        service_name="StreamCo",
        amount=Decimal("9.99"),
        currency="USD",
        billing_cycle=BillingCycle.monthly(),
        next_renewal_date=NOW + timedelta(days=12),
    )
    values.update(overrides)
    return Subscription(**values)


class ReceiptSavingsTests(unittest.TestCase):
    def test_savings_counts_discounts_and_markdowns(self) -> None:
        receipt = make_receipt(
            items=(
                ReceiptItem(name="Milk", price=Decimal("3.00"), category="Groceries",
                            original_price=Decimal("4.50")),
                ReceiptItem(name="Coupon", price=Decimal("-2.00"), category="Groceries",
                            is_discount=True, discount_description="Store coupon"),
                ReceiptItem(name="Eggs", price=Decimal("5.00"), category="Groceries",
                            original_price=Decimal("4.00")),
            )
        )

        self.assertEqual(receipt.savings, Decimal("3.50"))

    def test_no_discounts_means_no_savings(self) -> None:
        self.assertEqual(make_receipt().savings, Decimal("0"))


class CategoryTotalsTests(unittest.TestCase):
    def test_buckets_items_tax_and_subscriptions(self) -> None:
        totals = dict(
            category_totals([make_receipt()], [make_subscription()], NOW, "USD", identity)
        )

        self.assertEqual(
            totals,
            {
                "Groceries": Decimal("20.00"),
                "Household": Decimal("26.00"),
                "Tax": Decimal("4.00"),
                "Subscriptions": Decimal("9.99"),
            },
        )

    def test_excludes_discounts_and_points_redemptions(self) -> None:
        receipt = make_receipt(
            items=(
                ReceiptItem(name="Coffee", price=Decimal("5.00"), category="Dining"),
                ReceiptItem(name="Promo", price=Decimal("-1.00"), category="Dining",
                            is_discount=True),
                ReceiptItem(name="Free pastry", price=Decimal("0"), category="Dining",
                            discount_description="Loyalty POINTS redeemed"),
                ReceiptItem(name="Free refill", price=Decimal("0"), category="Refills",
                            discount_description="Happy hour"),
            )
        )

        totals = dict(category_totals([receipt], [], NOW, "USD", identity))

        self.assertEqual(totals["Dining"], Decimal("5.00"))
        self.assertIn("Refills", totals)
        self.assertEqual(totals["Refills"], Decimal("0"))
        self.assertNotIn("Subscriptions", totals)

    def test_priced_item_mentioning_points_is_kept(self) -> None:
        receipt = make_receipt(
            items=(
                ReceiptItem(name="Gift card", price=Decimal("10.00"), category="Gifts",
                            discount_description="Earns points"),
            )
        )

        totals = dict(category_totals([receipt], [], NOW, "USD", identity))

        self.assertEqual(totals["Gifts"], Decimal("10.00"))

    def test_tax_accumulates_per_receipt(self) -> None:
        receipts = [make_receipt(id="r-1"), make_receipt(id="r-2", total_tax=Decimal("1.50"))]

        totals = dict(category_totals(receipts, [], NOW, "USD", identity))

        self.assertEqual(totals["Tax"], Decimal("5.50"))
        self.assertEqual(totals["Groceries"], Decimal("40.00"))

    def test_converts_into_preferred_currency(self) -> None:
        converter = CurrencyConverter(
            provider=StaticRateProvider(),
            initial_table=RateTable(base="USD", rates={"EUR": Decimal("0.5")}),
        )
        receipt = make_receipt(currency="EUR")

        totals = dict(category_totals([receipt], [], NOW, "USD", converter.convert_sync))

        self.assertEqual(totals["Groceries"], Decimal("40"))
        self.assertEqual(totals["Tax"], Decimal("8"))

    def test_sorted_by_total_descending(self) -> None:
        totals = category_totals([make_receipt()], [make_subscription()], NOW, "USD", identity)

        self.assertEqual([category for category, _ in totals], ["Household", "Groceries", "Subscriptions", "Tax"])


class SummaryTests(unittest.TestCase):
    def test_active_subscription_adds_to_total_expense(self) -> None:
        result = summary([make_receipt()], [make_subscription()], NOW, "USD", identity)

        self.assertEqual(result.total_expense, Decimal("59.99"))
        self.assertEqual(result.total_tax, Decimal("4.00"))
        self.assertEqual(result.total_savings, Decimal("0.00"))

    def test_unexpired_trial_is_not_charged(self) -> None:
        trial = make_subscription(is_trial=True, trial_end_date=NOW + timedelta(days=5))

        result = summary([make_receipt()], [trial], NOW, "USD", identity)

        self.assertEqual(result.total_expense, Decimal("50.00"))

    def test_expired_trial_is_charged(self) -> None:
        trial = make_subscription(is_trial=True, trial_end_date=NOW)

        result = summary([make_receipt()], [trial], NOW, "USD", identity)

        self.assertEqual(result.total_expense, Decimal("59.99"))

    def test_paused_subscription_is_not_charged(self) -> None:
        paused = make_subscription(is_active=False)

        result = summary([], [paused], NOW, "USD", identity)

        self.assertEqual(result.total_expense, Decimal("0"))


if __name__ == "__main__":
    unittest.main()
