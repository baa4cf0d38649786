from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from costengine.subscriptions import Converter, Subscription, actual_charged_monthly_cost

ZERO = Decimal("0")
TAX_CATEGORY = "Tax"
SUBSCRIPTIONS_CATEGORY = "Subscriptions"
POINTS_MARKER = "point"


@dataclass(frozen=True)
class ReceiptItem:
    name: str
    price: Decimal
    category: str
    original_price: Optional[Decimal] = None
    discount_description: Optional[str] = None
    is_discount: bool = False


@dataclass(frozen=True)
class Receipt:
    id: str
    store_name: str
    purchase_date: date
    currency: str
    total_amount: Decimal
    total_tax: Decimal
    items: Tuple[ReceiptItem, ...] = field(default_factory=tuple)
    receipt_name: Optional[str] = None
    payment_method: Optional[str] = None

    @property
    def savings(self) -> Decimal:
        """Discount lines plus markdowns against an item's original price."""
        total = ZERO
        for item in self.items:
            if item.is_discount:
                total += abs(item.price)
            elif item.original_price is not None and item.original_price > item.price:
                total += item.original_price - item.price
        return total


@dataclass(frozen=True)
class ExpenseSummary:
    total_expense: Decimal
    total_tax: Decimal
    total_savings: Decimal


def category_totals(
    receipts: Iterable[Receipt],
    subscriptions: Iterable[Subscription],
    now: date | datetime,
    preferred_currency: str,
    convert: Converter,
) -> List[Tuple[str, Decimal]]:
    """Bucket converted spending by item category.

    Discount lines and zero-price points redemptions are skipped, each
    receipt's tax lands in "Tax", and subscriptions actually charged this
    month land in "Subscriptions". Output is sorted by total, largest first,
    for display only.
    """
    totals: Dict[str, Decimal] = {}
    for receipt in receipts:
        for item in receipt.items:
            if _is_excluded(item):
                continue
            totals[item.category] = totals.get(item.category, ZERO) + convert(
                item.price, receipt.currency, preferred_currency
            )
        totals[TAX_CATEGORY] = totals.get(TAX_CATEGORY, ZERO) + convert(
            receipt.total_tax, receipt.currency, preferred_currency
        )

    charged = actual_charged_monthly_cost(subscriptions, now, preferred_currency, convert)
    if charged > ZERO:
        totals[SUBSCRIPTIONS_CATEGORY] = totals.get(SUBSCRIPTIONS_CATEGORY, ZERO) + charged

    return sorted(totals.items(), key=lambda entry: (-entry[1], entry[0]))


def summary(
    receipts: Iterable[Receipt],
    subscriptions: Iterable[Subscription],
    now: date | datetime,
    preferred_currency: str,
    convert: Converter,
) -> ExpenseSummary:
    total_expense = ZERO
    total_tax = ZERO
    total_savings = ZERO
    for receipt in receipts:
        total_expense += convert(receipt.total_amount, receipt.currency, preferred_currency)
        total_tax += convert(receipt.total_tax, receipt.currency, preferred_currency)
        total_savings += convert(receipt.savings, receipt.currency, preferred_currency)

    total_expense += actual_charged_monthly_cost(
        subscriptions, now, preferred_currency, convert
    )
    return ExpenseSummary(
        total_expense=total_expense,
        total_tax=total_tax,
        total_savings=total_savings,
    )


def _is_excluded(item: ReceiptItem) -> bool:
    if item.is_discount:
        return True
    description = (item.discount_description or "").lower()
    return item.price == ZERO and POINTS_MARKER in description
