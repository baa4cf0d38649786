from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel

from costengine.billing_cycle import BillingCycle
from costengine.currencies import get_currency
from costengine.expense_aggregation import Receipt, ReceiptItem
from costengine.subscriptions import Subscription

CENT = Decimal("0.01")


def _check_cents(value: Decimal, label: str) -> None:
    # Stored in Numeric(12, 2) columns, which would round extra digits.
    try:
        rounded = value.quantize(CENT)
    except InvalidOperation as exc:
        raise ValueError(f"{label} is out of range.") from exc
    if value != rounded:
        raise ValueError(f"{label} supports at most 2 decimal places.")


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


class SubscriptionPayload(BaseModel):
    name: str = ""
    service_name: str
    amount: Decimal
    currency: str
    billing_cycle: str
    interval_count: int | None = None
    next_renewal_date: date
    is_active: bool = True
    is_trial: bool = False
    trial_end_date: date | None = None
    notify_before_renewal_days: int = 3
    notify_before_trial_end_days: int = 2
    category: str | None = None
    payment_method: str | None = None
    notes: str | None = None
    logo_url: str | None = None

    @classmethod
    def validate_payload(
        cls, payload: "SubscriptionPayload", today: date | None = None
    ) -> "SubscriptionPayload":
        payload.service_name = payload.service_name.strip()
        if not payload.service_name:
            raise ValueError("Service name required.")
        payload.name = payload.name.strip()
        if payload.amount < 0:
            raise ValueError("Amount must be zero or greater.")
        _check_cents(payload.amount, "Amount")
        payload.currency = get_currency(payload.currency).code
        cycle = BillingCycle.parse(payload.billing_cycle, payload.interval_count)
        payload.billing_cycle = cycle.kind.value
        payload.interval_count = cycle.interval_count
        if payload.is_trial:
            if payload.trial_end_date is None:
                raise ValueError("Trial subscriptions need a trial end date.")
            if today is not None and payload.trial_end_date < today:
                raise ValueError("Trial end date cannot be in the past.")
        else:
            payload.trial_end_date = None
        if payload.notify_before_renewal_days < 0 or payload.notify_before_trial_end_days < 0:
            raise ValueError("Reminder lead times must be zero or greater.")
        payload.category = _clean(payload.category)
        payload.payment_method = _clean(payload.payment_method)
        payload.notes = _clean(payload.notes)
        payload.logo_url = _clean(payload.logo_url)
        return payload

    def to_subscription(self, subscription_id: str) -> Subscription:
        return Subscription(
            id=subscription_id,
            name=self.name,
            service_name=self.service_name,
            amount=self.amount,
            currency=self.currency,
            billing_cycle=BillingCycle.parse(self.billing_cycle, self.interval_count),
            next_renewal_date=self.next_renewal_date,
            is_active=self.is_active,
            is_trial=self.is_trial,
            trial_end_date=self.trial_end_date,
            notify_before_renewal_days=self.notify_before_renewal_days,
            notify_before_trial_end_days=self.notify_before_trial_end_days,
            category=self.category,
            payment_method=self.payment_method,
            notes=self.notes,
            logo_url=self.logo_url,
        )


class SubscriptionResponse(SubscriptionPayload):
    id: str
    monthly_equivalent: Decimal
    yearly_equivalent: Decimal
    cycle_label: str


class ReceiptItemPayload(BaseModel):
    name: str
    price: Decimal
    category: str
    original_price: Decimal | None = None
    discount_description: str | None = None
    is_discount: bool = False

    def to_item(self) -> ReceiptItem:
        return ReceiptItem(
            name=self.name,
            price=self.price,
            category=self.category,
            original_price=self.original_price,
            discount_description=self.discount_description,
            is_discount=self.is_discount,
        )


class ReceiptPayload(BaseModel):
    store_name: str
    purchase_date: date
    currency: str
    total_amount: Decimal
    total_tax: Decimal = Decimal("0")
    items: list[ReceiptItemPayload] = []
    receipt_name: str | None = None
    payment_method: str | None = None

    @classmethod
    def validate_payload(cls, payload: "ReceiptPayload") -> "ReceiptPayload":
        payload.store_name = payload.store_name.strip()
        if not payload.store_name:
            raise ValueError("Store name required.")
        payload.currency = get_currency(payload.currency).code
        if payload.total_amount < 0:
            raise ValueError("Total amount must be zero or greater.")
        _check_cents(payload.total_amount, "Total amount")
        if payload.total_tax < 0:
            raise ValueError("Tax must be zero or greater.")
        _check_cents(payload.total_tax, "Tax")
        for item in payload.items:
            item.name = item.name.strip()
            item.category = item.category.strip()
            if not item.category:
                raise ValueError("Every receipt item needs a category.")
            item.discount_description = _clean(item.discount_description)
        payload.receipt_name = _clean(payload.receipt_name)
        payload.payment_method = _clean(payload.payment_method)
        return payload

    def to_receipt(self, receipt_id: str) -> Receipt:
        return Receipt(
            id=receipt_id,
            store_name=self.store_name,
            purchase_date=self.purchase_date,
            currency=self.currency,
            total_amount=self.total_amount,
            total_tax=self.total_tax,
            items=tuple(item.to_item() for item in self.items),
            receipt_name=self.receipt_name,
            payment_method=self.payment_method,
        )


class ReceiptResponse(ReceiptPayload):
    id: str
    savings: Decimal


class RateStatusResponse(BaseModel):
    base_currency: str | None
    last_updated: str | None
    last_updated_text: str
    is_stale: bool
    conversion_degraded: bool


class RefreshResponse(RateStatusResponse):
    succeeded: bool
    error: str | None = None


class CurrencyResponse(BaseModel):
    code: str
    name: str
    symbol: str


class SubscriptionTotalsResponse(BaseModel):
    currency: str
    monthly_cost: Decimal
    yearly_cost: Decimal
    actual_charged_monthly_cost: Decimal
    formatted_monthly_cost: str
    formatted_yearly_cost: str
    conversion_degraded: bool


class CategoryCostResponse(BaseModel):
    category: str
    monthly_total: Decimal
    count: int


class SubscriptionInsightsResponse(BaseModel):
    currency: str
    active_count: int
    monthly_total: Decimal
    annual_total: Decimal
    average_monthly_cost: Decimal
    next_renewal_id: str | None = None
    upcoming_renewal_ids: list[str]
    trials_ending_soon_ids: list[str]
    category_breakdown: list[CategoryCostResponse]


class ReminderResponse(BaseModel):
    kind: str
    fire_date: date
    event_date: date


class RenewalScheduleResponse(BaseModel):
    subscription_id: str
    next_renewal_date: date
    days_until_renewal: int
    renewal_progress: float
    is_trial_active: bool
    reminders: list[ReminderResponse]


class CategoryTotalResponse(BaseModel):
    category: str
    total: Decimal
    formatted_total: str


class DashboardResponse(BaseModel):
    currency: str
    total_expense: Decimal
    total_tax: Decimal
    total_savings: Decimal
    formatted_total_expense: str
    formatted_total_tax: str
    formatted_total_savings: str
    categories: list[CategoryTotalResponse]
    conversion_degraded: bool
    rates_last_updated: str
