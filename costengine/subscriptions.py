from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional

from costengine.billing_cycle import BillingCycle, monthly_equivalent, yearly_equivalent
from costengine.renewal_schedule import as_date, is_trial_active, roll_forward

ZERO = Decimal("0")
UNCATEGORIZED = "Uncategorized"
UPCOMING_RENEWAL_DAYS = 30
TRIAL_ENDING_DAYS = 7

SUPPORTED_STATUSES = {"all", "active", "trials", "paused"}
SUPPORTED_SORTS = {"next_renewal", "amount", "name"}

Converter = Callable[[Decimal, str, str], Decimal]


@dataclass(frozen=True)
class Subscription:
    id: str
    name: str
    service_name: str
    amount: Decimal
    currency: str
    billing_cycle: BillingCycle
    next_renewal_date: date
    is_active: bool = True
    is_trial: bool = False
    trial_end_date: Optional[date] = None
    notify_before_renewal_days: int = 3
    notify_before_trial_end_days: int = 2
    category: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    logo_url: Optional[str] = None

    @property
    def interval_count(self) -> Optional[int]:
        return self.billing_cycle.interval_count

    @property
    def display_name(self) -> str:
        return self.name if self.name.strip() else self.service_name


@dataclass(frozen=True)
class CategoryCost:
    category: str
    monthly_total: Decimal
    count: int


@dataclass(frozen=True)
class SubscriptionInsights:
    active_count: int
    monthly_total: Decimal
    annual_total: Decimal
    average_monthly_cost: Decimal
    next_renewal: Optional[Subscription]
    upcoming_renewals: List[Subscription]
    category_breakdown: List[CategoryCost]
    trials_ending_soon: List[Subscription]


def monthly_cost(
    subscriptions: Iterable[Subscription],
    preferred_currency: str,
    convert: Converter,
) -> Decimal:
    """Contracted monthly run-rate across every subscription, paused or not."""
    total = ZERO
    for sub in subscriptions:
        total += _converted_monthly(sub, preferred_currency, convert)
    return total


def yearly_cost(
    subscriptions: Iterable[Subscription],
    preferred_currency: str,
    convert: Converter,
) -> Decimal:
    total = ZERO
    for sub in subscriptions:
        total += convert(
            yearly_equivalent(sub.amount, sub.billing_cycle),
            sub.currency,
            preferred_currency,
        )
    return total


def actual_charged_monthly_cost(
    subscriptions: Iterable[Subscription],
    now: date | datetime,
    preferred_currency: str,
    convert: Converter,
) -> Decimal:
    """Monthly cost of subscriptions that are active and past any trial."""
    return monthly_cost(
        charged_subscriptions(subscriptions, now),
        preferred_currency,
        convert,
    )


def charged_subscriptions(
    subscriptions: Iterable[Subscription],
    now: date | datetime,
) -> List[Subscription]:
    return [
        sub
        for sub in subscriptions
        if sub.is_active and not is_trial_active(sub, now)
    ]


def filter_subscriptions(
    subscriptions: Iterable[Subscription],
    status: str = "all",
    query: str | None = None,
) -> List[Subscription]:
    normalized_status = _validate_status(status)
    needle = (query or "").strip().lower()
    filtered: List[Subscription] = []
    for sub in subscriptions:
        if needle and needle not in sub.service_name.lower() and needle not in sub.name.lower():
            continue
        if normalized_status == "active" and not sub.is_active:
            continue
        if normalized_status == "trials" and not sub.is_trial:
            continue
        if normalized_status == "paused" and sub.is_active:
            continue
        filtered.append(sub)
    return filtered


def sort_subscriptions(
    subscriptions: Iterable[Subscription],
    order: str,
    preferred_currency: str,
    convert: Converter,
) -> List[Subscription]:
    normalized_order = _validate_sort(order)
    subs = list(subscriptions)
    if normalized_order == "next_renewal":
        return sorted(subs, key=lambda sub: sub.next_renewal_date)
    if normalized_order == "amount":
        return sorted(
            subs,
            key=lambda sub: _converted_monthly(sub, preferred_currency, convert),
            reverse=True,
        )
    return sorted(subs, key=lambda sub: sub.display_name.casefold())


def upcoming_renewals(
    subscriptions: Iterable[Subscription],
    now: date | datetime,
    within_days: int = UPCOMING_RENEWAL_DAYS,
) -> List[Subscription]:
    horizon = as_date(now) + timedelta(days=within_days)
    upcoming = [
        sub
        for sub in subscriptions
        if sub.is_active and sub.next_renewal_date <= horizon
    ]
    return sorted(upcoming, key=lambda sub: sub.next_renewal_date)


def advance_due_renewals(
    subscriptions: Iterable[Subscription],
    now: date | datetime,
) -> List[Subscription]:
    """Roll every passed renewal date forward past ``now``.

    Only ``next_renewal_date`` changes; amount and currency are untouched.
    Subscriptions not yet due are returned as-is.
    """
    today = as_date(now)
    advanced: List[Subscription] = []
    for sub in subscriptions:
        if sub.next_renewal_date > today:
            advanced.append(sub)
            continue
        advanced.append(
            replace(
                sub,
                next_renewal_date=roll_forward(sub.next_renewal_date, sub.billing_cycle, today),
            )
        )
    return advanced


def subscription_insights(
    subscriptions: Iterable[Subscription],
    now: date | datetime,
    preferred_currency: str,
    convert: Converter,
) -> SubscriptionInsights:
    today = as_date(now)
    active = [sub for sub in subscriptions if sub.is_active]
    monthly_total = monthly_cost(active, preferred_currency, convert)
    average = monthly_total / len(active) if active else ZERO

    by_category: Dict[str, List[Subscription]] = {}
    for sub in active:
        by_category.setdefault(sub.category or UNCATEGORIZED, []).append(sub)
    breakdown = [
        CategoryCost(
            category=category,
            monthly_total=monthly_cost(members, preferred_currency, convert),
            count=len(members),
        )
        for category, members in by_category.items()
    ]
    breakdown.sort(key=lambda item: (-item.monthly_total, item.category))

    trial_horizon = today + timedelta(days=TRIAL_ENDING_DAYS)
    trials_ending = [
        sub
        for sub in active
        if is_trial_active(sub, today) and sub.trial_end_date <= trial_horizon
    ]
    upcoming = upcoming_renewals(active, today)

    return SubscriptionInsights(
        active_count=len(active),
        monthly_total=monthly_total,
        annual_total=monthly_total * 12,
        average_monthly_cost=average,
        next_renewal=upcoming[0] if upcoming else None,
        upcoming_renewals=upcoming,
        category_breakdown=breakdown,
        trials_ending_soon=sorted(trials_ending, key=lambda sub: sub.trial_end_date),
    )


def _converted_monthly(sub: Subscription, preferred_currency: str, convert: Converter) -> Decimal:
    return convert(
        monthly_equivalent(sub.amount, sub.billing_cycle),
        sub.currency,
        preferred_currency,
    )


def _validate_status(status: str) -> str:
    normalized = status.strip().lower()
    if normalized not in SUPPORTED_STATUSES:
        raise ValueError("Status must be one of all, active, trials, or paused.")
    return normalized


def _validate_sort(order: str) -> str:
    normalized = order.strip().lower().replace("-", "_")
    if normalized not in SUPPORTED_SORTS:
        raise ValueError("Sort must be one of next_renewal, amount, or name.")
    return normalized
