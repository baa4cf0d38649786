from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, List

from costengine.billing_cycle import BillingCycle, CycleKind

if TYPE_CHECKING:
    from costengine.subscriptions import Subscription

WEEKLY_DAYS = 7
DAYS_PER_MONTH = 30
# Approximate period lengths for progress bars only; date math uses advance().
DAYS_TOTAL = {
    CycleKind.WEEKLY: WEEKLY_DAYS,
    CycleKind.MONTHLY: 30,
    CycleKind.QUARTERLY: 90,
    CycleKind.SEMIANNUAL: 180,
    CycleKind.ANNUAL: 365,
}
MAX_ROLL_FORWARD_STEPS = 10_000

RENEWAL_REMINDER = "renewal"
TRIAL_END_REMINDER = "trial_end"


@dataclass(frozen=True)
class Reminder:
    kind: str
    fire_date: date
    event_date: date
    subscription_id: str


def advance(day: date, cycle: BillingCycle) -> date:
    """Return the next charge date after ``day`` for ``cycle``.

    Custom cycles step by calendar months. Month steps clamp to the last day
    of the target month (Jan 31 + 1 month is Feb 28 or 29).
    """
    months = cycle.months
    if months is None:
        return day + timedelta(days=WEEKLY_DAYS)
    return _add_months(day, months, day.day)


def previous_renewal(day: date, cycle: BillingCycle) -> date:
    months = cycle.months
    if months is None:
        return day - timedelta(days=WEEKLY_DAYS)
    return _add_months(day, -months, day.day)


def roll_forward(day: date, cycle: BillingCycle, now: date | datetime) -> date:
    """Advance ``day`` until it falls after ``now``.

    Month steps are taken from the original anchor day so a 31st keeps
    landing on month ends instead of drifting to the 28th.
    """
    today = as_date(now)
    if day > today:
        return day
    months = cycle.months
    if months is None:
        periods = (today - day).days // WEEKLY_DAYS + 1
        return day + timedelta(days=WEEKLY_DAYS * periods)

    offset = 0
    candidate = day
    for _ in range(MAX_ROLL_FORWARD_STEPS):
        if candidate > today:
            return candidate
        offset += months
        candidate = _add_months(day, offset, day.day)
    raise ValueError(f"Renewal date {day.isoformat()} is too far in the past to roll forward.")


def days_total(cycle: BillingCycle) -> int:
    if cycle.kind is CycleKind.CUSTOM:
        return DAYS_PER_MONTH * cycle.interval_count
    return DAYS_TOTAL[cycle.kind]


def days_until(target: date, now: date | datetime) -> int:
    return (target - as_date(now)).days


def renewal_progress(
    next_renewal_date: date,
    cycle: BillingCycle,
    now: date | datetime,
) -> float:
    """Fraction of the current billing period already elapsed, in [0, 1]."""
    days_remaining = max(0, days_until(next_renewal_date, now))
    progress = 1.0 - days_remaining / days_total(cycle)
    return min(1.0, max(0.0, progress))


def is_trial_active(subscription: "Subscription", now: date | datetime) -> bool:
    # A trial ending today is already charged.
    if not subscription.is_trial or subscription.trial_end_date is None:
        return False
    return subscription.trial_end_date > as_date(now)


def reminder_dates(subscription: "Subscription", now: date | datetime) -> List[Reminder]:
    today = as_date(now)
    reminders: List[Reminder] = []

    if subscription.is_active:
        lead = max(0, subscription.notify_before_renewal_days)
        fire_date = subscription.next_renewal_date - timedelta(days=lead)
        if fire_date > today:
            reminders.append(
                Reminder(
                    kind=RENEWAL_REMINDER,
                    fire_date=fire_date,
                    event_date=subscription.next_renewal_date,
                    subscription_id=subscription.id,
                )
            )

    if subscription.is_trial and subscription.trial_end_date is not None:
        lead = max(0, subscription.notify_before_trial_end_days)
        fire_date = subscription.trial_end_date - timedelta(days=lead)
        if fire_date > today:
            reminders.append(
                Reminder(
                    kind=TRIAL_END_REMINDER,
                    fire_date=fire_date,
                    event_date=subscription.trial_end_date,
                    subscription_id=subscription.id,
                )
            )

    return reminders


def as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _add_months(start_date: date, months: int, anchor_day: int) -> date:
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    month = total_month % 12 + 1
    last_day = monthrange(year, month)[1]
    day = min(anchor_day, last_day)
    return date(year, month, day)
