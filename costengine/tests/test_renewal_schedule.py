import unittest
from datetime import date, datetime
from decimal import Decimal

from costengine.billing_cycle import BillingCycle
from costengine.renewal_schedule import (
    RENEWAL_REMINDER,
    TRIAL_END_REMINDER,
    Reminder,
    advance,
    days_total,
    days_until,
    is_trial_active,
    previous_renewal,
    reminder_dates,
    renewal_progress,
    roll_forward,
)
from costengine.subscriptions import Subscription


def make_subscription(**overrides) -> Subscription:
    values = dict(
        id="sub-1",
        name="Streaming",
        service_name="StreamCo",
        amount=Decimal("9.99"),
        currency="USD",
        billing_cycle=BillingCycle.monthly(),
        next_renewal_date=date(2024, 6, 15),
    )
    values.update(overrides)
    return Subscription(**values)


class AdvanceTests(unittest.TestCase):
    def test_weekly_adds_seven_days(self) -> None:
        self.assertEqual(advance(date(2024, 12, 28), BillingCycle.weekly()), date(2025, 1, 4))

    def test_month_steps_per_cycle(self) -> None:
        start = date(2024, 1, 15)
        expected = {
            "monthly": date(2024, 2, 15),
            "quarterly": date(2024, 4, 15),
            "semiannual": date(2024, 7, 15),
            "annual": date(2025, 1, 15),
        }
        for kind, target in expected.items():
            with self.subTest(kind=kind):
                self.assertEqual(advance(start, BillingCycle.parse(kind)), target)

    def test_month_end_clamps_to_shorter_month(self) -> None:
        self.assertEqual(advance(date(2024, 1, 31), BillingCycle.monthly()), date(2024, 2, 29))
        self.assertEqual(advance(date(2023, 1, 31), BillingCycle.monthly()), date(2023, 2, 28))

    def test_leap_day_annual_clamps(self) -> None:
        self.assertEqual(advance(date(2024, 2, 29), BillingCycle.annual()), date(2025, 2, 28))

    def test_custom_interval_advances_by_months(self) -> None:
        # "Every N months" is read as calendar months, not 30-day blocks.
        self.assertEqual(advance(date(2024, 11, 30), BillingCycle.custom(3)), date(2025, 2, 28))
        self.assertEqual(advance(date(2024, 1, 10), BillingCycle.custom(36)), date(2027, 1, 10))

    def test_previous_renewal_steps_back(self) -> None:
        self.assertEqual(previous_renewal(date(2024, 3, 31), BillingCycle.monthly()), date(2024, 2, 29))
        self.assertEqual(previous_renewal(date(2024, 1, 4), BillingCycle.weekly()), date(2023, 12, 28))


class RollForwardTests(unittest.TestCase):
    def test_future_date_is_unchanged(self) -> None:
        self.assertEqual(
            roll_forward(date(2024, 7, 1), BillingCycle.monthly(), date(2024, 6, 1)),
            date(2024, 7, 1),
        )

    def test_monthly_keeps_month_end_anchor(self) -> None:
        rolled = roll_forward(date(2024, 1, 31), BillingCycle.monthly(), date(2024, 3, 5))

        self.assertEqual(rolled, date(2024, 3, 31))

    def test_date_equal_to_now_moves_forward(self) -> None:
        self.assertEqual(
            roll_forward(date(2024, 6, 1), BillingCycle.quarterly(), date(2024, 6, 1)),
            date(2024, 9, 1),
        )

    def test_weekly_skips_whole_weeks(self) -> None:
        self.assertEqual(
            roll_forward(date(2024, 1, 1), BillingCycle.weekly(), date(2024, 1, 20)),
            date(2024, 1, 22),
        )

    def test_accepts_datetime_now(self) -> None:
        self.assertEqual(
            roll_forward(date(2024, 1, 1), BillingCycle.annual(), datetime(2024, 1, 1, 23, 59)),
            date(2025, 1, 1),
        )


class ProgressTests(unittest.TestCase):
    def test_days_total_per_cycle(self) -> None:
        self.assertEqual(days_total(BillingCycle.weekly()), 7)
        self.assertEqual(days_total(BillingCycle.monthly()), 30)
        self.assertEqual(days_total(BillingCycle.quarterly()), 90)
        self.assertEqual(days_total(BillingCycle.semiannual()), 180)
        self.assertEqual(days_total(BillingCycle.annual()), 365)
        self.assertEqual(days_total(BillingCycle.custom(4)), 120)

    def test_days_until_is_signed(self) -> None:
        self.assertEqual(days_until(date(2024, 6, 10), date(2024, 6, 15)), -5)
        self.assertEqual(days_until(date(2024, 6, 20), date(2024, 6, 15)), 5)

    def test_progress_fraction(self) -> None:
        progress = renewal_progress(date(2024, 6, 25), BillingCycle.monthly(), date(2024, 6, 10))

        self.assertAlmostEqual(progress, 0.5)

    def test_progress_is_complete_when_due_or_past(self) -> None:
        self.assertEqual(renewal_progress(date(2024, 6, 1), BillingCycle.monthly(), date(2024, 6, 10)), 1.0)

    def test_progress_clamps_to_zero_when_far_out(self) -> None:
        self.assertEqual(renewal_progress(date(2024, 12, 1), BillingCycle.weekly(), date(2024, 6, 10)), 0.0)


class TrialTests(unittest.TestCase):
    def test_trial_flips_exactly_at_end_date(self) -> None:
        sub = make_subscription(is_trial=True, trial_end_date=date(2024, 6, 20))

        self.assertTrue(is_trial_active(sub, date(2024, 6, 19)))
        self.assertFalse(is_trial_active(sub, date(2024, 6, 20)))
        self.assertFalse(is_trial_active(sub, datetime(2024, 6, 20, 0, 0)))

    def test_non_trial_is_never_active(self) -> None:
        sub = make_subscription(is_trial=False, trial_end_date=date(2030, 1, 1))

        self.assertFalse(is_trial_active(sub, date(2024, 6, 1)))


class ReminderTests(unittest.TestCase):
    def test_renewal_and_trial_reminders(self) -> None:
        sub = make_subscription(
            is_trial=True,
            trial_end_date=date(2024, 6, 12),
            notify_before_renewal_days=3,
            notify_before_trial_end_days=2,
        )

        reminders = reminder_dates(sub, date(2024, 6, 1))

        self.assertEqual(
            reminders,
            [
                Reminder(
                    kind=RENEWAL_REMINDER,
                    fire_date=date(2024, 6, 12),
                    event_date=date(2024, 6, 15),
                    subscription_id="sub-1",
                ),
                Reminder(
                    kind=TRIAL_END_REMINDER,
                    fire_date=date(2024, 6, 10),
                    event_date=date(2024, 6, 12),
                    subscription_id="sub-1",
                ),
            ],
        )

    def test_past_and_paused_reminders_are_skipped(self) -> None:
        paused = make_subscription(is_active=False)
        due_soon = make_subscription(notify_before_renewal_days=10)

        self.assertEqual(reminder_dates(paused, date(2024, 6, 1)), [])
        self.assertEqual(reminder_dates(due_soon, date(2024, 6, 10)), [])


if __name__ == "__main__":
    unittest.main()
