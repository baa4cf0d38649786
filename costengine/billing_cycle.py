from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from costengine.currencies import coerce_amount

MIN_CUSTOM_INTERVAL = 1
MAX_CUSTOM_INTERVAL = 36
WEEKS_PER_YEAR = Decimal("52")
MONTHS_PER_YEAR = Decimal("12")


class CycleKind(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMIANNUAL = "semiannual"
    ANNUAL = "annual"
    CUSTOM = "custom"


# Calendar months per charge for every kind except weekly and custom.
MONTHS_PER_CYCLE = {
    CycleKind.MONTHLY: 1,
    CycleKind.QUARTERLY: 3,
    CycleKind.SEMIANNUAL: 6,
    CycleKind.ANNUAL: 12,
}


@dataclass(frozen=True)
class BillingCycle:
    """Recurrence of a subscription charge.

    Only ``custom`` carries an interval, meaning "every N months".
    """

    kind: CycleKind
    interval_count: int | None = None

    def __post_init__(self) -> None:
        kind = CycleKind(self.kind)
        object.__setattr__(self, "kind", kind)
        if kind is CycleKind.CUSTOM:
            if (
                not isinstance(self.interval_count, int)
                or isinstance(self.interval_count, bool)
                or not MIN_CUSTOM_INTERVAL <= self.interval_count <= MAX_CUSTOM_INTERVAL
            ):
                raise ValueError(
                    f"Custom billing cycles need an interval between "
                    f"{MIN_CUSTOM_INTERVAL} and {MAX_CUSTOM_INTERVAL} months."
                )
        elif self.interval_count is not None:
            raise ValueError(f"{kind.value} billing cycles do not take an interval.")

    @classmethod
    def weekly(cls) -> "BillingCycle":
        return cls(CycleKind.WEEKLY)

    @classmethod
    def monthly(cls) -> "BillingCycle":
        return cls(CycleKind.MONTHLY)

    @classmethod
    def quarterly(cls) -> "BillingCycle":
        return cls(CycleKind.QUARTERLY)

    @classmethod
    def semiannual(cls) -> "BillingCycle":
        return cls(CycleKind.SEMIANNUAL)

    @classmethod
    def annual(cls) -> "BillingCycle":
        return cls(CycleKind.ANNUAL)

    @classmethod
    def custom(cls, interval_count: int) -> "BillingCycle":
        return cls(CycleKind.CUSTOM, interval_count)

    @classmethod
    def parse(cls, kind: str, interval_count: int | None = None) -> "BillingCycle":
        normalized = _normalize_kind(kind)
        try:
            cycle_kind = CycleKind(normalized)
        except ValueError as exc:
            supported = ", ".join(k.value for k in CycleKind)
            raise ValueError(f"Billing cycle must be one of: {supported}.") from exc
        if cycle_kind is not CycleKind.CUSTOM:
            interval_count = None
        return cls(cycle_kind, interval_count)

    @property
    def months(self) -> int | None:
        """Calendar months per charge, or None for weekly cycles."""
        if self.kind is CycleKind.CUSTOM:
            return self.interval_count
        return MONTHS_PER_CYCLE.get(self.kind)

    def __str__(self) -> str:
        return cycle_label(self)


def monthly_equivalent(amount: Decimal, cycle: BillingCycle) -> Decimal:
    months = _months_for(cycle)
    if months is None:
        return coerce_amount(amount) * WEEKS_PER_YEAR / MONTHS_PER_YEAR
    if months == 1:
        return coerce_amount(amount)
    return coerce_amount(amount) / Decimal(months)


def yearly_equivalent(amount: Decimal, cycle: BillingCycle) -> Decimal:
    # Same value as monthly_equivalent * 12, ordered to keep Decimal exact.
    months = _months_for(cycle)
    if months is None:
        return coerce_amount(amount) * WEEKS_PER_YEAR
    if months == 12:
        return coerce_amount(amount)
    return coerce_amount(amount) * MONTHS_PER_YEAR / Decimal(months)


def cycle_label(cycle: BillingCycle) -> str:
    if cycle.kind is CycleKind.CUSTOM:
        if cycle.interval_count == 1:
            return "Every month"
        return f"Every {cycle.interval_count} months"
    return cycle.kind.value.capitalize()


def _months_for(cycle: BillingCycle) -> int | None:
    if not isinstance(cycle, BillingCycle):
        raise ValueError(f"Expected a BillingCycle, got {cycle!r}.")
    return cycle.months


def _normalize_kind(value: str) -> str:
    normalized = "".join(ch for ch in value.strip().lower() if ch.isalnum())
    if normalized in {"yearly", "annually"}:
        return CycleKind.ANNUAL.value
    if normalized in {"semiannually", "biannual", "halfyearly"}:
        return CycleKind.SEMIANNUAL.value
    return normalized
