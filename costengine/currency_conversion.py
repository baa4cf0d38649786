from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
import http.client
import json
import logging
from types import MappingProxyType
from typing import Mapping, Protocol
from urllib.request import urlopen

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from costengine.currencies import coerce_amount, normalize_currency
from costengine.currency_formatting import (
    DEFAULT_LOCALE,
    as_utc,
    format_age,
    format_amount,
    format_with_conversion,
)

logger = logging.getLogger(__name__)

# URLError, HTTPError, timeouts and connection resets are all OSError.
RETRYABLE_ERRORS = (OSError, http.client.HTTPException, json.JSONDecodeError)
MAX_RETRY_DELAY_SECONDS = 30

# Approximate rates per 1 USD, used when no live snapshot has ever been fetched.
DEFAULT_RATES: dict[str, Decimal] = {
    "USD": Decimal("1"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "JPY": Decimal("154.82"),
    "CAD": Decimal("1.36"),
    "AUD": Decimal("1.51"),
    "CHF": Decimal("0.90"),
    "CNY": Decimal("7.23"),
    "HKD": Decimal("7.81"),
    "SGD": Decimal("1.34"),
    "INR": Decimal("83.45"),
    "KRW": Decimal("1350"),
    "MYR": Decimal("4.65"),
    "THB": Decimal("35.5"),
    "IDR": Decimal("15600"),
    "PHP": Decimal("56.8"),
    "TWD": Decimal("31.5"),
    "SEK": Decimal("10.42"),
    "NOK": Decimal("10.71"),
    "DKK": Decimal("6.86"),
    "PLN": Decimal("3.95"),
    "CZK": Decimal("22.8"),
    "HUF": Decimal("355"),
    "RON": Decimal("4.57"),
    "BGN": Decimal("1.80"),
    "HRK": Decimal("7.0"),
    "RUB": Decimal("92.50"),
    "TRY": Decimal("31.8"),
    "BRL": Decimal("5.05"),
    "MXN": Decimal("16.73"),
    "ARS": Decimal("870"),
    "CLP": Decimal("950"),
    "COP": Decimal("3900"),
    "PEN": Decimal("3.7"),
    "NZD": Decimal("1.63"),
    "FJD": Decimal("2.25"),
    "AED": Decimal("3.67"),
    "SAR": Decimal("3.75"),
    "ILS": Decimal("3.65"),
    "EGP": Decimal("30.9"),
    "ZAR": Decimal("18.5"),
    "NGN": Decimal("1450"),
    "KES": Decimal("130"),
}


class RateProviderUnavailable(RuntimeError):
    """Raised when a rate provider cannot fetch live rates."""


class RateCacheError(RuntimeError):
    """Raised when the persisted rate snapshot cannot be read or written."""


@dataclass(frozen=True)
class RateTable:
    """Immutable snapshot of rates relative to ``base``.

    A rate says "1 unit of base equals ``rate`` units of the target". The
    base currency's own rate is implicitly 1. ``last_updated`` is None for
    tables that never came from a live source.
    """

    base: str
    rates: Mapping[str, Decimal]
    last_updated: datetime | None = None

    def __post_init__(self) -> None:
        base = normalize_currency(self.base)
        parsed: dict[str, Decimal] = {}
        for code, value in self.rates.items():
            rate = coerce_amount(value)
            if not rate.is_finite() or rate <= 0:
                raise ValueError(f"Rate for {code} must be a positive number.")
            parsed[normalize_currency(code)] = rate
        parsed[base] = Decimal("1")
        object.__setattr__(self, "base", base)
        object.__setattr__(self, "rates", MappingProxyType(parsed))

    def rate_for(self, currency: str) -> Decimal | None:
        return self.rates.get(currency)

    def convert(self, amount: Decimal, source: str, target: str) -> Decimal | None:
        """Cross-convert through the base; None when either leg is missing."""
        source_rate = self.rate_for(source)
        target_rate = self.rate_for(target)
        if source_rate is None or target_rate is None:
            return None
        if source == self.base:
            return amount * target_rate
        if target == self.base:
            return amount / source_rate
        return amount / source_rate * target_rate

    def rebased(self, base: str) -> "RateTable":
        new_base = normalize_currency(base)
        if new_base == self.base:
            return self
        pivot = self.rate_for(new_base)
        if pivot is None:
            raise ValueError(f"Cannot rebase rates onto missing currency {new_base}.")
        return RateTable(
            base=new_base,
            rates={code: rate / pivot for code, rate in self.rates.items()},
            last_updated=self.last_updated,
        )


class RateProvider(Protocol):
    def fetch_rates(self) -> RateTable:
        ...


class RateSnapshotStore(Protocol):
    def save(self, table: RateTable) -> None:
        ...


@dataclass(frozen=True)
class StaticRateProvider:
    """Deterministic, in-memory FX rates.

    Rates are expressed as target currency per 1 unit of ``base_currency``.
    """

    rates: Mapping[str, Decimal] = None
    base_currency: str = "USD"
    as_of: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "rates", dict(self.rates or DEFAULT_RATES))

    def fetch_rates(self) -> RateTable:
        return RateTable(base=self.base_currency, rates=self.rates, last_updated=self.as_of)


@dataclass
class FrankfurterRateProvider:
    base_currency: str = "USD"
    base_url: str = "https://api.frankfurter.app"
    timeout_seconds: float = 8
    max_attempts: int = 3
    retry_delay_seconds: float = 1.0

    def fetch_rates(self) -> RateTable:
        base_currency = normalize_currency(self.base_currency)
        url = f"{self.base_url}/latest?from={base_currency}"
        payload = self._fetch_with_retry(url)

        rates = payload.get("rates")
        if not isinstance(rates, dict):
            raise RateProviderUnavailable("Frankfurter response missing rates")

        try:
            parsed = {normalize_currency(code): Decimal(str(value)) for code, value in rates.items()}
        except (ValueError, InvalidOperation) as exc:
            raise RateProviderUnavailable("Frankfurter response has malformed rates") from exc
        return RateTable(
            base=base_currency,
            rates=parsed,
            last_updated=datetime.now(timezone.utc),
        )

    def _fetch_with_retry(self, url: str) -> dict:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.retry_delay_seconds, max=MAX_RETRY_DELAY_SECONDS
            ),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=True,
        )
        try:
            payload = retrying(self._fetch_once, url)
        except RETRYABLE_ERRORS as exc:
            raise RateProviderUnavailable("Frankfurter API unavailable") from exc
        if not isinstance(payload, dict):
            raise RateProviderUnavailable("Frankfurter response is not an object")
        return payload

    def _fetch_once(self, url: str):
        with urlopen(url, timeout=self.timeout_seconds) as response:
            return json.load(response)


@dataclass(frozen=True)
class RefreshResult:
    succeeded: bool
    table: RateTable | None
    error: str | None = None


class CurrencyConverter:
    """Synchronous conversion over a swappable rate snapshot.

    Readers grab the current table reference once per call, so a concurrent
    ``refresh`` is never observed half-applied. ``conversion_degraded`` is
    raised whenever a conversion had to fall back to the unconverted amount
    or a refresh failed, and cleared by the next successful refresh.
    """

    def __init__(
        self,
        provider: RateProvider,
        cache: RateSnapshotStore | None = None,
        initial_table: RateTable | None = None,
        locale: str = DEFAULT_LOCALE,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self._table = initial_table
        self._degraded = False
        self.locale = locale

    @property
    def table(self) -> RateTable | None:
        return self._table

    @property
    def last_updated(self) -> datetime | None:
        table = self._table
        return table.last_updated if table else None

    @property
    def conversion_degraded(self) -> bool:
        return self._degraded

    def convert_sync(
        self,
        amount: Decimal | int | float | str,
        source_currency: str,
        target_currency: str,
    ) -> Decimal:
        coerced_amount = coerce_amount(amount)
        source = source_currency.strip().upper()
        target = target_currency.strip().upper()
        if source == target:
            return coerced_amount

        table = self._table
        converted = table.convert(coerced_amount, source, target) if table else None
        if converted is None:
            self._degraded = True
            return coerced_amount
        return converted

    def format(self, amount: Decimal | int | float | str, currency_code: str) -> str:
        return format_amount(amount, currency_code)

    def format_with_conversion(
        self,
        amount: Decimal,
        original_currency: str,
        preferred_currency: str,
    ) -> str:
        converted = self.convert_sync(amount, original_currency, preferred_currency)
        return format_with_conversion(amount, original_currency, converted, preferred_currency)

    def is_stale(self, now: datetime, threshold: timedelta) -> bool:
        last_updated = self.last_updated
        if last_updated is None:
            return True
        return as_utc(now) - as_utc(last_updated) > threshold

    def last_updated_text(self, now: datetime) -> str:
        return format_age(self.last_updated, now, locale=self.locale)

    async def refresh(self) -> RefreshResult:
        """Fetch a new table and publish it in one reference swap.

        Cancel the task running this coroutine to abandon a refresh; the
        previous table stays in place and the degraded flag is left alone.
        """
        try:
            table = await asyncio.to_thread(self._provider.fetch_rates)
        except asyncio.CancelledError:
            logger.info("Exchange-rate refresh cancelled, keeping previous table")
            raise
        except (RateProviderUnavailable, ValueError) as exc:
            self._degraded = True
            logger.warning("Exchange-rate refresh failed: %s", exc)
            return RefreshResult(succeeded=False, table=self._table, error=str(exc))
        except Exception as exc:
            self._degraded = True
            logger.exception("Exchange-rate provider raised unexpectedly")
            return RefreshResult(succeeded=False, table=self._table, error=str(exc) or type(exc).__name__)

        self._table = table
        self._degraded = False
        logger.info("Loaded %d exchange rates for base %s", len(table.rates), table.base)

        if self._cache is not None:
            try:
                await asyncio.to_thread(self._cache.save, table)
            except RateCacheError:
                logger.exception("Could not persist refreshed exchange rates")
        return RefreshResult(succeeded=True, table=table)
