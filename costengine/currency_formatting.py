from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from babel import Locale
from babel.core import UnknownLocaleError
from babel.dates import format_timedelta
from babel.numbers import format_compact_currency, format_currency

from costengine.currencies import coerce_amount, get_currency

DEFAULT_LOCALE = "en_US"
NEVER_UPDATED = "Never updated"
JUST_NOW = "Just now"


def format_amount(
    amount: Decimal | int | float | str,
    currency_code: str,
    compact: bool = False,
    locale: str | None = None,
) -> str:
    """Format an amount using the currency's own symbol and digit rules.

    Zero-decimal currencies (JPY, KRW, ...) follow CLDR and render without
    fraction digits. Negative amounts always lead with the minus, even where
    the CLDR pattern would put it after the symbol (de_CH gives "CHF-12.34").
    """
    code = currency_code.strip().upper()
    number = coerce_amount(amount)
    if number < 0:
        return "-" + format_amount(-number, code, compact=compact, locale=locale)
    resolved_locale = _resolve_locale(locale or _currency_locale(code))

    try:
        if compact and number >= 1000:
            return format_compact_currency(
                number, code, locale=resolved_locale, fraction_digits=1
            )
        return format_currency(number, code, locale=resolved_locale)
    except (TypeError, ValueError):
        return f"{code} {number:.2f}"


def format_with_conversion(
    amount: Decimal,
    original_currency: str,
    converted_amount: Decimal,
    preferred_currency: str,
) -> str:
    original = format_amount(amount, original_currency)
    if original_currency.strip().upper() == preferred_currency.strip().upper():
        return original
    converted = format_amount(converted_amount, preferred_currency)
    return f"{original} ({converted})"


def format_age(
    last_updated: datetime | None,
    now: datetime,
    locale: str = DEFAULT_LOCALE,
) -> str:
    if last_updated is None:
        return NEVER_UPDATED
    age = as_utc(now) - as_utc(last_updated)
    if age < timedelta(minutes=1):
        return JUST_NOW
    # Negative deltas render as "... ago".
    return format_timedelta(
        -age,
        add_direction=True,
        locale=_resolve_locale(locale),
        threshold=0.85,
    )


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with stored timestamps."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _currency_locale(code: str) -> str:
    try:
        return get_currency(code).locale
    except ValueError:
        return DEFAULT_LOCALE


def _resolve_locale(locale: str) -> str:
    try:
        Locale.parse(locale)
        return locale
    except (UnknownLocaleError, ValueError):
        return DEFAULT_LOCALE
