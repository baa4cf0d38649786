from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import List


@dataclass(frozen=True)
class Currency:
    code: str
    name: str
    locale: str = "en_US"


SUPPORTED_CURRENCIES: tuple[Currency, ...] = (
    Currency("USD", "US Dollar", "en_US"),
    Currency("EUR", "Euro", "de_DE"),
    Currency("GBP", "British Pound", "en_GB"),
    Currency("JPY", "Japanese Yen", "ja_JP"),
    Currency("CAD", "Canadian Dollar", "en_CA"),
    Currency("AUD", "Australian Dollar", "en_AU"),
    Currency("CHF", "Swiss Franc", "de_CH"),
    Currency("CNY", "Chinese Yuan", "zh_CN"),
    Currency("HKD", "Hong Kong Dollar", "en_HK"),
    Currency("SGD", "Singapore Dollar", "en_SG"),
    Currency("INR", "Indian Rupee", "en_IN"),
    Currency("KRW", "South Korean Won", "ko_KR"),
    Currency("MYR", "Malaysian Ringgit", "ms_MY"),
    Currency("THB", "Thai Baht", "th_TH"),
    Currency("IDR", "Indonesian Rupiah", "id_ID"),
    Currency("PHP", "Philippine Peso", "en_PH"),
    Currency("TWD", "Taiwan Dollar", "zh_TW"),
    Currency("SEK", "Swedish Krona", "sv_SE"),
    Currency("NOK", "Norwegian Krone", "nb_NO"),
    Currency("DKK", "Danish Krone", "da_DK"),
    Currency("PLN", "Polish Złoty", "pl_PL"),
    Currency("CZK", "Czech Koruna", "cs_CZ"),
    Currency("HUF", "Hungarian Forint", "hu_HU"),
    Currency("RON", "Romanian Leu", "ro_RO"),
    Currency("BGN", "Bulgarian Lev", "bg_BG"),
    Currency("HRK", "Croatian Kuna", "hr_HR"),
    Currency("RUB", "Russian Ruble", "ru_RU"),
    Currency("TRY", "Turkish Lira", "tr_TR"),
    Currency("BRL", "Brazilian Real", "pt_BR"),
    Currency("MXN", "Mexican Peso", "es_MX"),
    Currency("ARS", "Argentine Peso", "es_AR"),
    Currency("CLP", "Chilean Peso", "es_CL"),
    Currency("COP", "Colombian Peso", "es_CO"),
    Currency("PEN", "Peruvian Sol", "es_PE"),
    Currency("NZD", "New Zealand Dollar", "en_NZ"),
    Currency("FJD", "Fijian Dollar", "en_FJ"),
    Currency("AED", "UAE Dirham", "ar_AE"),
    Currency("SAR", "Saudi Riyal", "ar_SA"),
    Currency("ILS", "Israeli Shekel", "he_IL"),
    Currency("EGP", "Egyptian Pound", "ar_EG"),
    Currency("ZAR", "South African Rand", "en_ZA"),
    Currency("NGN", "Nigerian Naira", "en_NG"),
    Currency("KES", "Kenyan Shilling", "en_KE"),
)

_BY_CODE = {currency.code: currency for currency in SUPPORTED_CURRENCIES}
_CODE_PATTERN = re.compile(r"[A-Z]{3}")


def normalize_currency(value: str) -> str:
    """Canonical upper-case ISO 4217 form of ``value``."""
    code = (value or "").strip().upper()
    if not _CODE_PATTERN.fullmatch(code):
        raise ValueError(f"{value!r} is not a 3-letter currency code.")
    return code


def coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    """Decimal view of ``amount``; floats go through ``str`` to avoid binary noise."""
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def get_currency(value: str) -> Currency:
    normalized = normalize_currency(value)
    try:
        return _BY_CODE[normalized]
    except KeyError as exc:
        raise ValueError(f"Unsupported currency: {normalized}") from exc


def is_supported(value: str) -> bool:
    return value.strip().upper() in _BY_CODE


def currency_codes() -> List[str]:
    return [currency.code for currency in SUPPORTED_CURRENCIES]


def search_currencies(query: str) -> List[Currency]:
    """Rank currencies by how closely their code or name matches ``query``.

    An exact code match wins outright. Otherwise code prefixes come first,
    then name prefixes, then substring matches anywhere in code or name.
    """
    needle = query.strip().lower()
    if not needle:
        return list(SUPPORTED_CURRENCIES)

    exact = [c for c in SUPPORTED_CURRENCIES if c.code.lower() == needle]
    if exact:
        return exact

    code_prefix = [c for c in SUPPORTED_CURRENCIES if c.code.lower().startswith(needle)]
    name_prefix = [
        c
        for c in SUPPORTED_CURRENCIES
        if c.name.lower().startswith(needle) and c not in code_prefix
    ]
    seen = set(code_prefix) | set(name_prefix)
    contains = [
        c
        for c in SUPPORTED_CURRENCIES
        if c not in seen and (needle in c.code.lower() or needle in c.name.lower())
    ]
    return code_prefix + name_prefix + contains
