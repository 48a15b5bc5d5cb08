"""Money and quantity normalization.

Client apps, CSV imports and the payment gateway all send amounts in
different shapes: plain numbers, locale-formatted strings such as
``"1 990,00 ₽"`` or ``"$1,990.00"``, or nothing at all. Everything that
touches an amount goes through this module first.

Parsing never raises. An unparseable, negative or missing value yields
``None``; callers must treat ``None`` as "use the fallback", never as zero.
"""

import math
import re
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any

# ISO 4217 currencies without a minor unit
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW", "PYG",
        "RWF", "UGX", "UYI", "VND", "VUV", "XAF", "XOF", "XPF",
    }
)
THREE_DECIMAL_CURRENCIES = frozenset({"BHD", "IQD", "JOD", "KWD", "LYD", "OMR", "TND"})

_SPACES = re.compile(r"[\s\u00a0\u202f\u2007\u2009']")
# a currency glyph, an upper-case ISO code or a currency word, at either end
_CURRENCY = r"(?:[₽€$£¥₸₴]|[A-Z]{3}|(?i:руб|rub|р)\.?)"
_CURRENCY_PREFIX = re.compile(rf"^{_CURRENCY}")
_CURRENCY_SUFFIX = re.compile(rf"{_CURRENCY}$")
_NUMERIC = re.compile(r"-?[\d.,]*\d[\d.,]*")


def _ungroup(text: str, separator: str) -> str | None:
    """Drop thousands separators; every group after the first has three digits."""
    head, *groups = text.split(separator)
    if not head.lstrip("-") or any(len(group) != 3 for group in groups):
        return None
    return "".join([head, *groups])


def _parse_text(raw: str) -> Decimal | None:
    text = _SPACES.sub("", raw)
    text = _CURRENCY_PREFIX.sub("", text, count=1)
    text = _CURRENCY_SUFFIX.sub("", text, count=1)
    # anything left besides the number itself makes the value unusable
    if not _NUMERIC.fullmatch(text):
        return None

    has_comma = "," in text
    has_dot = "." in text

    number: str | None = text
    if has_comma and has_dot:
        decimal_sep = "," if text.rfind(",") > text.rfind(".") else "."
        whole, _, fraction = text.rpartition(decimal_sep)
        grouped = _ungroup(whole, "." if decimal_sep == "," else ",")
        number = f"{grouped}.{fraction}" if grouped is not None and fraction.isdigit() else None
    elif has_comma:
        if text.count(",") == 1 and len(text.rpartition(",")[2]) != 3:
            number = text.replace(",", ".")
        else:
            number = _ungroup(text, ",")
    elif text.count(".") > 1:
        number = _ungroup(text, ".")

    if number is None:
        return None
    try:
        return Decimal(number)
    except InvalidOperation:
        return None


def parse_money(value: Any) -> Decimal | None:
    """Parse an arbitrary amount into a finite, non-negative Decimal.

    Args:
        value: Number, numeric string (any common locale format) or None.

    Returns:
        Decimal | None: Parsed amount, or None if the input is absent,
        unparseable, non-finite or negative.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        amount: Decimal | None = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            return None
        amount = Decimal(str(value))
    elif isinstance(value, str):
        amount = _parse_text(value)
    else:
        return None

    if amount is None or not amount.is_finite() or amount < 0:
        return None
    return amount


def parse_quantity(value: Any) -> Decimal | None:
    """Parse a line item quantity. Same rules as parse_money."""
    return parse_money(value)


def normalize_currency(value: Any) -> str | None:
    """Return an upper-cased 3-letter ISO code, or None."""
    if not isinstance(value, str):
        return None
    code = value.strip().upper()
    if len(code) == 3 and code.isalpha() and code.isascii():
        return code
    return None


def minor_units(currency: str | None) -> int:
    """Number of decimal places of a currency's minor unit."""
    code = (currency or "").upper()
    if code in ZERO_DECIMAL_CURRENCIES:
        return 0
    if code in THREE_DECIMAL_CURRENCIES:
        return 3
    return 2


def quantize_money(amount: Decimal, currency: str | None) -> Decimal:
    """Round an amount half-even to the currency's minor unit."""
    exponent = Decimal(1).scaleb(-minor_units(currency))
    return amount.quantize(exponent, rounding=ROUND_HALF_EVEN)


def amount_tolerance(currency: str | None) -> Decimal:
    """Allowed difference when comparing gateway amounts to stored totals.

    Zero for currencies without a minor unit, one minor unit otherwise.
    """
    units = minor_units(currency)
    if units == 0:
        return Decimal(0)
    return Decimal(1).scaleb(-units)


def amounts_match(expected: Decimal, actual: Decimal, currency: str | None) -> bool:
    """Compare two amounts within the currency tolerance."""
    difference = abs(quantize_money(expected, currency) - quantize_money(actual, currency))
    return difference <= amount_tolerance(currency)
