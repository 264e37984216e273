"""
Money normalization: every price the engine touches is an integer amount of
minor units (cents). Inputs come from the storefront cart JSON, the catalog
and merchant settings, in whatever shape those happen to use.
"""
import math
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

_STRIP = re.compile(r"[^0-9.,\-]")


def _scale(decimals: int) -> Decimal:
    return Decimal(10) ** max(0, int(decimals))


def _to_int(amount: Decimal) -> int:
    return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _clean_numeric_string(value: str) -> str:
    cleaned = _STRIP.sub("", value.strip())
    if "," in cleaned:
        if "." not in cleaned and cleaned.count(",") == 1:
            cleaned = cleaned.replace(",", ".")   # "12,50" (decimal comma)
        else:
            cleaned = cleaned.replace(",", "")    # "1,234.50" (thousands)
    return cleaned


def normalize_to_cents(value: Any, currency_decimals: int = 2) -> int:
    """
    Convert an int, float or price string into integer minor units.

    - int: returned unchanged (already minor units).
    - float: integral floats are minor units; fractional ones are major units.
    - str: non-numeric characters dropped; a lone comma without a dot is a
      decimal separator. Without a decimal point, up to two digits are major
      units ("5" -> 500) and longer runs are already minor units ("1999").

    Never raises: anything unusable normalizes to 0.
    """
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, Decimal):
        value = float(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return 0
        if value.is_integer():
            return int(value)
        return _to_int(Decimal(repr(value)) * _scale(currency_decimals))
    if not isinstance(value, str):
        return 0

    cleaned = _clean_numeric_string(value)
    if not cleaned or not any(ch.isdigit() for ch in cleaned):
        return 0
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return 0
    if not amount.is_finite():
        return 0

    if "." not in cleaned:
        digits = sum(ch.isdigit() for ch in cleaned)
        if digits <= 2:
            return _to_int(amount * _scale(currency_decimals))
        return _to_int(amount)
    return _to_int(amount * _scale(currency_decimals))


def major_to_cents(value: Any, currency_decimals: int = 2) -> int:
    """Merchant-entered major-unit amount (100, "99.50") to minor units; invalid -> 0."""
    if isinstance(value, bool) or value is None:
        return 0
    try:
        if isinstance(value, str):
            value = _clean_numeric_string(value)
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return 0
    if not amount.is_finite():
        return 0
    return _to_int(amount * _scale(currency_decimals))


def format_from_cents(
    cents: Any,
    currency_decimals: int = 2,
    symbol: str = "",
    trim_zero_decimals: bool = False,
) -> str:
    """
    12345 -> "123.45", 123456789 -> "1,234,567.89".

    trim_zero_decimals drops ".00" on whole amounts the way the storefront
    displays them; leave it off when the string must parse back to the same
    cents.
    """
    if isinstance(cents, bool) or not isinstance(cents, (int, float)):
        cents = 0
    elif isinstance(cents, float):
        cents = round(cents) if math.isfinite(cents) else 0

    decimals = max(0, int(currency_decimals))
    sign = "-" if cents < 0 else ""
    major, minor = divmod(abs(int(cents)), 10 ** decimals)
    # no grouping without decimals: "1,234" would read back as a decimal comma
    text = f"{major:,}" if decimals else str(major)
    if decimals and not (trim_zero_decimals and minor == 0):
        text += "." + str(minor).rjust(decimals, "0")
    return f"{sign}{symbol}{text}"
