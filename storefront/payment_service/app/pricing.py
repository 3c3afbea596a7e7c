"""Conversions between human currency values and integer minor units.

Every stored or compared amount is an ``int`` of minor units (cents). The
helpers here are the only place where major-unit values are parsed or
produced, so display code, checkout math and gateway payloads agree on one
representation:

* ``normalize_amount("19.99") == 1999`` – strings are major units.
* ``normalize_amount(19.99) == 1999`` – non-integral numbers are major units.
* ``normalize_amount(1999) == 1999`` – integers are already minor units.
* anything unparseable yields ``0``, which checkout code must reject.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

MAX_SAFE_AMOUNT = 2**53 - 1
UNITS_PER_PRICE = 1000

_HUNDRED = Decimal("100")
_CENT = Decimal("0.01")
_CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£"}


def _round_half_up(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


def normalize_amount(value: Any) -> int:
    """Return ``value`` as integer minor units, or ``0`` when it is not a number."""

    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            parsed = Decimal(value.strip())
        except InvalidOperation:
            return 0
        if not parsed.is_finite():
            return 0
        return _round_half_up(parsed * _HUNDRED)
    if isinstance(value, (float, Decimal)):
        try:
            parsed = Decimal(str(value)) if isinstance(value, float) else value
        except InvalidOperation:
            return 0
        if not parsed.is_finite():
            return 0
        if parsed == parsed.to_integral_value():
            return int(parsed)
        return _round_half_up(parsed * _HUNDRED)
    return 0


def is_valid_amount(value: Any) -> bool:
    """True iff ``value`` is a non-negative safe integer."""

    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and 0 <= value <= MAX_SAFE_AMOUNT
    )


def line_amount(unit_price: int, quantity: int) -> int:
    """Price a cart line: catalog prices are quoted per 1000 units."""

    return _round_half_up(Decimal(unit_price) * Decimal(quantity) / Decimal(UNITS_PER_PRICE))


def apply_percentage(amount: int, percent: float) -> int:
    """Return ``percent`` of ``amount``, rounded half-up to a minor unit."""

    return _round_half_up(Decimal(amount) * Decimal(str(percent)) / _HUNDRED)


def commission_for(amount: int, rate_percent: float) -> int:
    """Referral commission on ``amount``; fractions of a minor unit are dropped."""

    return int((Decimal(amount) * Decimal(str(rate_percent)) / _HUNDRED).to_integral_value(rounding=ROUND_FLOOR))


def to_major_units(amount: int) -> str:
    """Render minor units as a fixed two-decimal major-unit string (``1500 -> "15.00"``)."""

    return str((Decimal(amount) / _HUNDRED).quantize(_CENT))


def format_amount(amount: int, currency: str = "USD") -> str:
    symbol = _CURRENCY_SYMBOLS.get(currency.upper())
    value = (Decimal(amount) / _HUNDRED).quantize(_CENT)
    if symbol is None:
        return f"{value:,.2f} {currency.upper()}"
    if value < 0:
        return f"-{symbol}{-value:,.2f}"
    return f"{symbol}{value:,.2f}"
