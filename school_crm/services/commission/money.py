"""Decimal money helpers for commission arithmetic."""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

# ISO 4217 minor units for currencies that do not use 2 decimal places
CURRENCY_MINOR_UNITS = {
    "JPY": 0,
    "KRW": 0,
    "VND": 0,
    "CLP": 0,
    "BHD": 3,
    "KWD": 3,
    "OMR": 3,
    "JOD": 3,
    "TND": 3,
}
DEFAULT_MINOR_UNITS = 2

HUNDRED = Decimal("100")


def to_decimal(value: Union[Decimal, int, str, float]) -> Decimal:
    """Coerce to Decimal. Floats go through str() so 0.1 stays 0.1."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def minor_unit_exponent(currency: Optional[str]) -> Decimal:
    """Quantization exponent for a currency, e.g. Decimal('0.01') for INR."""
    places = CURRENCY_MINOR_UNITS.get((currency or "").upper(), DEFAULT_MINOR_UNITS)
    return Decimal(1).scaleb(-places)


def round_money(value: Decimal, currency: Optional[str] = None) -> Decimal:
    """Round to the currency's minor unit using ROUND_HALF_UP."""
    return to_decimal(value).quantize(minor_unit_exponent(currency), rounding=ROUND_HALF_UP)


def commission_amount(base_amount: Decimal, percentage: Decimal, currency: Optional[str] = None) -> Decimal:
    """
    base_amount * percentage / 100, rounded half-up to the minor unit.

    Each line item is rounded on its own; rounding differences are never
    redistributed across the hierarchy.

    >>> commission_amount(Decimal("333"), Decimal("33.33"))
    Decimal('110.99')
    """
    return round_money(to_decimal(base_amount) * to_decimal(percentage) / HUNDRED, currency)
