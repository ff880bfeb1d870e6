"""Amount conversion helpers.

Amounts move through the system as integers in the chain's smallest unit
("atomic units"). Human-facing values are Decimal native units or USD.
"""

from __future__ import annotations

import math
from decimal import ROUND_CEILING, Decimal, InvalidOperation
from typing import Union

Money = Union[str, int, float, Decimal]


def parse_money(value: Money) -> Decimal:
    """Parse a money value such as "$0.01", 0.01 or "0.01" to Decimal.

    Raises:
        ValueError: If the value cannot be parsed or is negative.
    """
    if isinstance(value, Decimal):
        amount = value
    else:
        text = str(value).strip().lstrip("$").strip()
        try:
            amount = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"Invalid money value: {value!r}")
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"Invalid money value: {value!r}")
    return amount


def to_atomic(amount: Money, decimals: int) -> int:
    """Convert native units to atomic units, rounding up."""
    scaled = parse_money(amount) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_CEILING))


def from_atomic(amount: int, decimals: int) -> Decimal:
    """Convert atomic units to native units."""
    return Decimal(amount) / (Decimal(10) ** decimals)


def format_native(amount: int, decimals: int) -> str:
    """Render atomic units as a plain native-unit decimal string."""
    value = from_atomic(amount, decimals).normalize()
    return format(value, "f")


def usd_to_atomic(price_usd: Money, rate: float, decimals: int) -> int:
    """Convert a USD price to atomic units at `rate` USD per native unit.

    Always rounds up, so paying the returned amount never falls short of
    the USD price at the same rate.

    Raises:
        ValueError: If the rate is not a positive finite number.
    """
    if not isinstance(rate, (int, float, Decimal)) or not math.isfinite(rate) or rate <= 0:
        raise ValueError(f"Invalid rate: {rate!r}")
    native = parse_money(price_usd) / Decimal(str(rate))
    return to_atomic(native, decimals)


def atomic_to_usd(amount: int, rate: float, decimals: int) -> Decimal:
    """Convert atomic units to USD at `rate`."""
    return from_atomic(amount, decimals) * Decimal(str(rate))


def apply_tolerance(required: int, tolerance: Decimal) -> int:
    """Lowest acceptable amount for `required` given a fractional tolerance."""
    if tolerance <= 0:
        return required
    floor = Decimal(required) * (Decimal(1) - tolerance)
    return int(floor.to_integral_value(rounding=ROUND_CEILING))
