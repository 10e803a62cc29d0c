"""
Money helpers.

Intermediate sums stay as unrounded Decimal; rounding happens once, when a
result is materialized for the caller.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
TENTH = Decimal("0.1")
HOURS_PER_MONTH = Decimal("720")  # 24 * 30


def to_decimal(value: Number | None) -> Decimal:
    """Converts a number to Decimal without binary float artifacts."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Number | None) -> Decimal:
    """Rounds to cents, half away from zero (ROUND_HALF_UP on Decimal)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_percent(value: Number | None, places: Decimal = CENT) -> Decimal:
    return to_decimal(value).quantize(places, rounding=ROUND_HALF_UP)


def monthly_cost(cost_per_hour: Number | None) -> Decimal:
    """Hourly rate projected over a 30-day month."""
    return to_decimal(cost_per_hour) * HOURS_PER_MONTH
