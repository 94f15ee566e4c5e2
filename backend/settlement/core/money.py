"""Decimal helpers. All amounts go through Decimal(str(x)) so floats never leak in."""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from settlement.core.config import settings

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Coerce numbers, strings and None to a 2-place Decimal."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def money_sum(values: Iterable) -> Decimal:
    total = ZERO
    for value in values:
        total += to_money(value)
    return total


def is_settled(outstanding: Decimal) -> bool:
    return outstanding <= settings.PAYMENT_EPSILON
