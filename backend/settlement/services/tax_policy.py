"""Tax for POS sales. Zero unless POS_TAX_RATE is configured."""
from decimal import Decimal

from settlement.core.config import settings
from settlement.core.money import ZERO, to_money


class TaxPolicy:
    """Override compute() to plug in another tax model (per category, inclusive, ...)."""

    def compute(self, subtotal: Decimal, discount_amount: Decimal) -> Decimal:
        raise NotImplementedError


class NoTax(TaxPolicy):
    def compute(self, subtotal: Decimal, discount_amount: Decimal) -> Decimal:
        return ZERO


class FlatRateTax(TaxPolicy):
    """rate applies to the discounted subtotal, e.g. Decimal("0.15")."""

    def __init__(self, rate: Decimal):
        rate = Decimal(str(rate))
        if rate < 0:
            raise ValueError("Tax rate cannot be negative")
        self.rate = rate

    def compute(self, subtotal: Decimal, discount_amount: Decimal) -> Decimal:
        return to_money((to_money(subtotal) - to_money(discount_amount)) * self.rate)


def default_tax_policy() -> TaxPolicy:
    if settings.POS_TAX_RATE is None:
        return NoTax()
    return FlatRateTax(settings.POS_TAX_RATE)
