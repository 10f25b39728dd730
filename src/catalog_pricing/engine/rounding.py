"""
Rounding calculators nudge composite prices to merchant-friendly amounts.

Calculators are registered by name and picked through settings, so a shop
can plug in its own strategy without touching the pricing engine.
"""
from decimal import Decimal, ROUND_CEILING
from typing import Callable, Protocol

from ..exceptions import MissingRoundingCalculator
from .models import HUNDRED, ZERO, to_decimal


class RoundingCalculator(Protocol):
    def compute(
        self,
        purchase_price: Decimal,
        margin_percentage: Decimal,
        tax_percentage: Decimal,
        absolute_rebate: Decimal,
        percentage_rebate: Decimal,
    ) -> Decimal:
        """Return an amount to add to the gross price."""
        ...


_REGISTRY: dict[str, RoundingCalculator] = {}


def register_rounding_calculator(name: str) -> Callable:
    """Class decorator registering an instance under name."""
    def decorator(cls):
        _REGISTRY[name] = cls()
        return cls
    return decorator


def get_rounding_calculator(name: str) -> RoundingCalculator:
    try:
        return _REGISTRY[name]
    except KeyError:
        raise MissingRoundingCalculator(name) from None


def available_rounding_calculators() -> list[str]:
    return sorted(_REGISTRY)


@register_rounding_calculator('none')
class NoRounding:
    """Leaves prices untouched."""

    def compute(self, purchase_price, margin_percentage, tax_percentage,
                absolute_rebate, percentage_rebate) -> Decimal:
        return ZERO


@register_rounding_calculator('nearest_05')
class NearestFiveCents:
    """
    Adds the net amount needed for the taxed, rebated price to land on the
    next multiple of 0.05.
    """
    step = Decimal('0.05')

    def compute(self, purchase_price, margin_percentage, tax_percentage,
                absolute_rebate, percentage_rebate) -> Decimal:
        purchase_price = to_decimal(purchase_price) or ZERO
        margin_percentage = to_decimal(margin_percentage) or ZERO
        tax_factor = 1 + (to_decimal(tax_percentage) or ZERO) / HUNDRED
        absolute_rebate = to_decimal(absolute_rebate) or ZERO
        percentage_rebate = to_decimal(percentage_rebate) or ZERO

        gross = purchase_price + (purchase_price / HUNDRED) * margin_percentage
        if absolute_rebate > ZERO:
            rebate = absolute_rebate
        elif percentage_rebate > ZERO:
            rebate = (gross / HUNDRED) * percentage_rebate
        else:
            rebate = ZERO

        taxed = (gross - rebate) * tax_factor
        target = (taxed / self.step).to_integral_value(rounding=ROUND_CEILING) * self.step
        return (target - taxed) / tax_factor
