"""
Bill-of-materials aggregation for composite products.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Union

from ..exceptions import InvalidComponentQuantity
from .models import ProductComponent, ZERO, to_decimal


@dataclass(frozen=True)
class BomAggregate:
    """Derived purchase price, weight and buildable stock of a composite."""
    purchase_price: Decimal
    weight: Decimal
    buildable_stock: int
    component_count: int = 0
    bottleneck_id: Optional[int] = None


def _check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidComponentQuantity(quantity)
    return quantity


def aggregate(components: Iterable[Union[ProductComponent, tuple]]) -> BomAggregate:
    """
    Sum purchase price and weight over (component, quantity) lines and work
    out how many composites the component stock allows.

    A component missing a weight contributes nothing to weight. As soon as one
    component cannot cover its required quantity, buildable stock is 0.
    """
    purchase_price = ZERO
    weight = ZERO
    stock_levels: list[int] = []
    short = False
    bottleneck_id = None
    count = 0

    for line in components:
        if isinstance(line, ProductComponent):
            component, quantity = line.component, line.quantity
        else:
            component, quantity = line
        quantity = _check_quantity(quantity)

        # Components can vanish when their supply items disappear
        if component is None:
            continue
        count += 1

        purchase_price += quantity * (to_decimal(component.purchase_price) or ZERO)
        weight += quantity * (to_decimal(getattr(component, 'weight', None)) or ZERO)

        if short:
            continue
        available = component.stock or 0
        if quantity > available:
            short = True
            bottleneck_id = getattr(component, 'id', None)
            stock_levels = [0]
        else:
            stock_levels.append(available // quantity)

    return BomAggregate(
        purchase_price=purchase_price,
        weight=weight,
        buildable_stock=min(stock_levels) if stock_levels else 0,
        component_count=count,
        bottleneck_id=bottleneck_id,
    )
