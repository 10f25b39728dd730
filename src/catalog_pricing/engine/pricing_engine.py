"""
Pricing Engine - Computes gross price, rebate, taxes and margin for products.

Pure computations over a product snapshot plus explicit configuration:
- margin ranges (through a MarginResolver)
- tax classes
- a rounding calculator for composite products
- a clock for rebate expiry

Only `refresh_cache` writes anything, and it only writes to the product
object it is handed.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Mapping, Optional

from ..exceptions import MissingRoundingCalculator, MissingTaxClass
from .bom import BomAggregate, aggregate
from .margin_resolver import MarginResolver
from .models import HUNDRED, ZERO, PriceBreakdown, Product, TaxClass, round_money
from .rounding import RoundingCalculator, get_rounding_calculator

logger = logging.getLogger(__name__)


class PricingEngine:
    """
    Core pricing engine for catalog products.

    Gross price resolution:
    1. Componentized: aggregated purchase price + margin + rounding component
    2. Absolutely priced: the fixed sales price
    3. Otherwise: purchase price + margin from the applicable margin range

    A rebate only applies while it has not expired, and never pushes a
    non-loss-leader below its purchase price.
    """

    def __init__(
        self,
        resolver: MarginResolver,
        tax_classes: Mapping[int, TaxClass],
        rounding_calculator: Optional[RoundingCalculator] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.resolver = resolver
        self.tax_classes = tax_classes
        self.rounding_calculator = rounding_calculator
        self.clock = clock or datetime.now

    @classmethod
    def from_store(cls, store, rounding_strategy: str = 'none', clock=None) -> 'PricingEngine':
        """Build an engine reading live margin ranges and tax classes from a store."""
        return cls(
            resolver=MarginResolver(source=store.list_margin_ranges),
            tax_classes=store.tax_classes,
            rounding_calculator=get_rounding_calculator(rounding_strategy),
            clock=clock,
        )

    # === Derived attributes

    def bom(self, product: Product) -> Optional[BomAggregate]:
        if not product.componentized:
            return None
        return aggregate(product.components)

    def purchase_price(self, product: Product, agg: Optional[BomAggregate] = None) -> Decimal:
        if product.componentized:
            return (agg or self.bom(product)).purchase_price
        return product.purchase_price or ZERO

    def weight(self, product: Product, agg: Optional[BomAggregate] = None) -> Optional[Decimal]:
        if product.componentized:
            return (agg or self.bom(product)).weight
        return product.weight

    def stock(self, product: Product, agg: Optional[BomAggregate] = None) -> int:
        if product.componentized:
            return (agg or self.bom(product)).buildable_stock
        return product.stock or 0

    def tax_class(self, product: Product) -> TaxClass:
        tax_class = self.tax_classes.get(product.tax_class_id)
        if tax_class is None:
            raise MissingTaxClass(product.id, product.tax_class_id)
        return tax_class

    # === Margin

    def margin_percentage(self, product: Product, agg: Optional[BomAggregate] = None) -> Decimal:
        """Percentage from the applicable margin range for the purchase price."""
        return self.resolver.percentage_for_product(self.purchase_price(product, agg), product)

    def margin(self, product: Product, agg: Optional[BomAggregate] = None) -> Decimal:
        if product.componentized:
            agg = agg or self.bom(product)
            return (agg.purchase_price / HUNDRED) * self.margin_percentage(product, agg)
        if product.absolutely_priced:
            return product.sales_price - self.purchase_price(product)
        purchase_price = self.purchase_price(product)
        return (purchase_price / HUNDRED) * self.margin_percentage(product)

    def calculated_margin_percentage(self, product: Product) -> Decimal:
        """Margin as a share of the gross price."""
        agg = self.bom(product)
        gross = self.gross_price(product, agg)
        if gross == ZERO:
            return ZERO
        return (HUNDRED / gross) * self.margin(product, agg)

    # === Rebates and rounding

    def rebate_active(self, product: Product) -> bool:
        return product.rebate_until is not None and self.clock() < product.rebate_until

    def rounding_component(self, product: Product, agg: Optional[BomAggregate] = None) -> Decimal:
        if self.rounding_calculator is None:
            raise MissingRoundingCalculator(None)
        active = self.rebate_active(product)
        value = self.rounding_calculator.compute(
            purchase_price=self.purchase_price(product, agg),
            margin_percentage=self.margin_percentage(product, agg),
            tax_percentage=self.tax_class(product).percentage,
            absolute_rebate=(product.absolute_rebate or ZERO) if active else ZERO,
            percentage_rebate=(product.percentage_rebate or ZERO) if active else ZERO,
        )
        return Decimal(value)

    # === Prices

    def gross_price(self, product: Product, agg: Optional[BomAggregate] = None) -> Decimal:
        """Price plus margin (or the sales price). Taxes and rebate not yet applied."""
        if product.componentized:
            agg = agg or self.bom(product)
            return agg.purchase_price + self.margin(product, agg) + self.rounding_component(product, agg)
        if product.absolutely_priced:
            return product.sales_price
        return self.purchase_price(product) + self.margin(product)

    def rebate(self, product: Product, gross: Optional[Decimal] = None,
               agg: Optional[BomAggregate] = None) -> Decimal:
        if gross is None:
            gross = self.gross_price(product, agg)

        rebate = ZERO
        if self.rebate_active(product):
            if product.has_absolute_rebate:
                rebate = product.absolute_rebate
            elif product.has_percentage_rebate:
                rebate = (gross / HUNDRED) * product.percentage_rebate

        # Only loss leaders may go below their purchase price through a rebate
        if gross - rebate < self.purchase_price(product, agg) and not product.is_loss_leader:
            rebate = ZERO
        return rebate

    def price(self, product: Product, force: bool = False) -> Decimal:
        if not force and product.cached_price is not None:
            return product.cached_price
        agg = self.bom(product)
        gross = self.gross_price(product, agg)
        return gross - self.rebate(product, gross, agg)

    def tax_base(self, product: Product, agg: Optional[BomAggregate] = None) -> Decimal:
        if product.absolutely_priced:
            return product.sales_price
        return self.gross_price(product, agg)

    def taxes(self, product: Product) -> Decimal:
        """Taxes owed on the (rebated) sales price of a product."""
        agg = self.bom(product)
        gross = self.gross_price(product, agg)
        rebate = self.rebate(product, gross, agg)
        base = product.sales_price if product.absolutely_priced else gross
        return ((base - rebate) / HUNDRED) * self.tax_class(product).percentage

    def taxed_price(self, product: Product, force: bool = False) -> Decimal:
        if not force and product.cached_taxed_price is not None:
            return product.cached_taxed_price
        return self.price(product, force=True) + self.taxes(product)

    def on_sale(self, product: Product) -> bool:
        return self.rebate(product) > ZERO

    def profitable(self, product: Product) -> bool:
        return self.price(product) > self.purchase_price(product)

    # === Full computation

    def breakdown(self, product: Product) -> PriceBreakdown:
        """
        Compute every price figure for a product in one pass.

        The BOM aggregate is computed once and shared by all steps.
        """
        agg = self.bom(product)
        purchase_price = self.purchase_price(product, agg)
        tax_class = self.tax_class(product)

        margin_percentage = None
        rounding = ZERO
        trace = []

        if product.componentized:
            trace.append(("BOM", f"Aggregated {agg.component_count} components", f"{purchase_price}"))
            match = self.resolver.find_match(purchase_price, product)
            margin_percentage = match.percentage
            trace.append(("Margin Range", f"Using {match.match_reason}", f"{margin_percentage}%"))
            margin = (purchase_price / HUNDRED) * margin_percentage
            rounding = self.rounding_component(product, agg)
            gross = purchase_price + margin + rounding
            trace.append(("Rounding", "Rounding component added", f"{rounding}"))
        elif product.absolutely_priced:
            gross = product.sales_price
            margin = product.sales_price - purchase_price
            trace.append(("Sales Price", "Absolutely priced, using fixed sales price", f"{gross}"))
        else:
            match = self.resolver.find_match(purchase_price, product)
            margin_percentage = match.percentage
            trace.append(("Margin Range", f"Using {match.match_reason}", f"{margin_percentage}%"))
            margin = (purchase_price / HUNDRED) * margin_percentage
            gross = purchase_price + margin

        rebate = self.rebate(product, gross, agg)
        price = gross - rebate
        base = product.sales_price if product.absolutely_priced else gross
        taxes = ((base - rebate) / HUNDRED) * tax_class.percentage

        result = PriceBreakdown(
            product_id=product.id,
            purchase_price=purchase_price,
            gross_price=gross,
            rebate=rebate,
            price=price,
            taxes=taxes,
            taxed_price=price + taxes,
            margin=margin,
            margin_percentage=margin_percentage,
            rounding_component=rounding,
            weight=self.weight(product, agg),
            stock=self.stock(product, agg),
        )
        for step, description, value in trace:
            result.add_trace(step, description, value)
        result.add_trace("Gross Price", "Purchase price plus margin", f"{round_money(gross)}")

        if rebate > ZERO:
            result.add_trace("Rebate", "Active rebate applied", f"{round_money(rebate)}")
        elif self.rebate_active(product) and (product.has_absolute_rebate or product.has_percentage_rebate):
            result.add_trace("Rebate", "Rebate dropped, price would fall below purchase price", "0")
            result.add_warning(f"Rebate on product {product.id} would sell below cost and was ignored")

        result.add_trace("Taxes", f"{tax_class.name} at {tax_class.percentage}%", f"{round_money(taxes)}")
        result.add_trace("Taxed Price", "Price plus taxes", f"{round_money(result.taxed_price)}")

        if agg is not None and agg.bottleneck_id is not None:
            result.add_warning(f"Component {agg.bottleneck_id} cannot cover its required quantity")
        return result

    def refresh_cache(self, product: Product) -> PriceBreakdown:
        """Recompute and store the cached price fields on the product."""
        result = self.breakdown(product)
        product.cached_price = result.price
        product.cached_taxed_price = result.taxed_price
        product.rounding_component = result.rounding_component
        product.sale_state = result.rebate > ZERO
        logger.debug(
            "Refreshed cache for product %s: price=%s taxed=%s",
            product.id, round_money(result.price), round_money(result.taxed_price),
        )
        return result
