"""Engine subpackage - margin resolution, BOM aggregation and pricing."""
from .pricing_engine import PricingEngine
from .margin_resolver import MarginResolver, resolve
from .bom import aggregate, BomAggregate
from .models import Product, SupplyItem, MarginRange, TaxClass, Supplier, PriceBreakdown

__all__ = [
    'PricingEngine', 'MarginResolver', 'resolve', 'aggregate', 'BomAggregate',
    'Product', 'SupplyItem', 'MarginRange', 'TaxClass', 'Supplier', 'PriceBreakdown',
]
