"""
Margin Resolver - Picks the margin percentage that applies to a price.

Used by the pricing engine to turn purchase prices into gross prices, and
by the supply sync to evaluate cheaper supply items from other suppliers.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable, Optional

from ..exceptions import NoApplicableMarginRange
from .models import MarginRange, Product, to_decimal

SCOPE_PRODUCT = 'product'
SCOPE_SUPPLIER = 'supplier'
SCOPE_SYSTEM = 'system'


def range_matches(margin_range: MarginRange, price) -> bool:
    """A range matches if price lies within its bounds; a missing bound is open."""
    price = to_decimal(price)
    if margin_range.start_price is not None and price < margin_range.start_price:
        return False
    if margin_range.end_price is not None and price > margin_range.end_price:
        return False
    return True


def resolve(price, ranges: Iterable[MarginRange]) -> Decimal:
    """
    Return the margin percentage of the first range (in input order) that
    matches price. Callers order and filter by scope before calling.
    """
    for margin_range in ranges:
        if range_matches(margin_range, price):
            return margin_range.margin_percentage
    raise NoApplicableMarginRange(price)


def precedence_order(ranges: Iterable[MarginRange]) -> list[MarginRange]:
    """
    Order ranges of one scope for first-match lookup: ranges bounded on both
    sides, then half-open ranges, then the catch-all. Ties go by start price
    and then by creation order.
    """
    def key(margin_range: MarginRange):
        open_bounds = (margin_range.start_price is None) + (margin_range.end_price is None)
        start = margin_range.start_price
        return (open_bounds, start is not None, start if start is not None else 0)

    return sorted(ranges, key=key)


@dataclass
class MatchedRange:
    """A margin range that matched, with the scope it was found in."""
    margin_range: MarginRange
    scope: str
    price: Decimal

    @property
    def percentage(self) -> Decimal:
        return self.margin_range.margin_percentage

    @property
    def match_reason(self) -> str:
        return f"{self.scope} range {self.margin_range}"


class MarginResolver:
    """
    Resolves margin percentages over layered rule scopes.

    Scope priority: product-specific ranges, then the supplier's ranges,
    then system-wide ranges. A scope without a match falls through to the
    next one. Within a scope, ranges are tried in `precedence_order`, so a
    catch-all never hides a tier created after it.

    Ranges come either from a fixed list or from a callable that returns
    the current ranges on every lookup.
    """

    def __init__(
        self,
        ranges: Optional[Iterable[MarginRange]] = None,
        source: Optional[Callable[[], Iterable[MarginRange]]] = None,
    ):
        self._ranges = list(ranges or [])
        self._source = source

    @property
    def ranges(self) -> list[MarginRange]:
        if self._source is not None:
            return list(self._source())
        return self._ranges

    def product_ranges(self, product_id) -> list[MarginRange]:
        if product_id is None:
            return []
        return precedence_order(r for r in self.ranges if r.product_id == product_id)

    def supplier_ranges(self, supplier_id) -> list[MarginRange]:
        if supplier_id is None:
            return []
        return precedence_order(r for r in self.ranges if r.supplier_id == supplier_id and r.product_id is None)

    def system_wide_ranges(self) -> list[MarginRange]:
        return precedence_order(r for r in self.ranges if r.supplier_id is None and r.product_id is None)

    def scoped_ranges(self, product: Product) -> list[tuple[str, list[MarginRange]]]:
        """Scopes to try for a product, most specific first."""
        return [
            (SCOPE_PRODUCT, self.product_ranges(product.id)),
            (SCOPE_SUPPLIER, self.supplier_ranges(product.supplier_id)),
            (SCOPE_SYSTEM, self.system_wide_ranges()),
        ]

    def supplier_scoped_ranges(self, supplier_id) -> list[tuple[str, list[MarginRange]]]:
        return [
            (SCOPE_SUPPLIER, self.supplier_ranges(supplier_id)),
            (SCOPE_SYSTEM, self.system_wide_ranges()),
        ]

    def _find_in_scopes(self, price, scopes) -> MatchedRange:
        price = to_decimal(price)
        for scope, ranges in scopes:
            for margin_range in ranges:
                if range_matches(margin_range, price):
                    return MatchedRange(margin_range=margin_range, scope=scope, price=price)
        raise NoApplicableMarginRange(price, scopes=[scope for scope, _ in scopes])

    def find_match(self, price, product: Product) -> MatchedRange:
        """Find the range that applies to price for this product."""
        return self._find_in_scopes(price, self.scoped_ranges(product))

    def find_supplier_match(self, price, supplier_id) -> MatchedRange:
        """Find the range for a bare supply item of a supplier (no product scope)."""
        return self._find_in_scopes(price, self.supplier_scoped_ranges(supplier_id))

    def percentage_for_product(self, price, product: Product) -> Decimal:
        return self.find_match(price, product).percentage

    def percentage_for_supplier(self, price, supplier_id) -> Decimal:
        return self.find_supplier_match(price, supplier_id).percentage

    def resolution_scope(self, price, product: Product) -> Optional[str]:
        """Scope that currently decides a product's margin, or None if nothing matches."""
        try:
            return self.find_match(price, product).scope
        except NoApplicableMarginRange:
            return None

    def has_catch_all(self) -> bool:
        return any(r.is_catch_all for r in self.system_wide_ranges())
