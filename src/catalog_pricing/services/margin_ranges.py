"""
Margin Range Service - CRUD operations for margin ranges.

Every change is applied under one lock together with the price refresh of
the products it affects, so no reader sees a new range next to prices
computed with the old one.
"""
import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from ..exceptions import CatalogPricingError, NotFoundError, ValidationFailure
from ..engine.margin_resolver import (
    SCOPE_PRODUCT,
    SCOPE_SUPPLIER,
    SCOPE_SYSTEM,
    range_matches,
)
from ..engine.models import ZERO, MarginRange, Product
from .history import MARGIN_RANGE_CHANGE, ChangeLog
from .products import ProductService
from .store import CatalogStore

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('start_price', 'end_price', 'margin_percentage', 'supplier_id', 'product_id')


@dataclass
class ValidationResult:
    """Result of margin range validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    affected_products: int = 0


def _overlaps(a: MarginRange, b: MarginRange) -> bool:
    # An open bound reaches infinitely far on its side
    if a.end_price is not None and b.start_price is not None and a.end_price < b.start_price:
        return False
    if b.end_price is not None and a.start_price is not None and b.end_price < a.start_price:
        return False
    return True


def _same_scope(a: MarginRange, b: MarginRange) -> bool:
    return a.scope == b.scope and a.supplier_id == b.supplier_id and a.product_id == b.product_id


class MarginRangeService:
    """Service for managing margin ranges and keeping prices in step with them."""

    def __init__(self, store: CatalogStore, product_service: ProductService, history: Optional[ChangeLog] = None):
        self.store = store
        self.product_service = product_service
        self.pricing_engine = product_service.pricing_engine
        self.history = history or product_service.history
        self._lock = threading.RLock()

    def list_ranges(self, scope: Optional[str] = None) -> list[MarginRange]:
        """List ranges, optionally only those of one scope."""
        ranges = self.store.list_margin_ranges()
        if scope is not None:
            ranges = [r for r in ranges if r.scope == scope]
        return sorted(ranges, key=lambda r: (r.scope, r.start_price if r.start_price is not None else ZERO, r.id))

    def get_range(self, range_id) -> Optional[MarginRange]:
        return self.store.get_margin_range(range_id)

    def validate_range(self, margin_range: MarginRange) -> ValidationResult:
        """Validate a margin range before saving."""
        result = ValidationResult(valid=True)

        if margin_range.margin_percentage is None:
            result.errors.append("Margin percentage is required")
            result.valid = False

        if margin_range.start_price is not None and margin_range.end_price is not None:
            if margin_range.start_price > margin_range.end_price:
                result.errors.append("Start price must not be greater than end price")
                result.valid = False

        if margin_range.start_price is not None and margin_range.start_price < ZERO:
            result.errors.append("Start price must not be negative")
            result.valid = False

        if margin_range.supplier_id is not None and margin_range.product_id is not None:
            result.errors.append("A margin range belongs to a supplier or a product, not both")
            result.valid = False

        if margin_range.supplier_id is not None and self.store.get_supplier(margin_range.supplier_id) is None:
            result.errors.append(f"Supplier '{margin_range.supplier_id}' not found")
            result.valid = False

        if margin_range.product_id is not None and self.store.get_product(margin_range.product_id) is None:
            result.errors.append(f"Product '{margin_range.product_id}' not found")
            result.valid = False

        if result.valid:
            result.warnings.extend(self._check_overlaps(margin_range))
            if margin_range.scope != SCOPE_SYSTEM or not margin_range.is_catch_all:
                if not self.pricing_engine.resolver.has_catch_all():
                    result.warnings.append("No system-wide catch-all range, some prices may not resolve")
            result.affected_products = len(self.affected_products(margin_range))

        return result

    def _check_overlaps(self, margin_range: MarginRange) -> list[str]:
        """Ranges of the same scope that cover some of the same prices."""
        warnings = []
        for existing in self.store.list_margin_ranges():
            if existing.id is not None and existing.id == margin_range.id:
                continue
            if _same_scope(existing, margin_range) and _overlaps(existing, margin_range):
                warnings.append(
                    f"Overlaps range {existing.id} {existing}; bounded ranges are tried before open ones"
                )
        return warnings

    # === Affected products

    def _has_matching(self, ranges: list[MarginRange], price) -> bool:
        return any(range_matches(r, price) for r in ranges)

    def _reaches_scope(self, product: Product, margin_range: MarginRange) -> bool:
        """Would a lookup for this product get as far as the range's scope?"""
        resolver = self.pricing_engine.resolver
        if margin_range.scope == SCOPE_PRODUCT:
            return product.id == margin_range.product_id

        try:
            price = self.pricing_engine.purchase_price(product)
        except CatalogPricingError:
            logger.warning("Could not aggregate purchase price of product %s", product, exc_info=True)
            return True

        if self._has_matching(resolver.product_ranges(product.id), price):
            return False
        if margin_range.scope == SCOPE_SUPPLIER:
            return product.supplier_id == margin_range.supplier_id
        return not self._has_matching(resolver.supplier_ranges(product.supplier_id), price)

    def affected_products(self, margin_range: MarginRange) -> list[Product]:
        """
        Products whose price may depend on this range:
        - product scope: that product
        - supplier scope: the supplier's products without a matching product range
        - system scope: products without a matching product or supplier range
        """
        if margin_range.scope == SCOPE_PRODUCT:
            product = self.store.get_product(margin_range.product_id)
            return [product] if product is not None else []
        if margin_range.scope == SCOPE_SUPPLIER:
            candidates = self.store.products_of_supplier(margin_range.supplier_id)
        else:
            candidates = self.store.list_products()
        return [p for p in candidates if self._reaches_scope(p, margin_range)]

    def _refresh(self, products: dict[int, Product]) -> list[int]:
        touched = self.product_service.refresh_prices(products.values())
        logger.info("Refreshed prices of %d products", len(touched))
        return touched

    # === CRUD

    def create_range(self, margin_range: MarginRange) -> MarginRange:
        """Create a range and refresh the prices it affects."""
        with self._lock:
            validation = self.validate_range(margin_range)
            if not validation.valid:
                raise ValidationFailure("Invalid margin range", errors={'margin_range': validation.errors})

            affected = {p.id: p for p in self.affected_products(margin_range)}
            with self.store.margin_range_change(affected.values()):
                self.store.save_margin_range(margin_range)
            self.history.record(f"Created margin range {margin_range}.", MARGIN_RANGE_CHANGE, margin_range)
            logger.info("Created margin range %s %s", margin_range.id, margin_range)

            self._refresh(affected)
            return margin_range

    def update_range(self, range_id, updates: dict) -> MarginRange:
        """Update a range. Products affected before or after the change are refreshed."""
        with self._lock:
            margin_range = self.store.get_margin_range(range_id)
            if margin_range is None:
                raise NotFoundError("MarginRange", range_id)

            unknown = [key for key in updates if key not in UPDATABLE_FIELDS]
            if unknown:
                raise ValidationFailure(
                    "Invalid margin range", errors={'margin_range': [f"Unknown field '{k}'" for k in unknown]}
                )

            candidate = dataclasses.replace(margin_range, **updates)
            validation = self.validate_range(candidate)
            if not validation.valid:
                raise ValidationFailure("Invalid margin range", errors={'margin_range': validation.errors})

            affected = {p.id: p for p in self.affected_products(margin_range)}
            affected.update({p.id: p for p in self.affected_products(candidate)})
            with self.store.margin_range_change(affected.values()):
                for name in UPDATABLE_FIELDS:
                    setattr(margin_range, name, getattr(candidate, name))
                self.store.save_margin_range(margin_range)

            self.history.record(f"Updated margin range {margin_range}.", MARGIN_RANGE_CHANGE, margin_range)
            logger.info("Updated margin range %s %s", margin_range.id, margin_range)

            self._refresh(affected)
            return margin_range

    def delete_range(self, range_id) -> bool:
        """Delete a range and refresh the prices that depended on it."""
        with self._lock:
            margin_range = self.store.get_margin_range(range_id)
            if margin_range is None:
                raise NotFoundError("MarginRange", range_id)

            affected = {p.id: p for p in self.affected_products(margin_range)}
            with self.store.margin_range_change(affected.values()):
                self.store.delete_margin_range(range_id)
            self.history.record(f"Deleted margin range {margin_range}.", MARGIN_RANGE_CHANGE, f"MarginRange:{range_id}")
            logger.info("Deleted margin range %s %s", range_id, margin_range)

            self._refresh(affected)
            return True

    def get_stats(self) -> dict:
        """Get statistics about margin ranges."""
        ranges = self.store.list_margin_ranges()

        by_scope = {SCOPE_PRODUCT: 0, SCOPE_SUPPLIER: 0, SCOPE_SYSTEM: 0}
        by_supplier = {}
        for r in ranges:
            by_scope[r.scope] += 1
            if r.scope == SCOPE_SUPPLIER:
                supplier = self.store.get_supplier(r.supplier_id)
                name = supplier.name if supplier else str(r.supplier_id)
                by_supplier[name] = by_supplier.get(name, 0) + 1

        unpriceable = 0
        for product in self.store.list_products():
            try:
                self.pricing_engine.margin_percentage(product)
            except CatalogPricingError:
                unpriceable += 1

        return {
            'total': len(ranges),
            'by_scope': by_scope,
            'by_supplier': by_supplier,
            'has_catch_all': self.pricing_engine.resolver.has_catch_all(),
            'unpriceable_products': unpriceable,
        }
