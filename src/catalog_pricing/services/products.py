"""
Product Service - Saving products and the operations built on it.

Every save refreshes the cached price fields first, so no product is ever
persisted with a stale cache.
"""
import logging
from contextlib import nullcontext
from typing import Iterable, Optional

from ..config.settings import Settings, get_settings
from ..exceptions import CatalogPricingError
from ..engine.models import Product, ProductComponent, SupplyItem, SupplyStatus
from ..engine.pricing_engine import PricingEngine
from .fetchers import fetch_description
from .history import PRODUCT_CHANGE, ChangeLog
from .store import CatalogStore, SaveResult

logger = logging.getLogger(__name__)

# Fields copied from a supply item onto its product
SYNC_FIELDS = (
    'name', 'description', 'stock', 'purchase_price', 'manufacturer',
    'manufacturer_product_code', 'ean_code', 'supplier_product_code',
    'supplier_id', 'supply_item_id', 'is_available', 'is_visible',
)


class ProductService:
    """Persists products and keeps their caches consistent."""

    def __init__(
        self,
        store: CatalogStore,
        pricing_engine: PricingEngine,
        history: Optional[ChangeLog] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.pricing_engine = pricing_engine
        self.history = history or ChangeLog()
        self.settings = settings or get_settings()

    def save(self, product: Product) -> SaveResult:
        """
        Validate, refresh caches and persist a product.

        A changed supply item link pulls the new supply item's data in first.
        A rejected save, or a pricing error on the way, rolls the product
        back to its last saved state. Pricing errors then propagate.
        """
        lock = self.store.lock_for('product', product.id) if product.id is not None else nullcontext()
        with lock:
            if product.supply_item_id is not None and self.store.changes(product, ['supply_item_id']):
                supply_item = self.store.get_supply_item(product.supply_item_id)
                if supply_item is not None:
                    self.sync_from_supply_item(product, supply_item)

            if product.componentized:
                # Derived from components, never stored
                product.purchase_price = None
                product.weight = None
                product.stock = None

            try:
                self.pricing_engine.refresh_cache(product)
            except CatalogPricingError:
                self.store.revert_product(product)
                raise
            result = self.store.save_product(product)
            if not result.ok:
                logger.error("Could not save product %s: %s", product, result.full_messages())
                self.store.revert_product(product)
            return result

    def sync_from_supply_item(self, product: Product, supply_item: SupplyItem) -> dict[str, tuple]:
        """
        Copy core data from a supply item onto the product.

        Descriptions are only copied onto unprotected products, and only when
        the supply item has one and does not source it from a URL.

        Returns the changes against the last saved state as {field: (old, new)}.
        """
        product.name = supply_item.name
        if not product.is_description_protected:
            if supply_item.description and supply_item.description.strip() and not supply_item.description_url:
                product.description = supply_item.description
        product.stock = supply_item.stock
        product.purchase_price = supply_item.purchase_price
        product.manufacturer = supply_item.manufacturer
        product.manufacturer_product_code = supply_item.manufacturer_product_code
        product.ean_code = supply_item.ean_code
        product.supplier_product_code = supply_item.supplier_product_code
        product.supplier_id = supply_item.supplier_id
        product.supply_item_id = supply_item.id
        return self.store.changes(product, SYNC_FIELDS)

    # === Availability

    def disable_product(self, product: Product, reason: Optional[str] = None) -> SaveResult:
        product.is_available = False
        product.is_visible = False
        result = self.save(product)
        if result.ok:
            self.history.record(f"Disabled product {product}.", PRODUCT_CHANGE, product)
            self.history.record(f"Made product invisible {product}.", PRODUCT_CHANGE, product)
            if reason:
                self.history.record(f"Reason for disabling {product}: {reason}", PRODUCT_CHANGE, product)
        else:
            self.history.record(f"Could not disable product {product}.", PRODUCT_CHANGE, product)
        return result

    def enable_product(self, product: Product) -> SaveResult:
        product.is_available = True
        result = self.save(product)
        if result.ok:
            self.history.record(f"Enabled product {product}.", PRODUCT_CHANGE, product)
        else:
            self.history.record(f"Could not enable product {product}.", PRODUCT_CHANGE, product)
        return result

    # === Components

    def add_component(self, product: Product, supply_item: SupplyItem, quantity: int = 1) -> SaveResult:
        """Add quantity units of a supply item, merging with an existing line."""
        if not isinstance(supply_item, SupplyItem):
            raise TypeError("Only supply items can be added as components to other products.")

        for line in product.components:
            if line.component is supply_item or (
                supply_item.id is not None and line.component_id == supply_item.id
            ):
                line.quantity += quantity
                break
        else:
            product.components.append(ProductComponent(component=supply_item, quantity=quantity))
        return self.save(product)

    def remove_component(self, product: Product, supply_item: SupplyItem, quantity: int) -> bool:
        """Take quantity units away; the line disappears when it reaches zero."""
        quantity = int(quantity)
        for line in list(product.components):
            if line.component is supply_item or line.component_id == supply_item.id:
                if line.quantity - quantity <= 0:
                    product.components.remove(line)
                else:
                    line.quantity -= quantity
                return self.save(product).ok
        return False

    def has_unavailable_supply_item(self, product: Product) -> bool:
        supply_item = self.store.get_supply_item(product.supply_item_id)
        return supply_item is not None and supply_item.status != SupplyStatus.AVAILABLE

    def unavailable_components(self, product: Product) -> list:
        return [
            line.component for line in product.components
            if line.component is not None
            and getattr(line.component, 'status', SupplyStatus.AVAILABLE) != SupplyStatus.AVAILABLE
        ]

    # === Bootstrap

    def new_from_supply_item(self, supply_item: SupplyItem) -> Product:
        """Build (but do not save) a product mirroring a supply item."""
        tax_class = self.store.find_or_create_tax_class(
            self.settings.default_tax_percentage, self.settings.default_tax_class_name
        )
        product = Product(
            id=None,
            name=supply_item.name,
            description=supply_item.description,
            manufacturer=supply_item.manufacturer,
            purchase_price=supply_item.purchase_price,
            weight=supply_item.weight,
            tax_class_id=tax_class.id,
            supplier_id=supply_item.supplier_id,
            supply_item_id=supply_item.id,
            supplier_product_code=supply_item.supplier_product_code,
            manufacturer_product_code=supply_item.manufacturer_product_code,
            ean_code=supply_item.ean_code,
            stock=supply_item.stock,
        )
        fetched = fetch_description(self.store.get_supplier(supply_item.supplier_id), supply_item)
        if fetched:
            product.description = fetched
        return product

    # === Cache refresh

    def refresh_prices(self, products: Iterable[Product]) -> list[int]:
        """
        Recompute and persist cached prices. A product whose price cannot be
        computed keeps an empty cache so readers recompute (and see the error).

        Returns the ids of the products that were touched.
        """
        touched = []
        for product in products:
            try:
                if not self.save(product).ok:
                    self.store.mark_cache_stale(product)
            except CatalogPricingError as e:
                logger.warning("Could not refresh prices of product %s: %s", product, e)
                self.store.mark_cache_stale(product)
            touched.append(product.id)
        return touched
