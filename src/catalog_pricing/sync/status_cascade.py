"""
Supply item saves and the product cascades their status changes trigger.

Available -> Deleted disables composite products using the supply item and
the product it backs. Deleted -> Available re-enables only the backed
product; composites stay disabled until someone looks at them.
"""
import logging
from contextlib import nullcontext
from typing import Callable, Optional

from ..exceptions import CatalogPricingError
from ..engine.models import Product, SupplyItem, SupplyStatus
from ..services.history import SUPPLY_ITEM_CHANGE, ChangeLog
from ..services.products import ProductService
from ..services.store import CatalogStore, SaveResult

logger = logging.getLogger(__name__)

# Changing these on a component changes the price of composites using it
PRICE_FIELDS = ('purchase_price', 'weight')


class SupplyItemService:
    """Saves supply items and runs the status cascades."""

    def __init__(self, store: CatalogStore, product_service: ProductService, history: Optional[ChangeLog] = None):
        self.store = store
        self.product_service = product_service
        self.history = history or product_service.history

    def component_of(self, supply_item: SupplyItem) -> list[Product]:
        """Products that use this supply item as a component."""
        return self.store.products_with_component(supply_item.id)

    def save(self, supply_item: SupplyItem) -> SaveResult:
        """
        Persist a supply item, then run cascades for a status transition.

        Cascades run after the supply item lock is released, so they never
        hold it while waiting for a product lock.
        """
        if supply_item.status is None:
            supply_item.status = SupplyStatus.AVAILABLE
        if supply_item.normalize_stock():
            logger.debug("Normalized stock of supply item %s to 0", supply_item)

        lock = self.store.lock_for('supply_item', supply_item.id) if supply_item.id is not None else nullcontext()
        with lock:
            previous = self.store.persisted_supply_item(supply_item.id) if supply_item.id is not None else None
            result = self.store.save_supply_item(supply_item)

        if not result.ok:
            logger.error("Could not save supply item %s: %s", supply_item, result.full_messages())
            return result

        old_status = previous['status'] if previous else None
        if old_status == SupplyStatus.AVAILABLE and supply_item.status == SupplyStatus.DELETED:
            self._handle_deletion(supply_item)
        elif old_status == SupplyStatus.DELETED and supply_item.status == SupplyStatus.AVAILABLE:
            self._handle_reactivation(supply_item)

        if previous and any(previous[name] != getattr(supply_item, name) for name in PRICE_FIELDS):
            composites = self.component_of(supply_item)
            if composites:
                self.product_service.refresh_prices(composites)
                logger.info("Refreshed %d composite products using %s", len(composites), supply_item)
        return result

    def _handle_deletion(self, supply_item: SupplyItem):
        self.history.record(f"Supply item {supply_item} was deleted.", SUPPLY_ITEM_CHANGE, supply_item)

        composites = self.component_of(supply_item)
        for product in composites:
            self._apply(product, lambda p: self.product_service.disable_product(
                p, reason=f"component {supply_item} was deleted"
            ))

        backed = self.store.products_backed_by(supply_item.id)
        for product in backed:
            self._apply(product, lambda p: self.product_service.disable_product(
                p, reason=f"supply item {supply_item} was deleted"
            ))

        logger.info(
            "Supply item %s deleted: disabled %d composite and %d backed products",
            supply_item, len(composites), len(backed),
        )

    def _handle_reactivation(self, supply_item: SupplyItem):
        self.history.record(f"Supply item {supply_item} is available again.", SUPPLY_ITEM_CHANGE, supply_item)

        backed = self.store.products_backed_by(supply_item.id)
        for product in backed:
            self._apply(product, self.product_service.enable_product)

        logger.info("Supply item %s available again: enabled %d backed products", supply_item, len(backed))

    def _apply(self, product: Product, action: Callable[[Product], SaveResult]):
        """Run a cascade step on one product; a pricing error there leaves the others untouched."""
        try:
            action(product)
        except CatalogPricingError:
            self.store.revert_product(product)
            logger.exception("Cascade step failed for product %s", product)

    def mark_deleted(self, supply_item_id) -> SaveResult:
        supply_item = self.store.require_supply_item(supply_item_id)
        supply_item.status = SupplyStatus.DELETED
        return self.save(supply_item)

    def mark_available(self, supply_item_id) -> SaveResult:
        supply_item = self.store.require_supply_item(supply_item_id)
        supply_item.status = SupplyStatus.AVAILABLE
        return self.save(supply_item)
