"""
Supply Sync - The reconciliation pass between products and supply items.

For every product backed by a supplier:
1. Backing supply item gone -> disable the product
2. Absolutely priced below the supply item's purchase price -> disable
3. Otherwise switch to a cheaper (or, when out of stock, any available)
   supply item with the same manufacturer product code, then copy the
   supply item's data onto the product and save it if anything changed

Each product is reconciled on its own. A failure is logged and counted
and the pass moves on to the next product.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..exceptions import CatalogPricingError, MissingSupplyItem, ValidationFailure
from ..engine.models import HUNDRED, Product, SupplyItem, SupplyStatus
from ..engine.pricing_engine import PricingEngine
from ..services.history import PRODUCT_CHANGE, ChangeLog
from ..services.products import ProductService
from ..services.store import CatalogStore

logger = logging.getLogger(__name__)

# Per-product outcomes
UNCHANGED = 'unchanged'
UPDATED = 'updated'
DISABLED = 'disabled'
FAILED = 'failed'
SKIPPED = 'skipped'


@dataclass
class SyncSummary:
    """Counts and errors of one reconciliation pass. Safe to update from worker threads."""
    processed: int = 0
    unchanged: int = 0
    updated: int = 0
    switched: int = 0
    disabled: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[dict] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, name: str, value: int = 1):
        with self._lock:
            setattr(self, name, getattr(self, name) + value)

    def add_error(self, product: Product, error: dict):
        with self._lock:
            self.errors.append({'product_id': product.id, 'product': str(product), **error})

    def to_dict(self) -> dict:
        with self._lock:
            return {
                'processed': self.processed,
                'unchanged': self.unchanged,
                'updated': self.updated,
                'switched': self.switched,
                'disabled': self.disabled,
                'failed': self.failed,
                'skipped': self.skipped,
                'errors': list(self.errors),
            }


class SupplySyncEngine:
    """Keeps products consistent with the supply items backing them."""

    def __init__(
        self,
        store: CatalogStore,
        pricing_engine: PricingEngine,
        product_service: ProductService,
        history: Optional[ChangeLog] = None,
    ):
        self.store = store
        self.pricing_engine = pricing_engine
        self.product_service = product_service
        self.history = history or product_service.history

    # === Supply item search

    def _manufacturer_initial(self, product: Product) -> Optional[str]:
        if product.manufacturer and product.manufacturer.strip():
            return product.manufacturer.strip()[0]
        return None

    def alternative_supply_items(self, product: Product) -> list[SupplyItem]:
        """
        Other supply items for the same article, cheapest first: same
        manufacturer product code, compatible manufacturer, and the same EAN
        when the product has one.
        """
        supply_item = self.store.get_supply_item(product.supply_item_id)
        if supply_item is None or not (supply_item.manufacturer_product_code or '').strip():
            return []
        return self.store.find_supply_items(
            manufacturer_product_code=supply_item.manufacturer_product_code,
            ean_code=product.ean_code or None,
            exclude_id=supply_item.id,
            manufacturer_initial=self._manufacturer_initial(product),
        )

    def alternative_available_supply_items(self, product: Product) -> list[SupplyItem]:
        return [si for si in self.alternative_supply_items(product) if si.in_stock and si.available]

    def cheaper_supply_items(self, product: Product) -> list[SupplyItem]:
        """
        Available alternatives that would sell below the product's current
        gross price, using margin ranges of their own supplier (or system-wide).
        """
        gross_price = self.pricing_engine.gross_price(product)
        cheaper = []
        for candidate in self.alternative_available_supply_items(product):
            percentage = self.pricing_engine.resolver.percentage_for_supplier(
                candidate.purchase_price, candidate.supplier_id
            )
            margin = (candidate.purchase_price / HUNDRED) * percentage
            if candidate.purchase_price + margin < gross_price:
                cheaper.append(candidate)
        return cheaper

    def assign_cheapest_supply_item(self, product: Product) -> Optional[SupplyItem]:
        """Point the product at its cheapest cheaper supply item, if any. Does not save."""
        cheaper = self.cheaper_supply_items(product)
        if not cheaper:
            return None
        product.supply_item_id = cheaper[0].id
        return cheaper[0]

    # === Reconciliation

    def backed_products(self) -> list[Product]:
        """Products linked to a supply item, or to a supplier without being composite."""
        return [
            p for p in self.store.list_products()
            if p.supply_item_id is not None or (p.supplier_id is not None and not p.componentized)
        ]

    def reconcile(self, products: Optional[Iterable[Product]] = None, workers: int = 1) -> SyncSummary:
        """
        Run the reconciliation pass over products (default: all backed products).

        With workers > 1 products are reconciled on a thread pool; per-record
        locks keep two workers off the same product or supply item.
        """
        products = list(products) if products is not None else self.backed_products()
        summary = SyncSummary()
        logger.info("Reconciling %d products with %d worker(s)", len(products), workers)

        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                for _ in executor.map(lambda p: self.reconcile_product(p, summary), products):
                    pass
        else:
            for product in products:
                self.reconcile_product(product, summary)

        logger.info(
            "Reconciliation done: %d processed, %d updated, %d switched, %d disabled, %d failed",
            summary.processed, summary.updated, summary.switched, summary.disabled, summary.failed,
        )
        return summary

    def reconcile_product(self, product: Product, summary: Optional[SyncSummary] = None) -> str:
        """Reconcile one product. A failure of one product is recorded in the summary and never aborts the pass."""
        summary = summary or SyncSummary()
        summary.increment('processed')
        with self.store.lock_for('product', product.id):
            try:
                outcome = self._reconcile_locked(product, summary)
            except CatalogPricingError as e:
                self.store.revert_product(product)
                logger.error("Product update failed: %s. Errors: %s", product, e)
                summary.add_error(product, e.to_dict())
                outcome = FAILED
            except Exception as e:
                self.store.revert_product(product)
                logger.error("Product update failed unexpectedly: %s", product, exc_info=True)
                summary.add_error(product, CatalogPricingError(
                    str(e), error_code='CP_UNEXPECTED', details={'exception': type(e).__name__}, cause=e
                ).to_dict())
                outcome = FAILED
        summary.increment(outcome)
        return outcome

    def _reconcile_locked(self, product: Product, summary: SyncSummary) -> str:
        supply_item = self.store.get_supply_item(product.supply_item_id)

        if supply_item is None:
            if product.supplier_id is None:
                logger.warning("Product %s points at a missing supply item and has no supplier", product)
                return SKIPPED
            return self._disable(product, MissingSupplyItem(product.id).message, summary)

        with self.store.lock_for('supply_item', supply_item.id):
            if product.absolutely_priced and supply_item.purchase_price > product.sales_price:
                reason = (
                    f"purchase price {supply_item.purchase_price} is higher than "
                    f"absolute sales price {product.sales_price}"
                )
                return self._disable(product, reason, summary)

            switch = None
            cheapest = self.assign_cheapest_supply_item(product)
            if cheapest is not None:
                supply_item = cheapest
                switch = 'cheaper'
            elif not supply_item.in_stock or supply_item.status == SupplyStatus.DELETED:
                alternatives = self.alternative_available_supply_items(product)
                if alternatives:
                    supply_item = alternatives[0]
                    product.supply_item_id = supply_item.id
                    product.is_available = True
                    switch = 'alternative'

            changes = self.product_service.sync_from_supply_item(product, supply_item)
            if not changes:
                return UNCHANGED

            result = self.product_service.save(product)
            if not result.ok:
                logger.error(
                    "Product update failed: %s. Changes: %s. Errors: %s",
                    product, changes, result.full_messages(),
                )
                summary.add_error(product, ValidationFailure("Product update failed", errors=result.errors).to_dict())
                return FAILED

            if switch is not None:
                summary.increment('switched')
                logger.info("Switched product %s to %s supply item %s", product, switch, supply_item)
                self.history.record(
                    f"Switched product {product} to {switch} supply item {supply_item}.", PRODUCT_CHANGE, product
                )
            logger.info("Product update: %s. Changes: %s", product, changes)
            return UPDATED

    def _disable(self, product: Product, reason: str, summary: SyncSummary) -> str:
        if not product.is_available and not product.is_visible:
            return UNCHANGED
        result = self.product_service.disable_product(product, reason=reason)
        if not result.ok:
            logger.error("Could not disable product %s: %s", product, result.full_messages())
            summary.add_error(product, ValidationFailure("Could not disable product", errors=result.errors).to_dict())
            return FAILED
        logger.warning("Disabled product %s because %s", product, reason)
        return DISABLED
