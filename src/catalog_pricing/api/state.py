"""
Shared application state for the API: one store and the services wired to it.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from ..config.settings import Settings, get_settings
from ..engine.pricing_engine import PricingEngine
from ..services.history import ChangeLog
from ..services.margin_ranges import MarginRangeService
from ..services.products import ProductService
from ..services.store import CatalogStore
from ..sync.status_cascade import SupplyItemService
from ..sync.supply_sync import SupplySyncEngine

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    settings: Settings
    store: CatalogStore
    history: ChangeLog
    pricing_engine: PricingEngine
    product_service: ProductService
    margin_range_service: MarginRangeService
    supply_item_service: SupplyItemService
    sync_engine: SupplySyncEngine

    @classmethod
    def from_store(cls, store: CatalogStore, settings: Optional[Settings] = None) -> 'AppState':
        """Wire every service around an existing store."""
        settings = settings or get_settings()
        history = ChangeLog()
        pricing_engine = PricingEngine.from_store(store, rounding_strategy=settings.rounding_strategy)
        product_service = ProductService(store, pricing_engine, history, settings)
        return cls(
            settings=settings,
            store=store,
            history=history,
            pricing_engine=pricing_engine,
            product_service=product_service,
            margin_range_service=MarginRangeService(store, product_service, history),
            supply_item_service=SupplyItemService(store, product_service, history),
            sync_engine=SupplySyncEngine(store, pricing_engine, product_service, history),
        )

    @classmethod
    def build(cls, settings: Optional[Settings] = None) -> 'AppState':
        """Load the catalog snapshot from the configured data directory."""
        settings = settings or get_settings()
        if settings.data_dir.exists():
            store = CatalogStore.load_csv_dir(settings.data_dir)
        else:
            logger.warning("Data directory %s does not exist, starting with an empty catalog", settings.data_dir)
            store = CatalogStore()
        return cls.from_store(store, settings)


_state: Optional[AppState] = None


def get_state() -> AppState:
    """Get the global application state, loading it on first use."""
    global _state
    if _state is None:
        _state = AppState.build()
    return _state


def set_state(state: Optional[AppState]):
    """Replace the global state (None forces a reload on next use)."""
    global _state
    _state = state
