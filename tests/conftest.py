import os
import sys
import pytest

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from catalog_pricing.api.state import AppState
from catalog_pricing.config.settings import Settings
from catalog_pricing.engine.models import MarginRange, Product, Supplier, SupplyItem, TaxClass
from catalog_pricing.services.store import CatalogStore


@pytest.fixture
def settings(tmp_path):
    return Settings(
        project_root=tmp_path,
        data_dir=tmp_path / 'data',
        log_dir=tmp_path / 'log',
        sync_log_file=tmp_path / 'log' / 'price_and_stock_update.log',
    )


@pytest.fixture
def store():
    """Catalog with an 8% tax class, two suppliers and a 10% system-wide catch-all."""
    store = CatalogStore()
    store.add_tax_class(TaxClass(id=1, name='Standard', percentage='8.0'))
    store.add_supplier(Supplier(id=1, name='Alltron'))
    store.add_supplier(Supplier(id=2, name='Ingram'))
    store.save_margin_range(MarginRange(id=1, margin_percentage='10'))
    return store


@pytest.fixture
def state(store, settings):
    return AppState.from_store(store, settings)


@pytest.fixture
def make_supply_item(store):
    """Factory saving a supply item straight into the store."""
    def factory(**kwargs):
        fields = dict(
            id=None,
            name='Wireless Mouse',
            supplier_id=1,
            purchase_price='50.00',
            stock=200,
            weight='0.25',
            description='A wireless mouse',
            manufacturer='Logitech',
            manufacturer_product_code='M-100',
            ean_code='7611111111111',
            supplier_product_code='ALL-100',
        )
        fields.update(kwargs)
        supply_item = SupplyItem(**fields)
        store.save_supply_item(supply_item).raise_for_errors()
        return supply_item
    return factory


@pytest.fixture
def make_product(state):
    """Factory saving a product through the product service (so caches are filled)."""
    def factory(**kwargs):
        fields = dict(
            id=None,
            name='Keyboard',
            description='A keyboard',
            weight='0.8',
            purchase_price='100.00',
            tax_class_id=1,
        )
        fields.update(kwargs)
        product = Product(**fields)
        state.product_service.save(product).raise_for_errors()
        return product
    return factory


@pytest.fixture
def backed_product(state):
    """Factory bootstrapping and saving a product from a supply item."""
    def factory(supply_item, **overrides):
        product = state.product_service.new_from_supply_item(supply_item)
        product.tax_class_id = 1
        for name, value in overrides.items():
            setattr(product, name, value)
        state.product_service.save(product).raise_for_errors()
        return product
    return factory
