from datetime import datetime
from decimal import Decimal

from catalog_pricing.engine.models import MarginRange, Product, ProductComponent, SupplyItem, SupplyStatus
from catalog_pricing.services.store import CatalogStore


def test_product_validation_errors(store):
    product = Product(id=None, name='', description='', purchase_price='-1', tax_class_id=99)
    result = store.save_product(product)
    assert not result.ok
    assert result.errors['name'] == ["can't be blank"]
    assert result.errors['description'] == ["can't be blank"]
    assert result.errors['tax_class'] == ["can't be blank"]
    assert result.errors['weight'] == ["can't be blank"]
    assert "purchase_price must be greater than or equal to 0" in result.full_messages()
    assert product.id is None


def test_manufacturer_product_code_must_be_unique(store):
    first = Product(id=None, name='A', description='A', weight='1', tax_class_id=1, manufacturer_product_code='X-1')
    second = Product(id=None, name='B', description='B', weight='1', tax_class_id=1, manufacturer_product_code='X-1')
    assert store.save_product(first).ok
    result = store.save_product(second)
    assert result.errors['manufacturer_product_code'] == ["has already been taken"]


def test_changes_and_revert(store):
    product = Product(id=None, name='A', description='A', weight='1', tax_class_id=1, stock=3)
    store.save_product(product)

    product.stock = 7
    product.name = 'B'
    assert store.changes(product) == {'stock': (3, 7), 'name': ('A', 'B')}

    store.revert_product(product)
    assert product.stock == 3
    assert store.changes(product) == {}


def test_find_supply_items_filters(store, make_supply_item):
    cheap = make_supply_item(purchase_price='40', manufacturer='')
    pricey = make_supply_item(purchase_price='60')
    make_supply_item(purchase_price='30', manufacturer='Microsoft')
    make_supply_item(purchase_price='20', manufacturer_product_code='OTHER')
    make_supply_item(purchase_price='10', stock=0)

    found = store.find_supply_items(manufacturer_product_code='M-100', manufacturer_initial='l', in_stock=True)
    assert [si.id for si in found] == [cheap.id, pricey.id]

    found = store.find_supply_items(manufacturer_product_code='M-100', exclude_id=cheap.id, in_stock=True)
    assert cheap not in found


def test_blank_manufacturer_code_never_matches(store, make_supply_item):
    make_supply_item(manufacturer_product_code='')
    assert store.supply_items_by_manufacturer_code('') == []
    assert store.find_supply_items(manufacturer_product_code='') == []


def test_csv_round_trip(tmp_path, store, make_supply_item):
    part = make_supply_item(name='Fan', purchase_price='12.30', stock=4, status=SupplyStatus.DELETED)
    product = Product(
        id=None, name='Fan', description='Quiet fan', weight='0.3', purchase_price='12.30',
        tax_class_id=1, supplier_id=1, supply_item_id=part.id, is_visible=False,
        rebate_until=datetime(2026, 5, 1, 8, 30), percentage_rebate='5', cached_price='13.53',
    )
    store.save_product(product)
    bundle = Product(id=None, name='Bundle', description='Two fans', tax_class_id=1, purchase_price=None,
                     components=[ProductComponent(part, 2)])
    store.save_product(bundle)
    store.save_margin_range(MarginRange(id=None, start_price='0', end_price='99.99', margin_percentage='12', supplier_id=1))

    store.dump_csv_dir(tmp_path / 'snapshot')
    loaded = CatalogStore.load_csv_dir(tmp_path / 'snapshot')

    loaded_part = loaded.get_supply_item(part.id)
    assert loaded_part.purchase_price == Decimal('12.30')
    assert loaded_part.status == SupplyStatus.DELETED
    assert loaded.persisted_status(part.id) == SupplyStatus.DELETED

    loaded_product = loaded.get_product(product.id)
    assert loaded_product.is_visible is False
    assert loaded_product.is_available is True
    assert loaded_product.rebate_until == datetime(2026, 5, 1, 8, 30)
    assert loaded_product.percentage_rebate == Decimal('5')
    assert loaded_product.cached_price == Decimal('13.53')
    assert loaded_product.sales_price is None
    assert loaded.changes(loaded_product) == {}

    loaded_bundle = loaded.get_product(bundle.id)
    assert loaded_bundle.componentized
    assert loaded_bundle.components[0].component is loaded_part
    assert loaded_bundle.components[0].quantity == 2

    ranges = {r.id: r for r in loaded.list_margin_ranges()}
    assert ranges[1].is_catch_all
    assert ranges[2].end_price == Decimal('99.99')
    assert ranges[2].scope == 'supplier'


def test_loading_clamps_negative_stock(tmp_path):
    store = CatalogStore()
    store.save_supply_item(SupplyItem(id=None, name='Cable', purchase_price='1', stock=-5))
    store.dump_csv_dir(tmp_path)
    assert CatalogStore.load_csv_dir(tmp_path).get_supply_item(1).stock == 0


def test_loading_skips_supply_items_without_purchase_price(tmp_path, caplog):
    store = CatalogStore()
    store.save_supply_item(SupplyItem(id=None, name='Cable', purchase_price='1', stock=5))
    broken = SupplyItem(id=None, name='Adapter', purchase_price='2', stock=5)
    store.save_supply_item(broken)
    broken.purchase_price = None
    store.dump_csv_dir(tmp_path)

    loaded = CatalogStore.load_csv_dir(tmp_path)
    assert loaded.get_supply_item(1).purchase_price == Decimal('1')
    assert loaded.get_supply_item(broken.id) is None
    assert "Skipping invalid supply item" in caplog.text


def test_lock_for_returns_same_lock_per_record(store):
    assert store.lock_for('product', 1) is store.lock_for('product', 1)
    assert store.lock_for('product', 1) is not store.lock_for('supply_item', 1)
