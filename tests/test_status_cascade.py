from decimal import Decimal

import pytest

from catalog_pricing.engine.models import Product, SupplyItem, SupplyStatus
from catalog_pricing.exceptions import NotFoundError


@pytest.fixture
def bundle(state, make_supply_item):
    """Composite of a case (80) and a fan (10) priced at 99."""
    case = make_supply_item(name='Case', purchase_price='80', manufacturer_product_code='C-1')
    fan = make_supply_item(name='Fan', purchase_price='10', manufacturer_product_code='F-1')
    product = Product(id=None, name='Silent PC case', description='Case with fan', tax_class_id=1)
    state.product_service.add_component(product, case)
    state.product_service.add_component(product, fan)
    assert product.cached_price == Decimal('99')
    return product, case, fan


def test_deletion_disables_backed_and_composite_products(state, bundle, backed_product):
    product, case, fan = bundle
    backed = backed_product(fan)

    state.supply_item_service.mark_deleted(fan.id).raise_for_errors()

    assert fan.status == SupplyStatus.DELETED
    assert state.store.persisted_status(fan.id) == SupplyStatus.DELETED
    for disabled in (product, backed):
        assert disabled.is_available is False
        assert disabled.is_visible is False
    assert any(m.startswith("Supply item") and m.endswith("was deleted.") for m in state.history.messages())
    assert f"Reason for disabling {product}: component {fan} was deleted" in state.history.messages()


def test_reactivation_enables_only_backed_products(state, bundle, backed_product):
    product, case, fan = bundle
    backed = backed_product(fan)
    state.supply_item_service.mark_deleted(fan.id)

    state.supply_item_service.mark_available(fan.id).raise_for_errors()

    assert backed.is_available is True
    # Visibility stays with a human
    assert backed.is_visible is False
    assert product.is_available is False


def test_unrelated_products_are_untouched(state, bundle, make_product):
    product, case, fan = bundle
    other = make_product()

    state.supply_item_service.mark_deleted(case.id)
    assert product.is_available is False
    assert other.is_available is True


def test_no_cascade_without_status_transition(state, make_supply_item, backed_product):
    supply_item = make_supply_item(status=SupplyStatus.DELETED)
    backed = backed_product(supply_item)

    supply_item.stock = 3
    state.supply_item_service.save(supply_item).raise_for_errors()
    assert backed.is_available is True

    fresh = SupplyItem(id=None, name='Cable', supplier_id=1, purchase_price='2', status=SupplyStatus.DELETED)
    state.supply_item_service.save(fresh).raise_for_errors()
    assert state.history.messages() == []


def test_save_defaults_status_and_clamps_stock(state):
    supply_item = SupplyItem(id=None, name='Cable', supplier_id=1, purchase_price='2', stock=-4, status=None)
    state.supply_item_service.save(supply_item).raise_for_errors()
    assert supply_item.status == SupplyStatus.AVAILABLE
    assert supply_item.stock == 0
    assert state.store.persisted_supply_item(supply_item.id)['stock'] == 0


def test_invalid_supply_item_is_not_saved(state):
    supply_item = SupplyItem(id=None, name='', purchase_price='-1')
    result = state.supply_item_service.save(supply_item)
    assert not result.ok
    assert supply_item.id is None
    assert result.errors['name'] == ["can't be blank"]


def test_component_price_change_refreshes_composites(state, bundle):
    product, case, fan = bundle
    assert state.supply_item_service.component_of(fan) == [product]

    fan.purchase_price = Decimal('20')
    state.supply_item_service.save(fan).raise_for_errors()
    assert product.cached_price == Decimal('110')
    assert state.store.persisted_product(product.id)['cached_price'] == Decimal('110')


def test_failing_product_does_not_stop_cascade(state, bundle, backed_product, caplog):
    product, case, fan = bundle
    backed = backed_product(fan)
    # Unsaved change that makes the composite unpriceable
    product.tax_class_id = 99

    state.supply_item_service.mark_deleted(fan.id)

    assert backed.is_available is False
    assert product.tax_class_id == 1
    assert product.is_available is True
    assert "Cascade step failed" in caplog.text


def test_unknown_supply_item(state):
    with pytest.raises(NotFoundError):
        state.supply_item_service.mark_deleted(404)
