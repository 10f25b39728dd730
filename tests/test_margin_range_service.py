"""
Margin range lifecycle: every change refreshes exactly the prices that
depend on the changed range.
"""
from decimal import Decimal

import pytest

from catalog_pricing.engine.models import MarginRange, Product, TaxClass
from catalog_pricing.exceptions import NotFoundError, ValidationFailure


@pytest.fixture
def catalog(state):
    """Products priced 100 and 200 at supplier 1 and 100 at supplier 2, 20% tax, no ranges yet."""
    store = state.store
    store.delete_margin_range(1)
    store.add_tax_class(TaxClass(id=2, name='High', percentage='20'))

    products = {}
    for key, price, supplier_id in [('cheap', '100', 1), ('dear', '200', 1), ('other', '100', 2)]:
        product = Product(id=None, name=key, description=key, weight='1', purchase_price=price,
                          tax_class_id=2, supplier_id=supplier_id)
        store.save_product(product).raise_for_errors()
        products[key] = product
    return products


def prices(product):
    return product.cached_price, product.cached_taxed_price


def test_range_lifecycle_refreshes_prices(state, catalog):
    service = state.margin_range_service
    cheap, dear, other = catalog['cheap'], catalog['dear'], catalog['other']
    assert cheap.cached_price is None

    service.create_range(MarginRange(id=None, margin_percentage='10'))
    assert prices(cheap) == (Decimal('110'), Decimal('132'))
    assert prices(dear) == (Decimal('220'), Decimal('264'))
    assert prices(other) == (Decimal('110'), Decimal('132'))

    supplier_range = service.create_range(MarginRange(id=None, margin_percentage='20', supplier_id=1))
    assert prices(cheap) == (Decimal('120'), Decimal('144'))
    assert prices(dear) == (Decimal('240'), Decimal('288'))
    assert prices(other) == (Decimal('110'), Decimal('132'))

    product_range = service.create_range(MarginRange(id=None, margin_percentage='30', product_id=cheap.id))
    assert cheap.cached_price == Decimal('130')
    assert dear.cached_price == Decimal('240')

    service.delete_range(product_range.id)
    assert cheap.cached_price == Decimal('120')

    service.delete_range(supplier_range.id)
    assert cheap.cached_price == Decimal('110')
    assert dear.cached_price == Decimal('220')

    # Persisted state follows the objects
    assert state.store.persisted_product(dear.id)['cached_price'] == Decimal('220')


def test_product_range_refreshes_only_that_product(state, catalog, monkeypatch):
    service = state.margin_range_service
    service.create_range(MarginRange(id=None, margin_percentage='10'))

    refreshed = []
    original = state.product_service.refresh_prices

    def spy(products):
        products = list(products)
        refreshed.extend(p.id for p in products)
        return original(products)

    monkeypatch.setattr(state.product_service, 'refresh_prices', spy)

    service.create_range(MarginRange(id=None, margin_percentage='30', product_id=catalog['cheap'].id))
    assert refreshed == [catalog['cheap'].id]


def test_supplier_range_skips_products_with_own_matching_range(state, catalog):
    service = state.margin_range_service
    service.create_range(MarginRange(id=None, margin_percentage='10'))
    service.create_range(MarginRange(id=None, margin_percentage='30', product_id=catalog['cheap'].id))

    supplier_range = MarginRange(id=None, margin_percentage='20', supplier_id=1)
    assert [p.id for p in service.affected_products(supplier_range)] == [catalog['dear'].id]


def test_system_range_skips_products_decided_by_supplier_range(state, catalog):
    service = state.margin_range_service
    service.create_range(MarginRange(id=None, margin_percentage='10'))
    # Only covers the cheap product's price
    service.create_range(MarginRange(id=None, end_price='150', margin_percentage='20', supplier_id=1))

    system_range = MarginRange(id=None, start_price='0', margin_percentage='5')
    affected = {p.id for p in service.affected_products(system_range)}
    assert affected == {catalog['dear'].id, catalog['other'].id}


def test_update_range_refreshes_prices(state, catalog):
    service = state.margin_range_service
    service.create_range(MarginRange(id=None, margin_percentage='10'))
    supplier_range = service.create_range(MarginRange(id=None, margin_percentage='20', supplier_id=1))

    service.update_range(supplier_range.id, {'margin_percentage': Decimal('25')})
    assert catalog['cheap'].cached_price == Decimal('125')

    # Moving the range to supplier 2 refreshes both suppliers' products
    service.update_range(supplier_range.id, {'supplier_id': 2})
    assert catalog['cheap'].cached_price == Decimal('110')
    assert catalog['other'].cached_price == Decimal('125')


def spy_on_refresh(state, monkeypatch):
    """Record what a reader sees for each product when its refresh starts."""
    seen = {}
    original = state.product_service.refresh_prices

    def spy(products):
        products = list(products)
        for p in products:
            persisted = state.store.persisted_product(p.id)['cached_price']
            seen[p.id] = (p.cached_price, persisted, state.pricing_engine.price(p))
        return original(products)

    monkeypatch.setattr(state.product_service, 'refresh_prices', spy)
    return seen


def test_caches_are_stale_once_a_new_range_is_visible(state, catalog, monkeypatch):
    service = state.margin_range_service
    service.create_range(MarginRange(id=None, margin_percentage='10'))
    cheap = catalog['cheap']
    assert cheap.cached_price == Decimal('110')

    seen = spy_on_refresh(state, monkeypatch)
    service.create_range(MarginRange(id=None, margin_percentage='30', product_id=cheap.id))
    assert seen[cheap.id] == (None, None, Decimal('130'))
    assert cheap.cached_price == Decimal('130')


def test_caches_are_stale_once_a_range_update_is_visible(state, catalog, monkeypatch):
    service = state.margin_range_service
    service.create_range(MarginRange(id=None, margin_percentage='10'))
    supplier_range = service.create_range(MarginRange(id=None, margin_percentage='20', supplier_id=1))

    seen = spy_on_refresh(state, monkeypatch)
    service.update_range(supplier_range.id, {'supplier_id': 2})
    assert seen[catalog['cheap'].id] == (None, None, Decimal('110'))
    assert seen[catalog['other'].id] == (None, None, Decimal('120'))


def test_caches_are_stale_once_a_range_is_deleted(state, catalog, monkeypatch):
    service = state.margin_range_service
    service.create_range(MarginRange(id=None, margin_percentage='10'))
    product_range = service.create_range(
        MarginRange(id=None, margin_percentage='30', product_id=catalog['cheap'].id)
    )

    seen = spy_on_refresh(state, monkeypatch)
    service.delete_range(product_range.id)
    assert seen[catalog['cheap'].id] == (None, None, Decimal('110'))
    assert catalog['cheap'].cached_price == Decimal('110')


def test_catch_all_created_first_leaves_room_for_tiers(state, catalog):
    service = state.margin_range_service
    service.create_range(MarginRange(id=None, margin_percentage='5'))
    service.create_range(MarginRange(id=None, start_price='0', end_price='150', margin_percentage='8'))
    service.create_range(MarginRange(id=None, start_price='150.01', end_price='250', margin_percentage='12'))

    assert catalog['cheap'].cached_price == Decimal('108')
    assert catalog['dear'].cached_price == Decimal('224')
    assert state.pricing_engine.price(Product(id=None, name='x', purchase_price='300')) == Decimal('315')


def test_validation_errors(state, catalog):
    service = state.margin_range_service

    result = service.validate_range(MarginRange(id=None, start_price='50', end_price='10', margin_percentage='5'))
    assert not result.valid
    assert "Start price must not be greater than end price" in result.errors

    result = service.validate_range(MarginRange(id=None, margin_percentage='5', supplier_id=1,
                                                product_id=catalog['cheap'].id))
    assert "A margin range belongs to a supplier or a product, not both" in result.errors

    result = service.validate_range(MarginRange(id=None, margin_percentage='5', supplier_id=42))
    assert "Supplier '42' not found" in result.errors

    result = service.validate_range(MarginRange(id=None, margin_percentage=None))
    assert "Margin percentage is required" in result.errors


def test_validation_warnings(state, catalog):
    service = state.margin_range_service
    service.create_range(MarginRange(id=None, start_price='0', end_price='100', margin_percentage='10'))

    result = service.validate_range(MarginRange(id=None, start_price='50', end_price='150', margin_percentage='8'))
    assert result.valid
    assert any("Overlaps range" in w for w in result.warnings)
    assert any("catch-all" in w for w in result.warnings)


def test_invalid_create_raises(state, catalog):
    with pytest.raises(ValidationFailure) as exc_info:
        state.margin_range_service.create_range(
            MarginRange(id=None, start_price='50', end_price='10', margin_percentage='5')
        )
    assert exc_info.value.errors['margin_range']
    assert state.store.list_margin_ranges() == []


def test_update_and_delete_unknown_range(state, catalog):
    service = state.margin_range_service
    with pytest.raises(NotFoundError):
        service.update_range(99, {'margin_percentage': Decimal('5')})
    with pytest.raises(NotFoundError):
        service.delete_range(99)


def test_update_rejects_unknown_fields(state, catalog):
    service = state.margin_range_service
    margin_range = service.create_range(MarginRange(id=None, margin_percentage='10'))
    with pytest.raises(ValidationFailure):
        service.update_range(margin_range.id, {'colour': 'red'})


def test_stats(state, catalog):
    service = state.margin_range_service
    service.create_range(MarginRange(id=None, start_price='0', end_price='150', margin_percentage='10'))
    service.create_range(MarginRange(id=None, margin_percentage='20', supplier_id=1))

    stats = service.get_stats()
    assert stats['total'] == 2
    assert stats['by_scope'] == {'product': 0, 'supplier': 1, 'system': 1}
    assert stats['by_supplier'] == {'Alltron': 1}
    assert stats['has_catch_all'] is False
    # The 100 product of supplier 2 is covered, nothing else is missing
    assert stats['unpriceable_products'] == 0


def test_change_is_recorded_in_history(state, catalog):
    state.margin_range_service.create_range(MarginRange(id=None, margin_percentage='10'))
    assert any(m.startswith("Created margin range") for m in state.history.messages('margin_range_change'))
