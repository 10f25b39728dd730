import random
from decimal import Decimal

import pytest

from catalog_pricing.engine.margin_resolver import MarginResolver, precedence_order, range_matches, resolve
from catalog_pricing.engine.models import MarginRange, Product
from catalog_pricing.engine.pricing_engine import PricingEngine
from catalog_pricing.exceptions import NoApplicableMarginRange
from catalog_pricing.services.store import CatalogStore

TIERS = [
    MarginRange(id=1, start_price='0', end_price='100', margin_percentage='8'),
    MarginRange(id=2, start_price='100.01', end_price='300', margin_percentage='10'),
    MarginRange(id=3, start_price='300.01', end_price=None, margin_percentage='5'),
]


@pytest.mark.parametrize("price,expected", [
    ('20', '8'),
    ('120', '10'),
    ('390', '5'),
    ('100', '8'),
    ('300', '10'),
    ('0', '8'),
])
def test_resolve_price_tiers(price, expected):
    assert resolve(Decimal(price), TIERS) == Decimal(expected)


def test_resolve_without_matching_range_raises():
    """A price in the gap between two tiers has no margin."""
    with pytest.raises(NoApplicableMarginRange) as exc_info:
        resolve(Decimal('100.005'), TIERS)
    assert exc_info.value.error_code == "CP_NO_MARGIN_RANGE"
    assert exc_info.value.details["price"] == "100.005"


def test_resolve_first_matching_range_wins():
    ranges = [
        MarginRange(id=1, start_price='0', end_price='500', margin_percentage='12'),
        MarginRange(id=2, start_price='100', end_price='200', margin_percentage='3'),
    ]
    assert resolve(Decimal('150'), ranges) == Decimal('12')
    assert resolve(Decimal('150'), list(reversed(ranges))) == Decimal('3')


def test_open_bounds_match_everything_on_their_side():
    assert range_matches(MarginRange(id=1, end_price='10'), Decimal('-5'))
    assert range_matches(MarginRange(id=1, start_price='10'), Decimal('1000000'))
    assert range_matches(MarginRange(id=1), Decimal('0'))
    assert not range_matches(MarginRange(id=1, start_price='10'), Decimal('9.99'))


def test_resolve_never_fails_with_a_catch_all():
    """Random range sets with a catch-all somewhere always resolve any non-negative price."""
    rng = random.Random(20240611)

    for _ in range(300):
        ranges = []
        for i in range(rng.randint(0, 6)):
            start = Decimal(rng.randint(0, 5000)) if rng.random() < 0.7 else None
            end = Decimal(rng.randint(0, 5000)) if rng.random() < 0.7 else None
            ranges.append(MarginRange(id=i, start_price=start, end_price=end,
                                      margin_percentage=Decimal(rng.randint(0, 50))))
        catch_all = MarginRange(id=99, margin_percentage=Decimal('7'))
        ranges.insert(rng.randint(0, len(ranges)), catch_all)

        price = Decimal(rng.randint(0, 1_000_000)) / 100
        percentage = resolve(price, ranges)
        assert percentage in {r.margin_percentage for r in ranges}


@pytest.fixture
def resolver():
    return MarginResolver([
        MarginRange(id=1, start_price='0', end_price='50', margin_percentage='30', product_id=7),
        MarginRange(id=2, start_price='0', margin_percentage='20', supplier_id=1),
        MarginRange(id=3, margin_percentage='10'),
    ])


def test_product_scope_takes_priority(resolver):
    product = Product(id=7, name='Mouse', supplier_id=1)
    match = resolver.find_match(Decimal('40'), product)
    assert match.percentage == Decimal('30')
    assert match.scope == 'product'


def test_scopes_fall_through_when_nothing_matches(resolver):
    """Product 7's own range ends at 50, so 60 falls through to its supplier."""
    product = Product(id=7, name='Mouse', supplier_id=1)
    assert resolver.percentage_for_product(Decimal('60'), product) == Decimal('20')
    assert resolver.resolution_scope(Decimal('60'), product) == 'supplier'


def test_products_of_other_suppliers_use_system_ranges(resolver):
    product = Product(id=8, name='Cable', supplier_id=2)
    assert resolver.percentage_for_product(Decimal('40'), product) == Decimal('10')

    unsupplied = Product(id=9, name='Bundle')
    assert resolver.resolution_scope(Decimal('40'), unsupplied) == 'system'


def test_supplier_match_ignores_product_ranges(resolver):
    assert resolver.percentage_for_supplier(Decimal('40'), 1) == Decimal('20')
    assert resolver.percentage_for_supplier(Decimal('40'), None) == Decimal('10')


def test_resolution_scope_none_without_match():
    resolver = MarginResolver([MarginRange(id=1, start_price='10', margin_percentage='5')])
    assert resolver.resolution_scope(Decimal('1'), Product(id=1, name='Cheap')) is None
    assert not resolver.has_catch_all()


def test_resolver_reads_live_ranges_from_source():
    ranges = []
    resolver = MarginResolver(source=lambda: ranges)
    assert not resolver.has_catch_all()

    ranges.append(MarginRange(id=1, margin_percentage='15'))
    assert resolver.has_catch_all()
    assert resolver.percentage_for_supplier(Decimal('1'), None) == Decimal('15')


CATCH_ALL_FIRST = [
    MarginRange(id=1, margin_percentage='5'),
    MarginRange(id=2, start_price='0', end_price='50', margin_percentage='8'),
    MarginRange(id=3, start_price='50.01', end_price='150', margin_percentage='10'),
]


def test_precedence_order_puts_catch_all_last():
    ordered = precedence_order(CATCH_ALL_FIRST + [MarginRange(id=4, start_price='150.01', margin_percentage='4')])
    assert [r.id for r in ordered] == [2, 3, 4, 1]


def test_precedence_order_keeps_creation_order_on_ties():
    ranges = [
        MarginRange(id=1, start_price='0', end_price='500', margin_percentage='12'),
        MarginRange(id=2, start_price='0', end_price='200', margin_percentage='3'),
    ]
    assert [r.id for r in precedence_order(ranges)] == [1, 2]


@pytest.mark.parametrize("price,expected", [('20', '8'), ('120', '10'), ('390', '5')])
def test_catch_all_created_first_does_not_hide_tiers(price, expected):
    store = CatalogStore()
    for margin_range in CATCH_ALL_FIRST:
        store.save_margin_range(MarginRange(
            id=None, start_price=margin_range.start_price, end_price=margin_range.end_price,
            margin_percentage=margin_range.margin_percentage,
        ))
    engine = PricingEngine.from_store(store)
    product = Product(id=1, name='Mouse', purchase_price=price)
    assert engine.margin_percentage(product) == Decimal(expected)


def test_catch_all_ordering_holds_in_supplier_scope():
    resolver = MarginResolver([
        MarginRange(id=1, margin_percentage='6', supplier_id=1),
        MarginRange(id=2, start_price='0', end_price='50', margin_percentage='25', supplier_id=1),
    ])
    assert resolver.percentage_for_supplier(Decimal('20'), 1) == Decimal('25')
    assert resolver.percentage_for_supplier(Decimal('80'), 1) == Decimal('6')
