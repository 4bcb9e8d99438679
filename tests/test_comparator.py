import time
from dataclasses import replace

import pytest

from conftest import HangingClient, StaticClient, cache_row, fixed_clock
from supplier_pricing.engine.comparator import SupplierComparator
from supplier_pricing.engine.errors import NotFoundError, ValidationError
from supplier_pricing.engine.fallback import FallbackExecutor
from supplier_pricing.engine.models import LivePrice, SupplierProduct
from supplier_pricing.engine.resolver import PriceResolver


def test_cached_supplier_beats_live_supplier(comparator):
    """
    Same cable at two suppliers for a preferred customer buying 60:
    AO from cache at 100 -> 85.5, LM live at 120 -> 102.6.
    """
    result = comparator.compare('3G1.5', quantity=60, target_margin=25.0, customer_id='c-preferred')

    by_supplier = {row.supplier_id: row for row in result.suppliers}
    assert by_supplier['ao'].unit_cost == 85.5
    assert by_supplier['lm'].unit_cost == 102.6
    assert by_supplier['lm'].unit_sale == 128.25

    assert [row.supplier_id for row in result.suppliers] == ['ao', 'lm']
    assert result.cheapest_supplier == 'AO'
    assert result.most_expensive_supplier == 'Lemvigh-Muller'
    assert result.price_spread_percent == pytest.approx(20.0, abs=0.2)

    cheapest = result.suppliers[0]
    assert cheapest.is_cheapest and cheapest.is_recommended
    assert cheapest.data_source == 'cache' and cheapest.is_stale
    assert cheapest.savings_vs_most_expensive == pytest.approx(
        result.suppliers[1].total_sale - cheapest.total_sale, abs=0.01)
    assert result.suppliers[1].savings_vs_most_expensive == 0.0
    assert result.product_description == 'Installation cable 3G1.5'


def test_failing_supplier_is_excluded_not_fatal(comparator):
    result = comparator.compare('3G1.5', quantity=1, customer_id='c-plain')
    assert len(result.suppliers) == 2
    assert [e['supplier_id'] for e in result.excluded] == ['sol']
    assert 'No price available' in result.excluded[0]['error']


def test_no_matches_is_an_empty_result(comparator):
    result = comparator.compare('fibre splice tray')
    assert result.suppliers == []
    assert result.cheapest_supplier == ''
    assert result.price_spread_percent == 0.0


def test_single_result_has_no_spread(comparator):
    result = comparator.compare('wall socket')
    assert len(result.suppliers) == 1
    assert result.price_spread_percent == 0.0
    assert result.suppliers[0].is_cheapest


def test_search_is_case_insensitive_on_name_and_sku(comparator):
    assert len(comparator.compare('INSTALLATION').suppliers) == 2
    assert [r.sku for r in comparator.compare('ao-55').suppliers] == ['AO-555']


def test_ties_prefer_available_then_fresh(store, comparator, clients):
    for pid, supplier, sku in [('ao-plug', 'ao', 'AO-PLUG'), ('sol-plug', 'sol', 'SOL-PLUG'),
                               ('lm-plug', 'lm', 'LM-PLUG')]:
        store.add_supplier_product(SupplierProduct(
            id=pid, supplier_id=supplier, supplier_sku=sku, name='Schuko plug', cost_price=None,
        ))
    store.upsert_cached_price(replace(cache_row('ao-plug', 50.0), cached_is_available=False))
    store.upsert_cached_price(cache_row('sol-plug', 50.0))
    clients.register('lm', StaticClient({'LM-PLUG': LivePrice(cost_price=50.0)}))

    result = comparator.compare('schuko plug', quantity=1, target_margin=20)

    assert [r.supplier_product_id for r in result.suppliers] == ['lm-plug', 'sol-plug', 'ao-plug']
    assert result.suppliers[0].is_cheapest
    assert not result.suppliers[2].is_available
    assert result.price_spread_percent == 0.0


def test_unavailable_cheapest_is_not_recommended(store, comparator):
    store.upsert_cached_price(replace(cache_row('ao-cable', 10.0), cached_is_available=False))
    result = comparator.compare('3G1.5', customer_id='c-plain')
    first, second = result.suppliers
    assert first.supplier_id == 'ao' and not first.is_cheapest
    assert second.is_cheapest and second.is_recommended


def test_slow_supplier_does_not_hold_up_the_comparison(store, cache, clients, config):
    clients.register('lm', HangingClient(hang_seconds=15))
    store.upsert_cached_price(cache_row('lm-cable', 117.0, age_hours=2))
    executor = FallbackExecutor(timeout=0.3, clock=fixed_clock)
    resolver = PriceResolver(store, cache, executor, clients=clients, config=config, clock=fixed_clock)
    try:
        started = time.monotonic()
        result = SupplierComparator(store, resolver).compare('3G1.5', customer_id='c-plain')
        assert time.monotonic() - started < 3.0
    finally:
        executor.shutdown()
    assert {r.supplier_id for r in result.suppliers} == {'ao', 'lm'}


def test_invalid_comparison_input(comparator):
    with pytest.raises(ValidationError):
        comparator.compare('   ')
    with pytest.raises(ValidationError):
        comparator.compare('cable', quantity=0)
    with pytest.raises(NotFoundError):
        comparator.compare('cable', customer_id='c-ghost')
