from datetime import date, timedelta

import pytest

from conftest import NOW, cache_row
from supplier_pricing.engine.models import CustomerProductOverride, SupplierProduct, SyncLogEntry
from supplier_pricing.store import FramePriceStore


def test_search_joins_supplier_names_and_skips_inactive(store):
    store.add_supplier_product(SupplierProduct(
        id='lm-old', supplier_id='lm', supplier_sku='LM-OLD', name='Installation cable 3G1.5 (old)',
        cost_price=1.0, is_active=False,
    ))
    store.add_supplier_product(SupplierProduct(
        id='x-cable', supplier_id='unknown-supplier', supplier_sku='X-1', name='Installation cable 3G1.5',
        cost_price=1.0,
    ))

    found = store.search_supplier_products('installation CABLE')
    assert [p.id for p in found] == ['ao-cable', 'lm-cable', 'sol-cable']
    assert found[1].supplier_name == 'Lemvigh-Muller'
    assert store.search_supplier_products('3G1.5', limit=1)[0].id == 'ao-cable'


def test_search_term_is_not_a_regex(store):
    assert store.search_supplier_products('3G1.5(') == []
    assert store.search_supplier_products('3G1') != []


def test_mark_stale_requires_a_target(store):
    with pytest.raises(ValueError):
        store.mark_stale()


def test_customer_tier_write_keeps_name(store):
    store.write_customer_tier('c-plain', 'silver')
    assert store.read_customer_tier('c-plain') == 'silver'
    customers = store.table('customers')
    assert customers.loc[customers['id'] == 'c-plain', 'name'].item() == 'Jensen VVS'


def test_sync_logs_newest_first_and_limited(store):
    for hours in (5, 1, 3):
        store.append_sync_log(SyncLogEntry('ao', 'completed', NOW - timedelta(hours=hours), 100))
    logs = store.read_sync_logs('ao', limit=2)
    assert [entry.started_at for entry in logs] == [NOW - timedelta(hours=1), NOW - timedelta(hours=3)]


def test_accepted_prices_newest_first(store):
    store.record_accepted_price('lm-cable', 150.0, NOW - timedelta(days=3))
    store.record_accepted_price('lm-cable', 155.0, NOW - timedelta(days=1))
    store.record_accepted_price('lm-cable', 0.0, NOW)
    assert store.read_accepted_prices('lm-cable') == [155.0, 150.0]
    assert store.read_accepted_prices('lm-cable', limit=1) == [155.0]


def test_csv_round_trip(store, tmp_path):
    store.upsert_customer_override(CustomerProductOverride(
        'c-plain', 'lm-cable', custom_discount_percent=7.5, valid_from=date(2026, 1, 1),
    ))
    store.save(tmp_path)
    loaded = FramePriceStore.from_csv_dir(tmp_path)

    cached = loaded.read_cached_price('ao-cable')
    assert cached.cached_cost_price == 100.0
    assert cached.cached_at == cache_row('ao-cable', 100.0).cached_at
    assert cached.is_stale is False

    product = loaded.read_supplier_product('lm-cable')
    assert product.cost_price == 118.0
    assert product.supplier_name == 'Lemvigh-Muller'
    assert loaded.read_supplier_product('sol-cable').cost_price is None

    override = loaded.read_customer_override('c-plain', 'lm-cable')
    assert override.custom_discount_percent == 7.5
    assert override.valid_from == date(2026, 1, 1)
    assert override.custom_cost_price is None

    assert loaded.read_customer_tier('c-preferred') == 'preferred'
    assert loaded.read_customer_tier('c-plain') is None


def test_cache_row_without_cost_reads_as_absent(store):
    store.upsert_cached_price(cache_row('lm-cable', None))
    assert store.read_cached_price('lm-cable') is None
    assert set(store.read_cached_prices(['lm-cable', 'ao-cable'])) == {'ao-cable'}
