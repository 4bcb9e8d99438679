import time
from datetime import timedelta

import pytest

from conftest import NOW, FailingClient, HangingClient, StaticClient, cache_row, fixed_clock
from supplier_pricing.engine.errors import AllSourcesFailedError, NotFoundError, ValidationError
from supplier_pricing.engine.fallback import UPSTREAM_UNAVAILABLE, FallbackExecutor
from supplier_pricing.engine.models import (
    CustomerProductOverride,
    CustomerSupplierAgreement,
    LivePrice,
    SupplierProduct,
)
from supplier_pricing.engine.resolver import PriceResolver

TODAY = NOW.date()


def test_cached_price_with_tier_and_volume_discount(resolver):
    """Supplier without a live API: cache 100, preferred 10%, 60 pcs 5% -> 85.5."""
    result = resolver.resolve('c-preferred', 'ao-cable', 60)

    assert result.effective_cost_price == 85.5
    assert result.base_cost_price == 100.0
    assert result.tier == 'preferred'
    assert result.price_source == 'standard'
    assert result.data_source == 'cache'
    assert result.is_stale is True
    assert UPSTREAM_UNAVAILABLE in result.warnings
    assert result.discounts['tier_discount_percent'] == 10
    assert result.discounts['volume_discount_percent'] == 5
    assert result.discounts['total_discount_percent'] == 14.5
    assert result.cache_age_hours == 1.0
    assert result.total_cost == 5130.0


def test_live_price_is_used_and_cached(resolver, store, cache):
    result = resolver.resolve('c-preferred', 'lm-cable', 60)

    assert result.effective_cost_price == 102.6
    assert result.data_source == 'live'
    assert result.is_stale is False
    assert result.warnings == []
    assert result.stock_quantity == 40

    cache.drain(timeout=5)
    cached = store.read_cached_price('lm-cable')
    assert cached.cached_cost_price == 120.0
    assert cached.cache_source == 'api'


def test_sale_price_uses_default_margin(resolver):
    result = resolver.resolve('c-preferred', 'ao-cable', 60)
    assert result.margin_percent == 25.0
    assert result.unit_sale_price == pytest.approx(106.88, abs=0.01)
    assert result.effective_margin_percent == 20.0


def test_product_override_beats_supplier_agreement(resolver, store):
    store.upsert_customer_agreement(CustomerSupplierAgreement('c-plain', 'lm', discount_percent=25))
    assert resolver.resolve('c-plain', 'lm-cable', 1).effective_cost_price == 90.0

    store.upsert_customer_override(CustomerProductOverride('c-plain', 'lm-cable', custom_cost_price=80.0))
    result = resolver.resolve('c-plain', 'lm-cable', 1)
    assert result.effective_cost_price == 80.0
    assert result.price_source == 'customer_product'


def test_absolute_override_skips_volume_discount(resolver, store):
    store.upsert_customer_override(CustomerProductOverride('c-preferred', 'lm-cable', custom_cost_price=80.0))
    result = resolver.resolve('c-preferred', 'lm-cable', 60)
    assert result.effective_cost_price == 80.0
    assert result.discounts['volume_discount_percent'] == 0.0


def test_override_discount_still_gets_volume_discount(resolver, store):
    store.upsert_customer_override(CustomerProductOverride('c-plain', 'lm-cable', custom_discount_percent=50))
    result = resolver.resolve('c-plain', 'lm-cable', 60)
    assert result.effective_cost_price == 57.0
    assert result.discounts['override_discount_percent'] == 50


def test_agreement_discount_and_margin(resolver, store):
    store.upsert_customer_agreement(CustomerSupplierAgreement(
        'c-plain', 'lm', discount_percent=25, custom_margin_percent=30,
    ))
    result = resolver.resolve('c-plain', 'lm-cable', 1, margin_percent=10)
    assert result.price_source == 'customer_supplier'
    assert result.effective_cost_price == 90.0
    assert result.margin_percent == 30
    assert result.unit_sale_price == 117.0


def test_expired_override_falls_through_to_agreement(resolver, store):
    store.upsert_customer_override(CustomerProductOverride(
        'c-plain', 'lm-cable', custom_cost_price=80.0, valid_to=TODAY - timedelta(days=1),
    ))
    store.upsert_customer_agreement(CustomerSupplierAgreement('c-plain', 'lm', discount_percent=25))
    result = resolver.resolve('c-plain', 'lm-cable', 1)
    assert result.effective_cost_price == 90.0
    assert result.price_source == 'customer_supplier'
    assert 'outside its validity window' in result.get_trace_text()


def test_validity_window_is_inclusive(resolver, store):
    store.upsert_customer_override(CustomerProductOverride(
        'c-plain', 'lm-cable', custom_cost_price=80.0, valid_from=TODAY, valid_to=TODAY,
    ))
    assert resolver.resolve('c-plain', 'lm-cable', 1).effective_cost_price == 80.0


def test_inactive_agreement_is_ignored(resolver, store):
    store.upsert_customer_agreement(CustomerSupplierAgreement('c-plain', 'lm', discount_percent=25, is_active=False))
    result = resolver.resolve('c-plain', 'lm-cable', 1)
    assert result.effective_cost_price == 120.0
    assert result.price_source == 'standard'


def test_zero_cost_never_goes_negative(resolver, store):
    store.add_supplier_product(SupplierProduct(
        id='ao-free', supplier_id='ao', supplier_sku='AO-0', name='Sample cable tie',
        cost_price=0.0, last_synced_at=NOW,
    ))
    store.upsert_customer_override(CustomerProductOverride('c-preferred', 'ao-free', custom_discount_percent=100))
    result = resolver.resolve('c-preferred', 'ao-free', 500)
    assert result.effective_cost_price == 0.0
    assert result.unit_sale_price == 0.0
    assert result.total_sale == 0.0


def test_old_cache_is_flagged_when_live_call_fails(resolver, store, clients):
    clients.register('ao', FailingClient())
    store.upsert_cached_price(cache_row('ao-cable', 100.0, age_hours=48))

    result = resolver.resolve('c-plain', 'ao-cable', 1)
    assert result.data_source == 'cache'
    assert result.is_stale is True
    assert result.cache_age_hours == 48.0
    assert "Cached price is 48 hours old and may be outdated" in result.warnings


def test_hanging_supplier_falls_back_within_timeout(store, cache, clients, config):
    hanging = HangingClient(hang_seconds=15)
    clients.register('lm', hanging)
    store.upsert_cached_price(cache_row('lm-cable', 117.0, age_hours=2))

    executor = FallbackExecutor(timeout=0.3, clock=fixed_clock)
    resolver = PriceResolver(store, cache, executor, clients=clients, config=config, clock=fixed_clock)
    try:
        started = time.monotonic()
        result = resolver.resolve('c-plain', 'lm-cable', 1)
        assert time.monotonic() - started < 2.0
    finally:
        executor.shutdown()

    assert result.data_source == 'cache'
    assert result.is_stale is True
    assert result.effective_cost_price == 117.0
    assert hanging.cancelled.wait(2.0)
    cache.drain(timeout=2)
    assert store.read_cached_price('lm-cable').cached_cost_price == 117.0


def test_no_price_anywhere_fails(resolver):
    with pytest.raises(AllSourcesFailedError):
        resolver.resolve('c-plain', 'sol-cable', 1)


@pytest.mark.parametrize("quantity", [0, -3, 1.5, 'ten', True])
def test_bad_quantity_is_rejected(resolver, quantity):
    with pytest.raises(ValidationError):
        resolver.resolve('c-plain', 'lm-cable', quantity)


def test_bad_ids_are_rejected(resolver):
    with pytest.raises(ValidationError):
        resolver.resolve('c-plain', "lm-cable'; drop table", 1)
    with pytest.raises(ValidationError):
        resolver.resolve('../etc', 'lm-cable', 1)


def test_unknown_product_and_customer(resolver):
    with pytest.raises(NotFoundError):
        resolver.resolve('c-plain', 'no-such-product', 1)
    with pytest.raises(NotFoundError):
        resolver.resolve('c-ghost', 'lm-cable', 1)


def test_missing_tier_defaults_to_standard(resolver):
    result = resolver.resolve('c-plain', 'lm-cable', 1)
    assert result.tier == 'standard'
    assert result.effective_cost_price == 120.0
    assert 'No tier set, using standard' in result.get_trace_text()


def test_anonymous_customer_prices_as_standard(resolver):
    result = resolver.resolve(None, 'lm-cable', 1)
    assert result.customer_id is None
    assert result.tier == 'standard'


def test_wholesale_margin_adjustment(resolver, store):
    store.write_customer_tier('c-plain', 'wholesale')
    result = resolver.resolve('c-plain', 'lm-cable', 1)
    assert result.effective_cost_price == 102.0
    assert result.margin_percent == 20.0


def test_order_total_unlocks_tier_volume_bonus(resolver):
    result = resolver.resolve('c-preferred', 'lm-cable', 1, order_total=150_000)
    assert result.discounts['tier_discount_percent'] == 13
    assert result.effective_cost_price == 104.4


def test_wholesale_adjustment_applies_to_requested_margin(resolver, store):
    store.write_customer_tier('c-plain', 'wholesale')
    result = resolver.resolve('c-plain', 'lm-cable', 1, margin_percent=25.0)
    assert result.margin_percent == 20.0
    assert result.unit_sale_price == 122.4
    assert 'Margin Adjustment' in result.get_trace_text()

    assert resolver.resolve('c-plain', 'lm-cable', 1, margin_percent=3.0).margin_percent == 0.0


def test_wholesale_adjustment_applies_to_agreement_margin(resolver, store):
    store.write_customer_tier('c-plain', 'wholesale')
    store.upsert_customer_agreement(CustomerSupplierAgreement(
        'c-plain', 'lm', discount_percent=10, custom_margin_percent=30,
    ))
    result = resolver.resolve('c-plain', 'lm-cable', 1)
    assert result.effective_cost_price == 108.0
    assert result.margin_percent == 25.0
    assert result.unit_sale_price == 135.0


@pytest.mark.parametrize("cost", [float('nan'), float('inf'), -5.0])
def test_invalid_live_cost_falls_back_and_is_not_cached(resolver, store, clients, cache, cost):
    clients.register('lm', StaticClient({'LM-200': LivePrice(cost_price=cost)}))

    result = resolver.resolve('c-plain', 'lm-cable', 1)
    assert result.data_source == 'cache'
    assert result.is_stale is True
    assert result.effective_cost_price == 118.0

    cache.drain(timeout=5)
    assert store.read_cached_price('lm-cable') is None


def test_resolver_without_clients_uses_stored_prices(store, cache, executor, config):
    resolver = PriceResolver(store, cache, executor, config=config, clock=fixed_clock)
    result = resolver.resolve('c-plain', 'lm-cable', 1)
    assert result.data_source == 'cache'
    assert result.effective_cost_price == 118.0
