import os
import sys
import threading
from datetime import datetime, timedelta, timezone

import pytest

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from supplier_pricing.clients import LiveClientRegistry, LivePriceClient
from supplier_pricing.engine.comparator import SupplierComparator
from supplier_pricing.engine.errors import UpstreamError
from supplier_pricing.engine.fallback import FallbackExecutor
from supplier_pricing.engine.models import CachedPriceRecord, LivePrice, Supplier, SupplierProduct
from supplier_pricing.engine.price_cache import PriceCache
from supplier_pricing.engine.pricing_rules import PricingConfig, VolumeBracket
from supplier_pricing.engine.resolver import PriceResolver
from supplier_pricing.store import FramePriceStore

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def fixed_clock():
    return NOW


class StaticClient(LivePriceClient):
    """Answers immediately with a fixed price per SKU."""

    def __init__(self, prices: dict):
        self.prices = prices
        self.calls = []

    def fetch_price(self, product, context):
        self.calls.append(product.supplier_sku)
        return self.prices[product.supplier_sku]


class FailingClient(LivePriceClient):
    """Always fails like an unreachable supplier API."""

    def __init__(self):
        self.calls = 0

    def fetch_price(self, product, context):
        self.calls += 1
        raise UpstreamError("supplier API returned 502")


class HangingClient(LivePriceClient):
    """Blocks until the caller cancels the call (or `hang_seconds` pass)."""

    def __init__(self, hang_seconds: float = 15.0, price: LivePrice = None):
        self.hang_seconds = hang_seconds
        self.price = price or LivePrice(cost_price=999.0)
        self.cancelled = threading.Event()

    def fetch_price(self, product, context):
        if context.wait_cancelled(self.hang_seconds):
            self.cancelled.set()
            raise UpstreamError("call abandoned")
        return self.price


def cache_row(product_id, cost, age_hours=1.0, source='api', is_stale=False, list_price=None):
    return CachedPriceRecord(
        supplier_product_id=product_id,
        cached_cost_price=cost,
        cached_list_price=list_price,
        cached_at=NOW - timedelta(hours=age_hours),
        cache_source=source,
        is_stale=is_stale,
    )


@pytest.fixture
def store():
    """
    Three suppliers selling the same cable:
    - ao: no live API, fresh cache row at 100
    - lm: live API (120 in the `clients` fixture), catalog price 118
    - sol: no price anywhere
    """
    s = FramePriceStore()
    s.add_supplier(Supplier(id='ao', name='AO', code='AO'))
    s.add_supplier(Supplier(id='lm', name='Lemvigh-Muller', code='LM'))
    s.add_supplier(Supplier(id='sol', name='Solar', code='SOL'))

    s.add_supplier_product(SupplierProduct(
        id='ao-cable', supplier_id='ao', supplier_sku='AO-100', name='Installation cable 3G1.5',
        cost_price=95.0, list_price=150.0, last_synced_at=NOW - timedelta(hours=30),
    ))
    s.add_supplier_product(SupplierProduct(
        id='lm-cable', supplier_id='lm', supplier_sku='LM-200', name='Installation cable 3G1.5',
        cost_price=118.0, list_price=160.0, last_synced_at=NOW - timedelta(hours=2),
    ))
    s.add_supplier_product(SupplierProduct(
        id='sol-cable', supplier_id='sol', supplier_sku='SOL-300', name='Installation Cable 3G1.5',
        cost_price=None,
    ))
    s.add_supplier_product(SupplierProduct(
        id='ao-socket', supplier_id='ao', supplier_sku='AO-555', name='Wall socket double',
        cost_price=40.0, last_synced_at=NOW - timedelta(hours=3),
    ))

    s.upsert_cached_price(cache_row('ao-cable', 100.0, list_price=150.0))

    s.add_customer('c-preferred', 'Hansen El', 'preferred')
    s.add_customer('c-plain', 'Jensen VVS', None)
    return s


@pytest.fixture
def clients():
    registry = LiveClientRegistry()
    registry.register('lm', StaticClient({'LM-200': LivePrice(cost_price=120.0, list_price=160.0, stock_quantity=40)}))
    registry.register('sol', FailingClient())
    return registry


@pytest.fixture
def config():
    """Default tiers; quantity 60 falls into a 5% bracket."""
    return PricingConfig(volume_brackets=[
        VolumeBracket(1, 49, 0.0, '1-49'),
        VolumeBracket(50, 99, 5.0, '50-99'),
        VolumeBracket(100, None, 10.0, '100+'),
    ])


@pytest.fixture
def cache(store):
    c = PriceCache(store, max_age_hours=24, clock=fixed_clock)
    yield c
    c.close()


@pytest.fixture
def executor():
    e = FallbackExecutor(timeout=2.0, clock=fixed_clock)
    yield e
    e.shutdown()


@pytest.fixture
def resolver(store, cache, executor, clients, config):
    return PriceResolver(store, cache, executor, clients=clients, config=config,
                         default_margin_percent=25.0, clock=fixed_clock)


@pytest.fixture
def comparator(store, resolver):
    return SupplierComparator(store, resolver, max_parallel=4)
