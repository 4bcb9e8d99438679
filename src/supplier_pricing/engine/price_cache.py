"""
Price Cache - Last known good supplier prices with staleness tracking.

Lookup order for a supplier product:
1. Dedicated price-cache row (source api/import/manual)
2. Catalog row's last-synced cost price (tagged "import", priority 0)
3. Missing

A cached price is stale when it was explicitly invalidated or is older than
the configured max age. Stale prices stay readable as a last resort.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from .errors import CacheWriteError
from .models import (
    CACHE_SOURCES,
    Cached,
    CachedPriceRecord,
    CatalogSynced,
    LivePrice,
    Missing,
    PriceSource,
    SupplierProduct,
    fallback_priority_for,
    utcnow,
)

logger = logging.getLogger(__name__)

EPOCH = datetime.fromtimestamp(0, timezone.utc)


class PriceCache:
    """
    Staleness-aware view over the store's price-cache table.

    Writes and invalidations never raise: failures are logged and dropped so
    cache maintenance cannot fail the caller's primary operation.
    """

    def __init__(
        self,
        store,
        max_age_hours: float = 24.0,
        clock: Callable[[], datetime] = utcnow,
        write_workers: int = 1,
    ):
        self.store = store
        self.max_age = timedelta(hours=max_age_hours)
        self.clock = clock
        self._writer = ThreadPoolExecutor(max_workers=write_workers, thread_name_prefix='price-cache-writer')
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def is_expired(self, cached_at: datetime, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        return now - cached_at > self.max_age

    def _with_staleness(self, record: CachedPriceRecord, now: datetime) -> CachedPriceRecord:
        return replace(record, is_stale=record.is_stale or self.is_expired(record.cached_at, now))

    def _from_catalog(self, product: SupplierProduct, now: datetime) -> Optional[CachedPriceRecord]:
        if product.cost_price is None:
            return None
        cached_at = product.last_synced_at or EPOCH
        return CachedPriceRecord(
            supplier_product_id=product.id,
            cached_cost_price=product.cost_price,
            cached_list_price=product.list_price,
            cached_at=cached_at,
            cache_source='import',
            cached_is_available=product.is_available,
            cached_stock_quantity=None,
            cached_lead_time_days=product.lead_time_days,
            is_stale=self.is_expired(cached_at, now),
            fallback_priority=0,
        )

    def lookup(self, supplier_product_id: str) -> PriceSource:
        """Resolve the best stored price for one product as a tagged source."""
        now = self.clock()
        try:
            record = self.store.read_cached_price(supplier_product_id)
            if record is not None:
                logger.debug("Cache hit for %s (source=%s)", supplier_product_id, record.cache_source)
                return Cached(self._with_staleness(record, now))

            product = self.store.read_supplier_product(supplier_product_id)
        except Exception:
            logger.warning("Price cache read failed for %s", supplier_product_id, exc_info=True)
            return Missing(supplier_product_id)

        if product is not None:
            record = self._from_catalog(product, now)
            if record is not None:
                logger.debug("Cache miss for %s, using catalog price", supplier_product_id)
                return CatalogSynced(record)

        logger.debug("No stored price for %s", supplier_product_id)
        return Missing(supplier_product_id)

    def get(self, supplier_product_id: str) -> Optional[CachedPriceRecord]:
        """Last known price for a product, or None when nothing is stored."""
        source = self.lookup(supplier_product_id)
        if isinstance(source, Missing):
            return None
        return source.record

    def get_batch(self, supplier_product_ids: Iterable[str]) -> dict[str, CachedPriceRecord]:
        """
        Last known prices for many products.

        Ids without a cache row fall back to the catalog; ids with neither are
        simply absent from the result.
        """
        ids = list(dict.fromkeys(supplier_product_ids))
        now = self.clock()
        result: dict[str, CachedPriceRecord] = {}

        try:
            for product_id, record in self.store.read_cached_prices(ids).items():
                result[product_id] = self._with_staleness(record, now)
        except Exception:
            logger.warning("Batch price cache read failed", exc_info=True)

        missing = [i for i in ids if i not in result]
        if missing:
            try:
                products = self.store.read_supplier_products(missing)
            except Exception:
                logger.warning("Catalog fallback read failed for %d products", len(missing), exc_info=True)
                products = {}
            for product_id, product in products.items():
                record = self._from_catalog(product, now)
                if record is not None:
                    result[product_id] = record

        return result

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _build_record(self, supplier_product_id: str, price: LivePrice, source: str) -> CachedPriceRecord:
        if source not in CACHE_SOURCES:
            raise CacheWriteError(f"Unknown cache source: {source}")
        now = self.clock()
        return CachedPriceRecord(
            supplier_product_id=supplier_product_id,
            cached_cost_price=price.cost_price,
            cached_list_price=price.list_price,
            cached_at=now,
            cache_source=source,
            cached_is_available=price.is_available,
            cached_stock_quantity=price.stock_quantity,
            cached_lead_time_days=price.lead_time_days,
            is_stale=False,
            fallback_priority=fallback_priority_for(source),
            expires_at=now + self.max_age,
        )

    def put(self, supplier_product_id: str, price: LivePrice, source: str = 'api') -> Optional[CachedPriceRecord]:
        """
        Upsert the cached price for a product.

        Idempotent: repeating the call rewrites the same row with a newer
        cached_at. Returns the written record, or None if the write failed.
        """
        try:
            record = self._build_record(supplier_product_id, price, source)
            return self.store.upsert_cached_price(record)
        except Exception:
            logger.warning("Price cache write failed for %s", supplier_product_id, exc_info=True)
            return None

    def put_nowait(self, supplier_product_id: str, price: LivePrice, source: str = 'api') -> Future:
        """Queue a cache write without waiting for it."""
        future = self._writer.submit(self.put, supplier_product_id, price, source)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future):
        with self._pending_lock:
            self._pending.discard(future)

    def drain(self, timeout: Optional[float] = None):
        """Wait for queued writes to finish."""
        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def invalidate(self, supplier_product_ids: Optional[Iterable[str]] = None,
                   supplier_id: Optional[str] = None) -> int:
        """
        Mark cached prices stale for the given products and/or a whole supplier.

        Data is kept. Returns the number of rows flagged (0 on failure).
        """
        if supplier_product_ids is None and supplier_id is None:
            return 0
        ids = list(supplier_product_ids) if supplier_product_ids is not None else None
        try:
            count = self.store.mark_stale(supplier_product_ids=ids, supplier_id=supplier_id)
        except Exception:
            logger.warning("Price cache invalidation failed (supplier=%s)", supplier_id, exc_info=True)
            return 0
        logger.info("Marked %d cached prices stale (supplier=%s, products=%s)",
                    count, supplier_id, len(ids) if ids is not None else 'all')
        return count

    def close(self):
        self._writer.shutdown(wait=True)
