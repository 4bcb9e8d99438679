"""
Supplier Health Monitor - Online status and cache freshness per supplier.

Read-only aggregation over the most recent sync-log entries and the supplier's
cached prices. A supplier is online when a completed sync started within the
online window. Missing or unreadable logs degrade to "unknown" (offline)
instead of raising.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable

from ..engine.errors import NotFoundError
from ..engine.models import Supplier, SupplierHealth, SystemHealthSummary, utcnow
from ..engine.price_cache import PriceCache
from ..engine.validation import validate_id

logger = logging.getLogger(__name__)


class SupplierHealthMonitor:
    """Derives SupplierHealth snapshots from sync logs and the price cache."""

    def __init__(
        self,
        store,
        cache: PriceCache,
        window: int = 10,
        online_window_hours: float = 24.0,
        failure_alert_threshold: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.cache = cache
        self.window = window
        self.online_window = timedelta(hours=online_window_hours)
        self.failure_alert_threshold = failure_alert_threshold
        self.clock = clock

    def health(self, supplier_id: str) -> SupplierHealth:
        """Health snapshot for one supplier; NotFoundError if it does not exist."""
        supplier_id = validate_id(supplier_id, "supplier id")
        supplier = self.store.read_supplier(supplier_id)
        if supplier is None:
            raise NotFoundError(f"Supplier {supplier_id} not found")
        return self._snapshot(supplier)

    def all_health(self) -> list[SupplierHealth]:
        return [self._snapshot(s) for s in self.store.list_suppliers(active_only=True)]

    def summary(self) -> SystemHealthSummary:
        statuses = self.all_health()
        online = sum(1 for h in statuses if h.is_online)
        last_syncs = [h.last_successful_sync for h in statuses if h.last_successful_sync is not None]

        issues = []
        for h in statuses:
            if not h.is_online:
                issues.append(f"{h.supplier_name} is offline")
            if h.cache_status == 'stale':
                issues.append(f"{h.supplier_name} has a stale price cache")
            if h.failure_count >= self.failure_alert_threshold:
                issues.append(f"{h.supplier_name} has {h.failure_count} failed syncs")

        return SystemHealthSummary(
            total_suppliers=len(statuses),
            online_suppliers=online,
            offline_suppliers=len(statuses) - online,
            fresh_cache=sum(1 for h in statuses if h.cache_status == 'fresh'),
            stale_cache=sum(1 for h in statuses if h.cache_status == 'stale'),
            missing_cache=sum(1 for h in statuses if h.cache_status == 'missing'),
            last_global_sync=max(last_syncs) if last_syncs else None,
            critical_issues=issues,
        )

    # ------------------------------------------------------------------

    def _snapshot(self, supplier: Supplier) -> SupplierHealth:
        now = self.clock()
        health = SupplierHealth(
            supplier_id=supplier.id,
            supplier_name=supplier.name,
            supplier_code=supplier.code or '',
            status='unknown',
            is_online=False,
            last_successful_sync=None,
            last_failed_sync=None,
            failure_count=0,
            average_response_time_ms=None,
            cache_status='missing',
            cached_product_count=0,
        )

        try:
            logs = self.store.read_sync_logs(supplier.id, limit=self.window)
        except Exception:
            logger.warning("Could not read sync logs for %s", supplier.id, exc_info=True)
            logs = []

        completed = [entry for entry in logs if entry.status == 'completed']
        failed = [entry for entry in logs if entry.status == 'failed']

        health.failure_count = len(failed)
        if completed:
            health.last_successful_sync = completed[0].started_at
            durations = [entry.duration_ms or 0 for entry in completed]
            health.average_response_time_ms = round(sum(durations) / len(durations))
        if failed:
            health.last_failed_sync = failed[0].started_at

        if logs:
            health.is_online = (
                health.last_successful_sync is not None
                and now - health.last_successful_sync < self.online_window
            )
            health.status = 'online' if health.is_online else 'offline'

        self._cache_status(supplier.id, health, now)
        return health

    def _cache_status(self, supplier_id: str, health: SupplierHealth, now: datetime):
        try:
            records = self.store.read_cached_prices_for_supplier(supplier_id)
        except Exception:
            logger.warning("Could not read cached prices for %s", supplier_id, exc_info=True)
            return

        total = len(records)
        stale = sum(1 for r in records if r.is_stale or self.cache.is_expired(r.cached_at, now))
        health.cached_product_count = total
        health.stale_product_count = stale
        if total == 0:
            health.cache_status = 'missing'
        elif stale > total / 2:
            health.cache_status = 'stale'
        else:
            health.cache_status = 'fresh'

