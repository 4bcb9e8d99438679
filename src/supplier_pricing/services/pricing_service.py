"""
Pricing Service - Caller-facing operations for supplier pricing.

Every public method returns an ActionResult; no exception crosses this
boundary. Known failures (bad input, unknown ids, no price anywhere) carry
their message and kind; anything else is logged with a traceback and reported
with a generic message.
"""
import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from ..clients import LiveClientRegistry
from ..config.settings import Settings, get_settings
from ..engine.comparator import SupplierComparator
from ..engine.errors import AllSourcesFailedError, NotFoundError, ValidationError
from ..engine.fallback import FallbackExecutor
from ..engine.margins import analyze_margins, suggest_price
from ..engine.models import CustomerProductOverride, CustomerSupplierAgreement, utcnow
from ..engine.price_cache import PriceCache
from ..engine.pricing_rules import PricingConfig
from ..engine.resolver import PriceResolver
from ..engine.validation import (
    validate_amount,
    validate_id,
    validate_optional_id,
    validate_percent,
    validate_quantity,
)
from ..health.monitor import SupplierHealthMonitor
from ..store import FramePriceStore

logger = logging.getLogger(__name__)

KNOWN_ERRORS = (ValidationError, NotFoundError, AllSourcesFailedError)


@dataclass
class ActionResult:
    """Uniform result of a service call."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> 'ActionResult':
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, kind: str = 'error') -> 'ActionResult':
        return cls(success=False, error=error, error_kind=kind)


class PricingService:
    """Facade over the resolver, comparator, margin tools, health monitor and store."""

    def __init__(
        self,
        store,
        cache: PriceCache,
        resolver: PriceResolver,
        comparator: SupplierComparator,
        monitor: SupplierHealthMonitor,
        config: PricingConfig,
        executor: Optional[FallbackExecutor] = None,
        default_margin_percent: float = 25.0,
        minimum_margin_percent: float = 15.0,
    ):
        self.store = store
        self.cache = cache
        self.resolver = resolver
        self.comparator = comparator
        self.monitor = monitor
        self.config = config
        self.executor = executor
        self.default_margin_percent = default_margin_percent
        self.minimum_margin_percent = minimum_margin_percent

    def _run(self, action: str, fn: Callable, *args, **kwargs) -> ActionResult:
        try:
            return ActionResult.ok(fn(*args, **kwargs))
        except KNOWN_ERRORS as exc:
            logger.info("%s rejected: %s", action, exc)
            return ActionResult.fail(str(exc), exc.kind)
        except Exception:
            logger.exception("Unexpected error during %s", action)
            return ActionResult.fail(f"Could not {action}, please try again later")

    def close(self):
        """Flush queued cache writes and stop worker threads."""
        self.cache.drain(timeout=5.0)
        self.cache.close()
        if self.executor is not None:
            self.executor.shutdown()

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    def resolve_price(self, customer_id: Optional[str], supplier_product_id: str, quantity: int,
                      margin_percent: Optional[float] = None, order_total: Optional[float] = None) -> ActionResult:
        return self._run("resolve price", self.resolver.resolve, customer_id, supplier_product_id,
                         quantity, margin_percent, order_total)

    def compare_prices(self, search_term: str, quantity: int = 1, target_margin: Optional[float] = None,
                       customer_id: Optional[str] = None) -> ActionResult:
        margin = self.default_margin_percent if target_margin is None else target_margin
        return self._run("compare prices", self.comparator.compare, search_term, quantity, margin, customer_id)

    def analyze_margins(self, line_items: Iterable[dict],
                        minimum_margin_percent: Optional[float] = None) -> ActionResult:
        minimum = self.minimum_margin_percent if minimum_margin_percent is None else minimum_margin_percent
        return self._run("analyze margins", analyze_margins, line_items, minimum)

    def suggest_price(self, cost_price: float, target_margin: Optional[float] = None,
                      product_id: Optional[str] = None) -> ActionResult:
        def _suggest():
            margin = self.default_margin_percent if target_margin is None else target_margin
            pid = validate_optional_id(product_id, "supplier product id")
            history = self.store.read_accepted_prices(pid, limit=20) if pid else []
            return suggest_price(cost_price, margin, history)

        return self._run("suggest price", _suggest)

    def invalidate_cache(self, supplier_product_ids: Optional[list[str]] = None,
                         supplier_id: Optional[str] = None) -> ActionResult:
        def _invalidate():
            ids = [validate_id(i, "supplier product id") for i in supplier_product_ids] \
                if supplier_product_ids is not None else None
            sid = validate_optional_id(supplier_id, "supplier id")
            if ids is None and sid is None:
                raise ValidationError("Give supplier product ids or a supplier id to invalidate")
            return {'invalidated': self.cache.invalidate(ids, supplier_id=sid)}

        return self._run("invalidate cache", _invalidate)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def get_supplier_health(self, supplier_id: Optional[str] = None) -> ActionResult:
        if supplier_id:
            return self._run("get supplier health", self.monitor.health, supplier_id)
        return self._run("get supplier health", self.monitor.all_health)

    def get_system_health(self) -> ActionResult:
        return self._run("get system health", self.monitor.summary)

    # ------------------------------------------------------------------
    # Customer pricing
    # ------------------------------------------------------------------

    def _require_customer(self, customer_id: str) -> str:
        customer_id = validate_id(customer_id, "customer id")
        if not self.store.customer_exists(customer_id):
            raise NotFoundError(f"Customer {customer_id} not found")
        return customer_id

    def get_customer_tier(self, customer_id: str) -> ActionResult:
        def _get():
            cid = self._require_customer(customer_id)
            stored = self.store.read_customer_tier(cid)
            tier = self.config.tier(stored)
            return {'customer_id': cid, 'tier': tier.tier, 'is_default': stored is None, 'config': asdict(tier)}

        return self._run("get customer tier", _get)

    def set_customer_tier(self, customer_id: str, tier: str) -> ActionResult:
        def _set():
            cid = self._require_customer(customer_id)
            key = str(tier or '').strip().lower()
            if key not in self.config.tiers:
                raise ValidationError(f"Unknown pricing tier: {tier!r}")
            self.store.write_customer_tier(cid, key)
            logger.info("Customer %s moved to tier %s", cid, key)
            return {'customer_id': cid, 'tier': key}

        return self._run("set customer tier", _set)

    def get_pricing_config(self) -> ActionResult:
        def _config():
            return {
                'tiers': [asdict(t) for t in self.config.tiers.values()],
                'volume_brackets': [asdict(b) for b in self.config.volume_brackets],
                'default_margin_percent': self.default_margin_percent,
                'minimum_margin_percent': self.minimum_margin_percent,
                'max_cache_age_hours': self.cache.max_age.total_seconds() / 3600.0,
            }

        return self._run("get pricing config", _config)

    def get_volume_discount(self, quantity: int) -> ActionResult:
        def _discount():
            q = validate_quantity(quantity)
            percent, label = self.config.volume_discount(q)
            return {'quantity': q, 'discount_percent': percent, 'bracket': label}

        return self._run("get volume discount", _discount)

    def list_customer_overrides(self, customer_id: str) -> ActionResult:
        def _list():
            return self.store.read_customer_overrides(self._require_customer(customer_id))

        return self._run("list customer product prices", _list)

    def upsert_customer_override(self, override: CustomerProductOverride) -> ActionResult:
        def _upsert():
            cid = self._require_customer(override.customer_id)
            pid = validate_id(override.supplier_product_id, "supplier product id")
            if self.store.read_supplier_product(pid) is None:
                raise NotFoundError(f"Supplier product {pid} not found")
            if override.custom_cost_price is not None:
                validate_amount(override.custom_cost_price, "Custom cost price")
            if override.custom_list_price is not None:
                validate_amount(override.custom_list_price, "Custom list price")
            if override.custom_discount_percent is not None:
                validate_percent(override.custom_discount_percent, "Custom discount")
            _check_window(override.valid_from, override.valid_to)
            return self.store.upsert_customer_override(replace(override, customer_id=cid, supplier_product_id=pid))

        return self._run("save customer product price", _upsert)

    def delete_customer_override(self, customer_id: str, supplier_product_id: str) -> ActionResult:
        def _delete():
            cid = self._require_customer(customer_id)
            pid = validate_id(supplier_product_id, "supplier product id")
            if not self.store.delete_customer_override(cid, pid):
                raise NotFoundError(f"No product price for customer {cid} and product {pid}")
            return {'deleted': True}

        return self._run("delete customer product price", _delete)

    def list_customer_agreements(self, customer_id: str) -> ActionResult:
        def _list():
            return self.store.read_customer_agreements(self._require_customer(customer_id))

        return self._run("list supplier agreements", _list)

    def upsert_customer_agreement(self, agreement: CustomerSupplierAgreement) -> ActionResult:
        def _upsert():
            cid = self._require_customer(agreement.customer_id)
            sid = validate_id(agreement.supplier_id, "supplier id")
            if self.store.read_supplier(sid) is None:
                raise NotFoundError(f"Supplier {sid} not found")
            validate_percent(agreement.discount_percent, "Discount")
            if agreement.custom_margin_percent is not None:
                validate_amount(agreement.custom_margin_percent, "Custom margin")
            _check_window(agreement.valid_from, agreement.valid_to)
            return self.store.upsert_customer_agreement(replace(agreement, customer_id=cid, supplier_id=sid))

        return self._run("save supplier agreement", _upsert)

    def delete_customer_agreement(self, customer_id: str, supplier_id: str) -> ActionResult:
        def _delete():
            cid = self._require_customer(customer_id)
            sid = validate_id(supplier_id, "supplier id")
            if not self.store.delete_customer_agreement(cid, sid):
                raise NotFoundError(f"No agreement between customer {cid} and supplier {sid}")
            return {'deleted': True}

        return self._run("delete supplier agreement", _delete)


def _check_window(valid_from, valid_to):
    if valid_from is not None and valid_to is not None and valid_from > valid_to:
        raise ValidationError("valid_from must not be after valid_to")


def build_service(
    settings: Optional[Settings] = None,
    store=None,
    clients=None,
    clock: Optional[Callable[[], datetime]] = None,
) -> PricingService:
    """
    Wire a PricingService from settings.

    Args:
        settings: defaults to the global settings
        store: defaults to a FramePriceStore loaded from settings.data_dir
        clients: live client registry; defaults to HTTP clients for suppliers with an API URL
        clock: time source shared by every component
    """
    settings = settings or get_settings()
    clock = clock or utcnow
    if store is None:
        store = FramePriceStore.from_csv_dir(settings.data_dir)
    if clients is None:
        clients = LiveClientRegistry.from_suppliers(store.list_suppliers())

    config = PricingConfig.from_csv(settings.tiers_csv, settings.volume_brackets_csv)
    cache = PriceCache(store, max_age_hours=settings.max_cache_age_hours, clock=clock)
    executor = FallbackExecutor(
        timeout=settings.live_timeout_seconds,
        max_workers=settings.max_parallel_lookups,
        clock=clock,
    )
    resolver = PriceResolver(
        store, cache, executor,
        clients=clients,
        config=config,
        default_margin_percent=settings.default_margin_percent,
        clock=clock,
    )
    comparator = SupplierComparator(
        store, resolver,
        max_parallel=settings.max_parallel_lookups,
        search_limit=settings.search_limit,
    )
    monitor = SupplierHealthMonitor(
        store, cache,
        window=settings.health_log_window,
        online_window_hours=settings.online_window_hours,
        failure_alert_threshold=settings.failure_alert_threshold,
        clock=clock,
    )
    return PricingService(
        store, cache, resolver, comparator, monitor, config,
        executor=executor,
        default_margin_percent=settings.default_margin_percent,
        minimum_margin_percent=settings.minimum_margin_percent,
    )
