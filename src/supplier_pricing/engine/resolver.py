"""
Price Resolver - Effective supplier price for a customer with traceability.

Resolution order:
1. Base price: live supplier call through the fallback executor, falling back
   to the price cache (cache row, then catalog last-synced price)
2. Customer tier (standard when unset)
3. Override precedence, first active entry wins:
   a. Customer product override
   b. Customer-supplier agreement discount
   c. Tier default discount
4. Volume bracket discount, unless 3a set an absolute price
5. Clamp to >= 0, apply margin plus the tier margin adjustment, attach source
   and staleness metadata
"""
import logging
import math
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from .errors import NotFoundError, UpstreamError, ValidationError
from .fallback import FallbackExecutor
from .models import (
    CachedPriceRecord,
    CallContext,
    LivePrice,
    ResolvedPrice,
    SupplierProduct,
    utcnow,
)
from .price_cache import PriceCache
from .pricing_rules import PricingConfig, apply_discount
from .validation import validate_amount, validate_id, validate_optional_id, validate_quantity

if TYPE_CHECKING:
    from ..clients.live_client import LiveClientRegistry

logger = logging.getLogger(__name__)


def _money(value: float) -> float:
    return round(value, 2)


def _valid_cost(value) -> bool:
    return value is not None and math.isfinite(value) and value >= 0


class PriceResolver:
    """
    Resolves the effective cost and sale price of a supplier product.

    Each call is independent; the only shared state is the price cache,
    written best-effort after successful live reads.
    """

    def __init__(
        self,
        store,
        cache: PriceCache,
        executor: FallbackExecutor,
        clients: Optional["LiveClientRegistry"] = None,
        config: Optional[PricingConfig] = None,
        default_margin_percent: float = 25.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.cache = cache
        self.executor = executor
        self.clients = clients
        self.config = config or PricingConfig()
        self.default_margin_percent = default_margin_percent
        self.clock = clock

    # ------------------------------------------------------------------
    # Base price
    # ------------------------------------------------------------------

    def _live_snapshot(self, product: SupplierProduct, context: CallContext) -> CachedPriceRecord:
        client = self.clients.get(product.supplier_id) if self.clients is not None else None
        if client is None:
            raise UpstreamError(f"No live price client for supplier {product.supplier_id}")

        live: LivePrice = client.fetch_price(product, context)
        if not _valid_cost(live.cost_price):
            raise UpstreamError(f"Supplier {product.supplier_id} returned an invalid cost price: {live.cost_price!r}")

        # An abandoned call must not overwrite the cache after the caller moved on
        if not context.cancelled:
            self.cache.put_nowait(product.id, live, 'api')

        return CachedPriceRecord(
            supplier_product_id=product.id,
            cached_cost_price=live.cost_price,
            cached_list_price=live.list_price,
            cached_at=self.clock(),
            cache_source='api',
            cached_is_available=live.is_available,
            cached_stock_quantity=live.stock_quantity,
            cached_lead_time_days=live.lead_time_days,
        )

    def base_price(self, product: SupplierProduct):
        """Live price for a product, or the cached one when the supplier is unavailable."""
        account = self.clients.account_for(product.supplier_id) if self.clients is not None else None
        return self.executor.execute(
            primary=lambda context: self._live_snapshot(product, context),
            fallback=lambda: self.cache.get(product.id),
            label=f"{product.supplier_id}/{product.supplier_sku or product.id}",
            account=account,
        )

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(
        self,
        customer_id: Optional[str],
        supplier_product_id: str,
        quantity: int,
        margin_percent: Optional[float] = None,
        order_total: Optional[float] = None,
    ) -> ResolvedPrice:
        """
        Resolve the effective price for (customer, supplier product, quantity).

        Args:
            customer_id: Customer to price for; None prices as an anonymous standard customer
            supplier_product_id: Supplier product row id
            quantity: Units being bought (> 0)
            margin_percent: Margin for the sale price; defaults to the configured margin
            order_total: Order value used for tier volume thresholds

        Raises:
            ValidationError: bad ids, quantity <= 0, negative cost or margin
            NotFoundError: unknown customer or supplier product
            AllSourcesFailedError: no live, cached or catalog price exists
        """
        customer_id = validate_optional_id(customer_id, "customer id")
        supplier_product_id = validate_id(supplier_product_id, "supplier product id")
        quantity = validate_quantity(quantity)
        if margin_percent is not None:
            margin_percent = validate_amount(margin_percent, "Margin")

        product = self.store.read_supplier_product(supplier_product_id)
        if product is None:
            raise NotFoundError(f"Supplier product {supplier_product_id} not found")
        if customer_id and not self.store.customer_exists(customer_id):
            raise NotFoundError(f"Customer {customer_id} not found")

        base = self.base_price(product)
        snapshot: CachedPriceRecord = base.data
        if not _valid_cost(snapshot.cached_cost_price):
            raise ValidationError(f"Base cost for {supplier_product_id} must be a finite amount >= 0")

        now = self.clock()
        today = now.date()

        tier_name = self.store.read_customer_tier(customer_id) if customer_id else None
        tier = self.config.tier(tier_name)

        result = ResolvedPrice(
            supplier_product_id=product.id,
            supplier_id=product.supplier_id,
            customer_id=customer_id,
            quantity=quantity,
            tier=tier.tier,
            base_cost_price=_money(snapshot.cached_cost_price),
            effective_cost_price=0.0,
            unit_sale_price=0.0,
            margin_percent=0.0,
            total_cost=0.0,
            total_sale=0.0,
            total_profit=0.0,
            effective_margin_percent=0.0,
            price_source='standard',
            data_source=base.source,
            is_stale=base.is_stale,
            list_price=snapshot.cached_list_price,
            cached_at=snapshot.cached_at,
            is_available=snapshot.cached_is_available,
            stock_quantity=snapshot.cached_stock_quantity,
            lead_time_days=snapshot.cached_lead_time_days,
        )

        if base.source == 'live':
            result.add_trace("Base Price", "Live supplier price", f"{snapshot.cached_cost_price:.2f}")
        else:
            age = snapshot.age_hours(now)
            result.cache_age_hours = round(age, 1)
            result.add_trace("Base Price", f"Cached price ({snapshot.cache_source}, {age:.1f}h old)",
                             f"{snapshot.cached_cost_price:.2f}")
            if base.warning:
                result.add_warning(base.warning)
            if self.cache.is_expired(snapshot.cached_at, now) or snapshot.is_stale:
                result.add_warning(f"Cached price is {age:.0f} hours old and may be outdated")

        if tier_name is None and customer_id:
            result.add_trace("Tier", "No tier set, using standard", tier.tier)
        else:
            result.add_trace("Tier", f"Customer tier {tier.label}", tier.tier)

        cost = snapshot.cached_cost_price
        discount = 0.0
        terminal = False
        margin_from_agreement = None
        discounts = {
            'tier_discount_percent': 0.0,
            'agreement_discount_percent': 0.0,
            'override_discount_percent': 0.0,
            'volume_discount_percent': 0.0,
        }

        override = self.store.read_customer_override(customer_id, product.id) if customer_id else None
        agreement = None
        if override is not None and not override.is_active_on(today):
            result.add_trace("Override", "Product override outside its validity window, ignored")
            override = None
        if override is None and customer_id:
            agreement = self.store.read_customer_agreement(customer_id, product.supplier_id)
            if agreement is not None and not agreement.is_active_on(today):
                result.add_trace("Agreement", "Supplier agreement outside its validity window, ignored")
                agreement = None

        if override is not None:
            result.price_source = 'customer_product'
            if override.custom_list_price is not None:
                result.list_price = override.custom_list_price
            if override.sets_absolute_price:
                cost = override.custom_cost_price
                terminal = True
                result.add_trace("Override", "Customer product price (absolute)", f"{cost:.2f}")
            elif override.custom_discount_percent is not None:
                discount = override.custom_discount_percent
                discounts['override_discount_percent'] = discount
                result.add_trace("Override", "Customer product discount", f"{discount}%")
            else:
                result.add_trace("Override", "Customer product override without price or discount")
        elif agreement is not None:
            result.price_source = 'customer_supplier'
            discount = agreement.discount_percent
            discounts['agreement_discount_percent'] = discount
            margin_from_agreement = agreement.custom_margin_percent
            result.add_trace("Agreement", "Customer-supplier discount", f"{discount}%")
        else:
            discount = tier.discount_for(order_total)
            discounts['tier_discount_percent'] = discount
            if discount > 0:
                result.add_trace("Tier Discount", f"{tier.label} default discount", f"{discount}%")

        if not terminal:
            cost = apply_discount(cost, discount)
            volume, bracket = self.config.volume_discount(quantity)
            discounts['volume_discount_percent'] = volume
            if volume > 0:
                cost = apply_discount(cost, volume)
                result.add_trace("Volume Discount", f"Bracket {bracket}", f"{volume}%")

        cost = max(0.0, cost)

        if margin_from_agreement is not None:
            margin = margin_from_agreement
            result.add_trace("Margin", "Agreement margin", f"{margin}%")
        elif margin_percent is not None:
            margin = margin_percent
            result.add_trace("Margin", "Requested margin", f"{margin}%")
        else:
            margin = self.default_margin_percent
            result.add_trace("Margin", "Default margin", f"{margin}%")
        if tier.margin_adjustment_percent:
            margin += tier.margin_adjustment_percent
            result.add_trace("Margin Adjustment", f"{tier.label} tier", f"{tier.margin_adjustment_percent:+}%")
        margin = max(0.0, margin)

        sale = cost * (1 + margin / 100.0)
        total_cost = cost * quantity
        total_sale = sale * quantity
        profit = total_sale - total_cost

        base_cost = snapshot.cached_cost_price
        discounts['total_discount_percent'] = (
            round((base_cost - cost) / base_cost * 100, 1) if base_cost > 0 else 0.0
        )

        result.effective_cost_price = _money(cost)
        result.unit_sale_price = _money(sale)
        result.margin_percent = margin
        result.total_cost = _money(total_cost)
        result.total_sale = _money(total_sale)
        result.total_profit = _money(profit)
        result.effective_margin_percent = round(profit / total_sale * 100, 1) if total_sale > 0 else 0.0
        result.discounts = discounts

        result.add_trace("Effective Cost", f"Quantity {quantity}", f"{result.effective_cost_price:.2f}")
        logger.debug("Resolved %s for customer %s:\n%s", product.id, customer_id, result.get_trace_text())
        return result
