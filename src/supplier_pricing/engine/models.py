"""
Data models for the pricing engine.

Uses dataclasses for structured, type-safe data representation.
"""
import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Generic, Optional, TypeVar, Union


T = TypeVar('T')

CACHE_SOURCES = ('api', 'import', 'manual')

# Higher = more reliable provenance. Informational only: recency decides which
# cached price is current.
FALLBACK_PRIORITY = {'api': 2, 'import': 1, 'manual': 0}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def fallback_priority_for(source: str) -> int:
    return FALLBACK_PRIORITY.get(source, 0)


@dataclass
class TraceStep:
    """A single step in the price resolution trace."""
    step: str
    description: str
    value: Optional[str] = None


@dataclass
class Supplier:
    id: str
    name: str
    code: str = ""
    is_active: bool = True
    api_base_url: Optional[str] = None


@dataclass
class SupplierProduct:
    """Canonical supplier product row, owned by the external sync pipeline."""
    id: str
    supplier_id: str
    supplier_sku: str
    name: str
    cost_price: Optional[float]
    list_price: Optional[float] = None
    is_available: bool = True
    lead_time_days: Optional[int] = None
    last_synced_at: Optional[datetime] = None
    is_active: bool = True
    supplier_name: str = ""


@dataclass
class CachedPriceRecord:
    """Last known price snapshot for one supplier product."""
    supplier_product_id: str
    cached_cost_price: float
    cached_list_price: Optional[float]
    cached_at: datetime
    cache_source: str = 'api'
    cached_is_available: bool = True
    cached_stock_quantity: Optional[int] = None
    cached_lead_time_days: Optional[int] = None
    is_stale: bool = False
    fallback_priority: int = 0
    expires_at: Optional[datetime] = None

    def age_hours(self, now: datetime) -> float:
        return max(0.0, (now - self.cached_at).total_seconds() / 3600.0)


@dataclass
class Cached:
    """Price found in the dedicated cache table."""
    record: CachedPriceRecord


@dataclass
class CatalogSynced:
    """No cache row; price taken from the catalog's last-synced columns."""
    record: CachedPriceRecord


@dataclass
class Missing:
    """Neither a cache row nor a priced catalog row exists."""
    supplier_product_id: str


PriceSource = Union[Cached, CatalogSynced, Missing]


@dataclass
class LivePrice:
    """Price data as returned by a live supplier call."""
    cost_price: float
    list_price: Optional[float] = None
    is_available: bool = True
    stock_quantity: Optional[int] = None
    lead_time_days: Optional[int] = None


class CallContext:
    """
    Deadline and cancellation handle for one live supplier call.

    Clients should bound their own I/O by `remaining()` and stop work once
    `cancelled` is set; the fallback executor sets it when it gives up waiting.
    """

    def __init__(self, timeout: float, account: Optional[dict] = None):
        self.timeout = timeout
        self.deadline = time.monotonic() + timeout
        self.account = account or {}
        self._cancelled = threading.Event()

    def remaining(self) -> float:
        return max(0.0, self.deadline - time.monotonic())

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def wait_cancelled(self, seconds: float) -> bool:
        """Sleep up to `seconds`, returning early (True) if cancelled."""
        return self._cancelled.wait(seconds)


@dataclass
class FallbackResult(Generic[T]):
    data: T
    source: str  # "live" or "cache"
    is_stale: bool
    cached_at: Optional[datetime] = None
    warning: Optional[str] = None


@dataclass
class CustomerProductOverride:
    """Customer-specific price for one supplier product."""
    customer_id: str
    supplier_product_id: str
    custom_cost_price: Optional[float] = None
    custom_list_price: Optional[float] = None
    custom_discount_percent: Optional[float] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    is_active: bool = True
    source: str = 'manual'
    notes: Optional[str] = None

    def is_active_on(self, day: date) -> bool:
        return _within_window(self.is_active, self.valid_from, self.valid_to, day)

    @property
    def sets_absolute_price(self) -> bool:
        return self.custom_cost_price is not None


@dataclass
class CustomerSupplierAgreement:
    """Discount agreement between a customer and a supplier."""
    customer_id: str
    supplier_id: str
    discount_percent: float = 0.0
    custom_margin_percent: Optional[float] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    is_active: bool = True
    price_list_code: Optional[str] = None
    notes: Optional[str] = None

    def is_active_on(self, day: date) -> bool:
        return _within_window(self.is_active, self.valid_from, self.valid_to, day)


def _within_window(active: bool, valid_from: Optional[date], valid_to: Optional[date], day: date) -> bool:
    if not active:
        return False
    if valid_from is not None and day < valid_from:
        return False
    if valid_to is not None and day > valid_to:
        return False
    return True


@dataclass
class SyncLogEntry:
    supplier_id: str
    status: str  # started, running, completed, failed, cancelled
    started_at: datetime
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None


@dataclass
class SupplierHealth:
    supplier_id: str
    supplier_name: str
    supplier_code: str
    status: str  # "online", "offline" or "unknown"
    is_online: bool
    last_successful_sync: Optional[datetime]
    last_failed_sync: Optional[datetime]
    failure_count: int
    average_response_time_ms: Optional[int]
    cache_status: str  # "fresh", "stale" or "missing"
    cached_product_count: int
    stale_product_count: int = 0


@dataclass
class SystemHealthSummary:
    total_suppliers: int
    online_suppliers: int
    offline_suppliers: int
    fresh_cache: int
    stale_cache: int
    missing_cache: int
    last_global_sync: Optional[datetime]
    critical_issues: list[str] = field(default_factory=list)


@dataclass
class ResolvedPrice:
    """Effective price for one (customer, supplier product, quantity)."""
    supplier_product_id: str
    supplier_id: str
    customer_id: Optional[str]
    quantity: int
    tier: str
    base_cost_price: float
    effective_cost_price: float
    unit_sale_price: float
    margin_percent: float
    total_cost: float
    total_sale: float
    total_profit: float
    effective_margin_percent: float
    price_source: str  # "standard", "customer_product" or "customer_supplier"
    data_source: str  # "live" or "cache"
    is_stale: bool
    list_price: Optional[float] = None
    cached_at: Optional[datetime] = None
    cache_age_hours: Optional[float] = None
    is_available: bool = True
    stock_quantity: Optional[int] = None
    lead_time_days: Optional[int] = None
    discounts: dict = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    trace: list[TraceStep] = field(default_factory=list)

    def add_trace(self, step: str, description: str, value: str = None):
        """Add a step to the trace for this price."""
        self.trace.append(TraceStep(step=step, description=description, value=value))

    def add_warning(self, warning: str):
        if warning not in self.warnings:
            self.warnings.append(warning)

    def get_trace_text(self) -> str:
        """Get human-readable trace as formatted text."""
        lines = []
        for t in self.trace:
            if t.value:
                lines.append(f"→ {t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"→ {t.step}: {t.description}")
        return "\n".join(lines)


@dataclass
class ComparisonRow:
    supplier_id: str
    supplier_name: str
    supplier_product_id: str
    sku: str
    product_name: str
    unit_cost: float
    unit_sale: float
    total_cost: float
    total_sale: float
    margin_percent: float
    is_available: bool
    is_stale: bool
    data_source: str
    price_source: str
    lead_time_days: Optional[int] = None
    cached_at: Optional[datetime] = None
    is_cheapest: bool = False
    is_recommended: bool = False
    savings_vs_most_expensive: float = 0.0
    warnings: list[str] = field(default_factory=list)


@dataclass
class ComparisonResult:
    product_description: str
    quantity: int
    target_margin_percent: float
    suppliers: list[ComparisonRow] = field(default_factory=list)
    cheapest_supplier: str = ""
    most_expensive_supplier: str = ""
    price_spread_percent: float = 0.0
    excluded: list[dict] = field(default_factory=list)


@dataclass
class MarginLine:
    description: str
    cost: float
    sale: float
    profit: float
    margin_percent: float
    is_below_minimum: bool


@dataclass
class MarginAnalysis:
    total_cost: float
    total_sale: float
    total_profit: float
    overall_margin_percent: float
    items: list[MarginLine]
    below_minimum: list[MarginLine]
    average_margin_percent: float
    minimum_margin_percent: float
    weakest_item: Optional[str] = None
    strongest_item: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def below_minimum_count(self) -> int:
        return len(self.below_minimum)


@dataclass
class PriceSuggestion:
    suggested_price: float
    reason: str
    confidence: str  # "high", "medium" or "low"
    based_on: str


@dataclass
class PriceSuggestionResult:
    cost_price: float
    target_margin_percent: float
    recommended_price: float
    suggestions: list[PriceSuggestion] = field(default_factory=list)
