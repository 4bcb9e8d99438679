"""Engine subpackage - price resolution, fallback caching and comparison."""
from .comparator import SupplierComparator
from .fallback import FallbackExecutor
from .models import CallContext, LivePrice, ResolvedPrice
from .price_cache import PriceCache
from .pricing_rules import PricingConfig
from .resolver import PriceResolver

__all__ = [
    'SupplierComparator', 'FallbackExecutor', 'CallContext', 'LivePrice',
    'ResolvedPrice', 'PriceCache', 'PricingConfig', 'PriceResolver',
]
