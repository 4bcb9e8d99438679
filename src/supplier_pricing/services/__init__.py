"""Services subpackage - caller-facing operations."""
from .pricing_service import ActionResult, PricingService, build_service

__all__ = ['ActionResult', 'PricingService', 'build_service']
