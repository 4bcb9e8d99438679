"""Live supplier price clients."""
from .live_client import HttpSupplierPriceClient, LiveClientRegistry, LivePriceClient

__all__ = ['HttpSupplierPriceClient', 'LiveClientRegistry', 'LivePriceClient']
