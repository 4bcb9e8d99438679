"""
Persistent Price Store contract.

The pricing core reads supplier products, customer pricing and sync logs through
this interface and writes only to the price cache. Implementations must make
keyed upserts atomic per key (last writer wins).
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional

from ..engine.models import (
    CachedPriceRecord,
    CustomerProductOverride,
    CustomerSupplierAgreement,
    Supplier,
    SupplierProduct,
    SyncLogEntry,
)


class PriceStore(ABC):

    # Price cache

    @abstractmethod
    def read_cached_price(self, supplier_product_id: str) -> Optional[CachedPriceRecord]:
        ...

    @abstractmethod
    def read_cached_prices(self, supplier_product_ids: Iterable[str]) -> dict[str, CachedPriceRecord]:
        ...

    @abstractmethod
    def read_cached_prices_for_supplier(self, supplier_id: str) -> list[CachedPriceRecord]:
        ...

    @abstractmethod
    def upsert_cached_price(self, record: CachedPriceRecord) -> CachedPriceRecord:
        ...

    @abstractmethod
    def mark_stale(self, supplier_product_ids: Optional[Iterable[str]] = None,
                   supplier_id: Optional[str] = None) -> int:
        """Flag cache rows stale; returns the number of rows flagged."""

    # Catalog

    @abstractmethod
    def read_supplier(self, supplier_id: str) -> Optional[Supplier]:
        ...

    @abstractmethod
    def list_suppliers(self, active_only: bool = True) -> list[Supplier]:
        ...

    @abstractmethod
    def read_supplier_product(self, supplier_product_id: str) -> Optional[SupplierProduct]:
        ...

    @abstractmethod
    def read_supplier_products(self, supplier_product_ids: Iterable[str]) -> dict[str, SupplierProduct]:
        ...

    @abstractmethod
    def list_supplier_product_ids(self, supplier_id: str) -> list[str]:
        ...

    @abstractmethod
    def search_supplier_products(self, term: str, limit: int = 50) -> list[SupplierProduct]:
        """Active products whose name or SKU contains `term` (case-insensitive), with supplier name."""

    # Sync logs

    @abstractmethod
    def read_sync_logs(self, supplier_id: str, limit: int = 10) -> list[SyncLogEntry]:
        """Most recent first."""

    @abstractmethod
    def append_sync_log(self, entry: SyncLogEntry) -> None:
        ...

    # Customers

    @abstractmethod
    def customer_exists(self, customer_id: str) -> bool:
        ...

    @abstractmethod
    def read_customer_tier(self, customer_id: str) -> Optional[str]:
        ...

    @abstractmethod
    def write_customer_tier(self, customer_id: str, tier: str) -> None:
        ...

    @abstractmethod
    def read_customer_override(self, customer_id: str, supplier_product_id: str) -> Optional[CustomerProductOverride]:
        ...

    @abstractmethod
    def read_customer_overrides(self, customer_id: str) -> list[CustomerProductOverride]:
        ...

    @abstractmethod
    def upsert_customer_override(self, override: CustomerProductOverride) -> CustomerProductOverride:
        ...

    @abstractmethod
    def delete_customer_override(self, customer_id: str, supplier_product_id: str) -> bool:
        ...

    @abstractmethod
    def read_customer_agreement(self, customer_id: str, supplier_id: str) -> Optional[CustomerSupplierAgreement]:
        ...

    @abstractmethod
    def read_customer_agreements(self, customer_id: str) -> list[CustomerSupplierAgreement]:
        ...

    @abstractmethod
    def upsert_customer_agreement(self, agreement: CustomerSupplierAgreement) -> CustomerSupplierAgreement:
        ...

    @abstractmethod
    def delete_customer_agreement(self, customer_id: str, supplier_id: str) -> bool:
        ...

    # Offer history

    @abstractmethod
    def read_accepted_prices(self, supplier_product_id: str, limit: int = 20) -> list[float]:
        """Unit prices from accepted offers, most recent first."""

    @abstractmethod
    def record_accepted_price(self, supplier_product_id: str, unit_price: float,
                              accepted_at: Optional[datetime] = None) -> None:
        ...
