"""
DataFrame-backed price store.

Every table is a pandas DataFrame held in memory and optionally loaded from and
saved to CSV files in a data directory (one file per table). All access goes
through a single re-entrant lock, so keyed upserts are atomic and the last
writer wins.
"""
import math
import threading
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from ..engine.models import (
    CachedPriceRecord,
    CustomerProductOverride,
    CustomerSupplierAgreement,
    Supplier,
    SupplierProduct,
    SyncLogEntry,
    fallback_priority_for,
    utcnow,
)
from .base import PriceStore


TABLE_COLUMNS = {
    'suppliers': ['id', 'name', 'code', 'is_active', 'api_base_url'],
    'supplier_products': [
        'id', 'supplier_id', 'supplier_sku', 'name', 'cost_price', 'list_price',
        'is_available', 'lead_time_days', 'last_synced_at', 'is_active',
    ],
    'price_cache': [
        'supplier_product_id', 'cached_cost_price', 'cached_list_price', 'cached_is_available',
        'cached_stock_quantity', 'cached_lead_time_days', 'cached_at', 'cache_source',
        'expires_at', 'is_stale', 'fallback_priority',
    ],
    'customers': ['id', 'name', 'pricing_tier'],
    'customer_product_prices': [
        'customer_id', 'supplier_product_id', 'custom_cost_price', 'custom_list_price',
        'custom_discount_percent', 'valid_from', 'valid_to', 'is_active', 'source', 'notes',
    ],
    'customer_supplier_prices': [
        'customer_id', 'supplier_id', 'discount_percent', 'custom_margin_percent',
        'valid_from', 'valid_to', 'is_active', 'price_list_code', 'notes',
    ],
    'sync_logs': ['supplier_id', 'status', 'started_at', 'duration_ms', 'error_message'],
    'accepted_prices': ['supplier_product_id', 'unit_price', 'accepted_at'],
}


# ---------------------------------------------------------------------------
# Cell conversion (CSV strings, NaN and native values all end up here)
# ---------------------------------------------------------------------------

def _clean(value):
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, str) and value.strip() == '':
        return None
    return value


def _to_float(value) -> Optional[float]:
    value = _clean(value)
    return None if value is None else float(value)


def _to_int(value) -> Optional[int]:
    value = _clean(value)
    return None if value is None else int(float(value))


def _to_bool(value, default: bool) -> bool:
    value = _clean(value)
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes', 't')
    return bool(value)


def _to_str(value, default=None) -> Optional[str]:
    value = _clean(value)
    return default if value is None else str(value)


def _to_datetime(value) -> Optional[datetime]:
    value = _clean(value)
    if value is None:
        return None
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    elif isinstance(value, str):
        value = pd.to_datetime(value, utc=True).to_pydatetime()
    elif isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _to_date(value) -> Optional[date]:
    value = _clean(value)
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return pd.to_datetime(str(value)).date()


# ---------------------------------------------------------------------------
# Row <-> model mapping
# ---------------------------------------------------------------------------

def _supplier_from_row(row: dict) -> Supplier:
    return Supplier(
        id=str(row['id']),
        name=_to_str(row.get('name'), ''),
        code=_to_str(row.get('code'), ''),
        is_active=_to_bool(row.get('is_active'), True),
        api_base_url=_to_str(row.get('api_base_url')),
    )


def _product_from_row(row: dict, supplier_name: str = '') -> SupplierProduct:
    return SupplierProduct(
        id=str(row['id']),
        supplier_id=str(row['supplier_id']),
        supplier_sku=_to_str(row.get('supplier_sku'), ''),
        name=_to_str(row.get('name'), ''),
        cost_price=_to_float(row.get('cost_price')),
        list_price=_to_float(row.get('list_price')),
        is_available=_to_bool(row.get('is_available'), True),
        lead_time_days=_to_int(row.get('lead_time_days')),
        last_synced_at=_to_datetime(row.get('last_synced_at')),
        is_active=_to_bool(row.get('is_active'), True),
        supplier_name=supplier_name,
    )


def _cache_from_row(row: dict) -> Optional[CachedPriceRecord]:
    """Rows without a usable cost read as absent, so lookups fall through to the catalog."""
    cost = _to_float(row.get('cached_cost_price'))
    if cost is None or not math.isfinite(cost) or cost < 0:
        return None
    source = _to_str(row.get('cache_source'), 'api')
    priority = _to_int(row.get('fallback_priority'))
    return CachedPriceRecord(
        supplier_product_id=str(row['supplier_product_id']),
        cached_cost_price=cost,
        cached_list_price=_to_float(row.get('cached_list_price')),
        cached_at=_to_datetime(row.get('cached_at')) or datetime.fromtimestamp(0, timezone.utc),
        cache_source=source,
        cached_is_available=_to_bool(row.get('cached_is_available'), True),
        cached_stock_quantity=_to_int(row.get('cached_stock_quantity')),
        cached_lead_time_days=_to_int(row.get('cached_lead_time_days')),
        is_stale=_to_bool(row.get('is_stale'), False),
        fallback_priority=priority if priority is not None else fallback_priority_for(source),
        expires_at=_to_datetime(row.get('expires_at')),
    )


def _cache_to_row(record: CachedPriceRecord) -> dict:
    return {
        'supplier_product_id': record.supplier_product_id,
        'cached_cost_price': record.cached_cost_price,
        'cached_list_price': record.cached_list_price,
        'cached_is_available': record.cached_is_available,
        'cached_stock_quantity': record.cached_stock_quantity,
        'cached_lead_time_days': record.cached_lead_time_days,
        'cached_at': record.cached_at,
        'cache_source': record.cache_source,
        'expires_at': record.expires_at,
        'is_stale': record.is_stale,
        'fallback_priority': record.fallback_priority,
    }


def _override_from_row(row: dict) -> CustomerProductOverride:
    return CustomerProductOverride(
        customer_id=str(row['customer_id']),
        supplier_product_id=str(row['supplier_product_id']),
        custom_cost_price=_to_float(row.get('custom_cost_price')),
        custom_list_price=_to_float(row.get('custom_list_price')),
        custom_discount_percent=_to_float(row.get('custom_discount_percent')),
        valid_from=_to_date(row.get('valid_from')),
        valid_to=_to_date(row.get('valid_to')),
        is_active=_to_bool(row.get('is_active'), True),
        source=_to_str(row.get('source'), 'manual'),
        notes=_to_str(row.get('notes')),
    )


def _agreement_from_row(row: dict) -> CustomerSupplierAgreement:
    return CustomerSupplierAgreement(
        customer_id=str(row['customer_id']),
        supplier_id=str(row['supplier_id']),
        discount_percent=_to_float(row.get('discount_percent')) or 0.0,
        custom_margin_percent=_to_float(row.get('custom_margin_percent')),
        valid_from=_to_date(row.get('valid_from')),
        valid_to=_to_date(row.get('valid_to')),
        is_active=_to_bool(row.get('is_active'), True),
        price_list_code=_to_str(row.get('price_list_code')),
        notes=_to_str(row.get('notes')),
    )


def _sync_log_from_row(row: dict) -> SyncLogEntry:
    return SyncLogEntry(
        supplier_id=str(row['supplier_id']),
        status=_to_str(row.get('status'), ''),
        started_at=_to_datetime(row.get('started_at')),
        duration_ms=_to_int(row.get('duration_ms')),
        error_message=_to_str(row.get('error_message')),
    )


class FramePriceStore(PriceStore):
    """
    In-memory price store over pandas DataFrames.

    Used directly in tests and small deployments; `from_csv_dir` / `save`
    persist each table as `<data_dir>/<table>.csv`.
    """

    def __init__(self, frames: Optional[dict[str, pd.DataFrame]] = None):
        self._lock = threading.RLock()
        self._frames: dict[str, pd.DataFrame] = {}
        frames = frames or {}
        for name, columns in TABLE_COLUMNS.items():
            df = frames.get(name)
            if df is None:
                df = pd.DataFrame(columns=columns, dtype=object)
            else:
                df = df.reindex(columns=columns).astype(object)
            self._frames[name] = df

    @classmethod
    def from_csv_dir(cls, data_dir: Path) -> 'FramePriceStore':
        """Load every table CSV that exists in data_dir; missing tables start empty."""
        frames = {}
        for name in TABLE_COLUMNS:
            path = Path(data_dir) / f'{name}.csv'
            if path.exists():
                df = pd.read_csv(path, dtype=str, keep_default_na=False)
                df.columns = [c.strip() for c in df.columns]
                frames[name] = df.where(df != '', None)
        return cls(frames)

    def save(self, data_dir: Path):
        """Write every table to data_dir as CSV."""
        data_dir = Path(data_dir)
        data_dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            for name, df in self._frames.items():
                df.to_csv(data_dir / f'{name}.csv', index=False)

    def table(self, name: str) -> pd.DataFrame:
        """Copy of a table, for reporting and tests."""
        with self._lock:
            return self._frames[name].copy()

    # ------------------------------------------------------------------
    # Frame helpers
    # ------------------------------------------------------------------

    def _match(self, name: str, **keys) -> pd.Series:
        df = self._frames[name]
        mask = pd.Series(True, index=df.index)
        for column, value in keys.items():
            mask &= df[column].astype(str) == str(value)
        return mask

    def _rows(self, name: str, **keys) -> list[dict]:
        with self._lock:
            df = self._frames[name]
            if keys:
                df = df[self._match(name, **keys)]
            return df.to_dict(orient='records')

    def _first(self, name: str, **keys) -> Optional[dict]:
        rows = self._rows(name, **keys)
        return rows[0] if rows else None

    def _upsert(self, name: str, keys: dict, row: dict):
        with self._lock:
            df = self._frames[name]
            remaining = df[~self._match(name, **keys)]
            new = pd.DataFrame([row], columns=TABLE_COLUMNS[name], dtype=object)
            if remaining.empty:
                self._frames[name] = new
            else:
                self._frames[name] = pd.concat([remaining, new], ignore_index=True)

    def _append(self, name: str, row: dict):
        with self._lock:
            df = self._frames[name]
            new = pd.DataFrame([row], columns=TABLE_COLUMNS[name], dtype=object)
            self._frames[name] = new if df.empty else pd.concat([df, new], ignore_index=True)

    def _delete(self, name: str, **keys) -> bool:
        with self._lock:
            mask = self._match(name, **keys)
            if not mask.any():
                return False
            self._frames[name] = self._frames[name][~mask].reset_index(drop=True)
            return True

    # ------------------------------------------------------------------
    # Seeding (owned by the sync pipeline / CRM in production)
    # ------------------------------------------------------------------

    def add_supplier(self, supplier: Supplier):
        self._upsert('suppliers', {'id': supplier.id}, {
            'id': supplier.id,
            'name': supplier.name,
            'code': supplier.code,
            'is_active': supplier.is_active,
            'api_base_url': supplier.api_base_url,
        })

    def add_supplier_product(self, product: SupplierProduct):
        self._upsert('supplier_products', {'id': product.id}, {
            'id': product.id,
            'supplier_id': product.supplier_id,
            'supplier_sku': product.supplier_sku,
            'name': product.name,
            'cost_price': product.cost_price,
            'list_price': product.list_price,
            'is_available': product.is_available,
            'lead_time_days': product.lead_time_days,
            'last_synced_at': product.last_synced_at,
            'is_active': product.is_active,
        })

    def add_customer(self, customer_id: str, name: str = '', pricing_tier: Optional[str] = None):
        self._upsert('customers', {'id': customer_id}, {
            'id': customer_id, 'name': name, 'pricing_tier': pricing_tier,
        })

    # ------------------------------------------------------------------
    # Price cache
    # ------------------------------------------------------------------

    def read_cached_price(self, supplier_product_id: str) -> Optional[CachedPriceRecord]:
        row = self._first('price_cache', supplier_product_id=supplier_product_id)
        return _cache_from_row(row) if row else None

    def read_cached_prices(self, supplier_product_ids: Iterable[str]) -> dict[str, CachedPriceRecord]:
        wanted = {str(i) for i in supplier_product_ids}
        with self._lock:
            df = self._frames['price_cache']
            df = df[df['supplier_product_id'].astype(str).isin(wanted)]
            rows = df.to_dict(orient='records')
        records = (_cache_from_row(row) for row in rows)
        return {record.supplier_product_id: record for record in records if record is not None}

    def read_cached_prices_for_supplier(self, supplier_id: str) -> list[CachedPriceRecord]:
        product_ids = self.list_supplier_product_ids(supplier_id)
        return list(self.read_cached_prices(product_ids).values())

    def upsert_cached_price(self, record: CachedPriceRecord) -> CachedPriceRecord:
        self._upsert('price_cache', {'supplier_product_id': record.supplier_product_id}, _cache_to_row(record))
        return record

    def mark_stale(self, supplier_product_ids: Optional[Iterable[str]] = None,
                   supplier_id: Optional[str] = None) -> int:
        if supplier_product_ids is None and supplier_id is None:
            raise ValueError("mark_stale needs product ids or a supplier id")
        with self._lock:
            ids = set()
            if supplier_product_ids is not None:
                ids.update(str(i) for i in supplier_product_ids)
            if supplier_id is not None:
                ids.update(self.list_supplier_product_ids(supplier_id))
            df = self._frames['price_cache']
            mask = df['supplier_product_id'].astype(str).isin(ids)
            df.loc[mask, 'is_stale'] = True
            return int(mask.sum())

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def read_supplier(self, supplier_id: str) -> Optional[Supplier]:
        row = self._first('suppliers', id=supplier_id)
        return _supplier_from_row(row) if row else None

    def list_suppliers(self, active_only: bool = True) -> list[Supplier]:
        suppliers = [_supplier_from_row(row) for row in self._rows('suppliers')]
        if active_only:
            suppliers = [s for s in suppliers if s.is_active]
        return suppliers

    def _supplier_names(self) -> dict[str, str]:
        return {s.id: s.name for s in self.list_suppliers(active_only=False)}

    def read_supplier_product(self, supplier_product_id: str) -> Optional[SupplierProduct]:
        row = self._first('supplier_products', id=supplier_product_id)
        if not row:
            return None
        return _product_from_row(row, self._supplier_names().get(str(row['supplier_id']), ''))

    def read_supplier_products(self, supplier_product_ids: Iterable[str]) -> dict[str, SupplierProduct]:
        wanted = {str(i) for i in supplier_product_ids}
        names = self._supplier_names()
        with self._lock:
            df = self._frames['supplier_products']
            rows = df[df['id'].astype(str).isin(wanted)].to_dict(orient='records')
        return {
            str(row['id']): _product_from_row(row, names.get(str(row['supplier_id']), ''))
            for row in rows
        }

    def list_supplier_product_ids(self, supplier_id: str) -> list[str]:
        return [str(row['id']) for row in self._rows('supplier_products', supplier_id=supplier_id)]

    def search_supplier_products(self, term: str, limit: int = 50) -> list[SupplierProduct]:
        names = self._supplier_names()
        with self._lock:
            df = self._frames['supplier_products']
            if df.empty:
                return []
            active = df['is_active'].map(lambda v: _to_bool(v, True)).astype(bool)
            text = (
                df['name'].fillna('').astype(str).str.contains(term, case=False, regex=False)
                | df['supplier_sku'].fillna('').astype(str).str.contains(term, case=False, regex=False)
            )
            # Inner join on suppliers: products of unknown suppliers are skipped
            known = df['supplier_id'].astype(str).isin(names.keys())
            rows = df[active & text & known].head(limit).to_dict(orient='records')
        return [_product_from_row(row, names[str(row['supplier_id'])]) for row in rows]

    # ------------------------------------------------------------------
    # Sync logs
    # ------------------------------------------------------------------

    def read_sync_logs(self, supplier_id: str, limit: int = 10) -> list[SyncLogEntry]:
        entries = [_sync_log_from_row(row) for row in self._rows('sync_logs', supplier_id=supplier_id)]
        entries.sort(key=lambda e: e.started_at, reverse=True)
        return entries[:limit]

    def append_sync_log(self, entry: SyncLogEntry) -> None:
        self._append('sync_logs', {
            'supplier_id': entry.supplier_id,
            'status': entry.status,
            'started_at': entry.started_at,
            'duration_ms': entry.duration_ms,
            'error_message': entry.error_message,
        })

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def customer_exists(self, customer_id: str) -> bool:
        return self._first('customers', id=customer_id) is not None

    def read_customer_tier(self, customer_id: str) -> Optional[str]:
        row = self._first('customers', id=customer_id)
        return _to_str(row.get('pricing_tier')) if row else None

    def write_customer_tier(self, customer_id: str, tier: str) -> None:
        with self._lock:
            row = self._first('customers', id=customer_id) or {'id': customer_id, 'name': ''}
            row['pricing_tier'] = tier
            self._upsert('customers', {'id': customer_id}, row)

    def read_customer_override(self, customer_id: str, supplier_product_id: str) -> Optional[CustomerProductOverride]:
        row = self._first('customer_product_prices', customer_id=customer_id,
                          supplier_product_id=supplier_product_id)
        return _override_from_row(row) if row else None

    def read_customer_overrides(self, customer_id: str) -> list[CustomerProductOverride]:
        return [_override_from_row(row) for row in self._rows('customer_product_prices', customer_id=customer_id)]

    def upsert_customer_override(self, override: CustomerProductOverride) -> CustomerProductOverride:
        keys = {'customer_id': override.customer_id, 'supplier_product_id': override.supplier_product_id}
        self._upsert('customer_product_prices', keys, {
            **keys,
            'custom_cost_price': override.custom_cost_price,
            'custom_list_price': override.custom_list_price,
            'custom_discount_percent': override.custom_discount_percent,
            'valid_from': override.valid_from,
            'valid_to': override.valid_to,
            'is_active': override.is_active,
            'source': override.source,
            'notes': override.notes,
        })
        return override

    def delete_customer_override(self, customer_id: str, supplier_product_id: str) -> bool:
        return self._delete('customer_product_prices', customer_id=customer_id,
                            supplier_product_id=supplier_product_id)

    def read_customer_agreement(self, customer_id: str, supplier_id: str) -> Optional[CustomerSupplierAgreement]:
        row = self._first('customer_supplier_prices', customer_id=customer_id, supplier_id=supplier_id)
        return _agreement_from_row(row) if row else None

    def read_customer_agreements(self, customer_id: str) -> list[CustomerSupplierAgreement]:
        return [_agreement_from_row(row) for row in self._rows('customer_supplier_prices', customer_id=customer_id)]

    def upsert_customer_agreement(self, agreement: CustomerSupplierAgreement) -> CustomerSupplierAgreement:
        keys = {'customer_id': agreement.customer_id, 'supplier_id': agreement.supplier_id}
        self._upsert('customer_supplier_prices', keys, {
            **keys,
            'discount_percent': agreement.discount_percent,
            'custom_margin_percent': agreement.custom_margin_percent,
            'valid_from': agreement.valid_from,
            'valid_to': agreement.valid_to,
            'is_active': agreement.is_active,
            'price_list_code': agreement.price_list_code,
            'notes': agreement.notes,
        })
        return agreement

    def delete_customer_agreement(self, customer_id: str, supplier_id: str) -> bool:
        return self._delete('customer_supplier_prices', customer_id=customer_id, supplier_id=supplier_id)

    # ------------------------------------------------------------------
    # Offer history
    # ------------------------------------------------------------------

    def read_accepted_prices(self, supplier_product_id: str, limit: int = 20) -> list[float]:
        rows = self._rows('accepted_prices', supplier_product_id=supplier_product_id)
        rows.sort(key=lambda r: _to_datetime(r.get('accepted_at')) or datetime.fromtimestamp(0, timezone.utc),
                  reverse=True)
        prices = [_to_float(r.get('unit_price')) for r in rows]
        return [p for p in prices if p is not None and p > 0][:limit]

    def record_accepted_price(self, supplier_product_id: str, unit_price: float,
                              accepted_at: Optional[datetime] = None) -> None:
        self._append('accepted_prices', {
            'supplier_product_id': supplier_product_id,
            'unit_price': unit_price,
            'accepted_at': accepted_at or utcnow(),
        })
