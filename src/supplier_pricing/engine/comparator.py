"""
Supplier Comparator - Ranks the same item across suppliers by resolved price.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from .errors import NotFoundError, ValidationError
from .models import ComparisonResult, ComparisonRow, ResolvedPrice, SupplierProduct
from .resolver import PriceResolver
from .validation import validate_amount, validate_optional_id, validate_quantity

logger = logging.getLogger(__name__)


class SupplierComparator:
    """
    Resolves every supplier's offer for a search key and ranks them.

    Ranking: sale price ascending, then available before unavailable, then
    fresh before stale. A supplier whose resolution fails is left out of the
    ranking and listed under `excluded`.
    """

    def __init__(self, store, resolver: PriceResolver, max_parallel: int = 8, search_limit: int = 50):
        self.store = store
        self.resolver = resolver
        self.max_parallel = max_parallel
        self.search_limit = search_limit

    def compare(
        self,
        search_key: str,
        quantity: int = 1,
        target_margin: float = 25.0,
        customer_id: Optional[str] = None,
    ) -> ComparisonResult:
        search_key = (search_key or '').strip()
        if not search_key:
            raise ValidationError("Search term is required")
        quantity = validate_quantity(quantity)
        target_margin = validate_amount(target_margin, "Target margin")
        customer_id = validate_optional_id(customer_id, "customer id")
        if customer_id and not self.store.customer_exists(customer_id):
            raise NotFoundError(f"Customer {customer_id} not found")

        result = ComparisonResult(
            product_description=search_key,
            quantity=quantity,
            target_margin_percent=target_margin,
        )

        products = self.store.search_supplier_products(search_key, limit=self.search_limit)
        if not products:
            return result

        result.product_description = products[0].name or search_key
        rows = self._resolve_all(products, quantity, target_margin, customer_id, result)
        if not rows:
            return result

        rows.sort(key=lambda r: (r.unit_sale, not r.is_available, r.is_stale))

        cheapest_available = next((r for r in rows if r.is_available), None)
        if cheapest_available is not None:
            cheapest_available.is_cheapest = True
            cheapest_available.is_recommended = True

        max_total = max(r.total_sale for r in rows)
        for row in rows:
            row.savings_vs_most_expensive = round(max_total - row.total_sale, 2)

        cheapest, most_expensive = rows[0], rows[-1]
        result.suppliers = rows
        result.cheapest_supplier = cheapest.supplier_name
        result.most_expensive_supplier = most_expensive.supplier_name
        if len(rows) >= 2 and cheapest.unit_sale > 0:
            spread = (most_expensive.unit_sale - cheapest.unit_sale) / cheapest.unit_sale * 100
            result.price_spread_percent = round(spread, 1)
        return result

    def _resolve_all(self, products: list[SupplierProduct], quantity: int, target_margin: float,
                     customer_id: Optional[str], result: ComparisonResult) -> list[ComparisonRow]:
        workers = max(1, min(len(products), self.max_parallel))
        rows = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='compare') as pool:
            futures = [
                (product, pool.submit(self.resolver.resolve, customer_id, product.id, quantity, target_margin))
                for product in products
            ]
            for product, future in futures:
                try:
                    resolved = future.result()
                except Exception as exc:
                    logger.warning("Excluding %s/%s from comparison: %s",
                                   product.supplier_id, product.id, exc)
                    result.excluded.append({
                        'supplier_id': product.supplier_id,
                        'supplier_name': product.supplier_name,
                        'supplier_product_id': product.id,
                        'error': str(exc),
                    })
                    continue
                rows.append(self._row(product, resolved, quantity, target_margin))
        return rows

    @staticmethod
    def _row(product: SupplierProduct, resolved: ResolvedPrice, quantity: int, target_margin: float) -> ComparisonRow:
        unit_cost = resolved.effective_cost_price
        unit_sale = round(unit_cost * (1 + target_margin / 100.0), 2)
        total_cost = round(unit_cost * quantity, 2)
        total_sale = round(unit_sale * quantity, 2)
        margin = (total_sale - total_cost) / total_sale * 100 if total_sale > 0 else 0.0
        return ComparisonRow(
            supplier_id=product.supplier_id,
            supplier_name=product.supplier_name or product.supplier_id,
            supplier_product_id=product.id,
            sku=product.supplier_sku,
            product_name=product.name,
            unit_cost=unit_cost,
            unit_sale=unit_sale,
            total_cost=total_cost,
            total_sale=total_sale,
            margin_percent=round(margin, 1),
            is_available=resolved.is_available,
            is_stale=resolved.is_stale,
            data_source=resolved.data_source,
            price_source=resolved.price_source,
            lead_time_days=resolved.lead_time_days,
            cached_at=resolved.cached_at,
            warnings=list(resolved.warnings),
        )
