"""
Live supplier price clients.

A client answers "what does this supplier charge right now" for one product.
Clients receive the CallContext of the call so they can bound their I/O by the
remaining time and stop once the caller has given up.
"""
import math
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from ..engine.errors import UpstreamError, UpstreamTimeoutError
from ..engine.models import CallContext, LivePrice, SupplierProduct


class LivePriceClient(ABC):

    @abstractmethod
    def fetch_price(self, product: SupplierProduct, context: CallContext) -> LivePrice:
        """Fetch the current price; may raise UpstreamError or block until the deadline."""


class HttpSupplierPriceClient(LivePriceClient):
    """
    JSON price endpoint client: GET {base}/products/{sku}/price.

    Accepts either snake_case or camelCase fields in the response body.
    Supplier-specific authentication is reduced to an optional bearer token.
    """

    def __init__(self, api_base_url: str, access_token: Optional[str] = None,
                 transport: Optional[httpx.BaseTransport] = None) -> None:
        self._api_base_url = api_base_url.rstrip("/")
        self._access_token = access_token
        self._transport = transport

    def fetch_price(self, product: SupplierProduct, context: CallContext) -> LivePrice:
        if context.cancelled:
            raise UpstreamError("Call cancelled before it started")
        remaining = context.remaining()
        if remaining <= 0:
            raise UpstreamTimeoutError("No time left for live call")

        headers: dict[str, str] = {"Accept": "application/json"}
        token = context.account.get("access_token") or self._access_token
        if token:
            headers["Authorization"] = f"Bearer {token}"

        url = f"{self._api_base_url}/products/{product.supplier_sku}/price"
        timeout = httpx.Timeout(remaining, connect=min(remaining, 5.0))
        try:
            with httpx.Client(timeout=timeout, transport=self._transport) as client:
                resp = client.get(url, headers=headers)
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError(f"Supplier API timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Supplier API request failed: {exc}") from exc

        if resp.status_code != 200:
            raise UpstreamError(f"Supplier API returned {resp.status_code} for {product.supplier_sku}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamError("Supplier API returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise UpstreamError("Supplier API returned an unexpected payload")

        return parse_live_price(data)


def _pick(data: dict[str, Any], *keys: str):
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def parse_live_price(data: dict[str, Any]) -> LivePrice:
    cost = _pick(data, "cost_price", "costPrice", "cost")
    if cost is None:
        raise UpstreamError("Supplier API response has no cost price")
    try:
        list_price = _pick(data, "list_price", "listPrice", "list")
        stock = _pick(data, "stock_quantity", "stockQuantity", "stock")
        lead = _pick(data, "lead_time_days", "leadTimeDays")
        available = _pick(data, "is_available", "isAvailable", "available")
        cost_price = float(cost)
        list_value = float(list_price) if list_price is not None else None
        price = LivePrice(
            cost_price=cost_price,
            list_price=list_value,
            is_available=bool(available) if available is not None else True,
            stock_quantity=int(stock) if stock is not None else None,
            lead_time_days=int(lead) if lead is not None else None,
        )
    except (TypeError, ValueError, OverflowError) as exc:
        raise UpstreamError(f"Supplier API response is malformed: {exc}") from exc

    if not math.isfinite(cost_price) or cost_price < 0:
        raise UpstreamError(f"Supplier API returned an invalid cost price: {cost!r}")
    if list_value is not None and (not math.isfinite(list_value) or list_value < 0):
        raise UpstreamError(f"Supplier API returned an invalid list price: {list_price!r}")
    return price


class LiveClientRegistry:
    """Maps supplier ids to their live client and account context."""

    def __init__(self):
        self._clients: dict[str, tuple[LivePriceClient, dict]] = {}

    def register(self, supplier_id: str, client: LivePriceClient, account: Optional[dict] = None):
        self._clients[supplier_id] = (client, account or {})

    def get(self, supplier_id: str) -> Optional[LivePriceClient]:
        entry = self._clients.get(supplier_id)
        return entry[0] if entry else None

    def account_for(self, supplier_id: str) -> dict:
        entry = self._clients.get(supplier_id)
        return dict(entry[1]) if entry else {}

    def __contains__(self, supplier_id: str) -> bool:
        return supplier_id in self._clients

    @classmethod
    def from_suppliers(cls, suppliers) -> 'LiveClientRegistry':
        """Register an HTTP client for every supplier with an api_base_url."""
        registry = cls()
        for supplier in suppliers:
            if supplier.api_base_url:
                registry.register(supplier.id, HttpSupplierPriceClient(supplier.api_base_url))
        return registry
