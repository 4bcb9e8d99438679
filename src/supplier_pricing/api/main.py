from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ..services.pricing_service import PricingService
from .customers_api import router as customers_router
from .state import get_service, unwrap

app = FastAPI(
    title="Supplier Pricing API",
    description="Supplier price resolution with cached fallback, comparison and margin tools",
    version="1.0.0"
)

# Enable CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include customer pricing management API
app.include_router(customers_router)


class ResolveRequest(BaseModel):
    customer_id: Optional[str] = None
    supplier_product_id: str
    quantity: int = 1
    margin_percent: Optional[float] = None
    order_total: Optional[float] = None


class MarginLineIn(BaseModel):
    description: Optional[str] = None
    cost: float
    sale: float


class MarginRequest(BaseModel):
    items: list[MarginLineIn]
    minimum_margin_percent: Optional[float] = None


class InvalidateRequest(BaseModel):
    supplier_product_ids: Optional[list[str]] = None
    supplier_id: Optional[str] = None


@app.get("/")
def root():
    return {"status": "online", "message": "Supplier Pricing API Active"}


@app.post("/prices/resolve")
def resolve_price(req: ResolveRequest, service: PricingService = Depends(get_service)):
    return unwrap(service.resolve_price(
        req.customer_id, req.supplier_product_id, req.quantity,
        margin_percent=req.margin_percent, order_total=req.order_total,
    ))


@app.get("/prices/compare")
def compare_prices(search: str, quantity: int = 1, margin: Optional[float] = None,
                   customer_id: Optional[str] = None, service: PricingService = Depends(get_service)):
    return unwrap(service.compare_prices(search, quantity, margin, customer_id))


@app.get("/prices/suggest")
def suggest_price(cost_price: float, target_margin: Optional[float] = None,
                  product_id: Optional[str] = None, service: PricingService = Depends(get_service)):
    return unwrap(service.suggest_price(cost_price, target_margin, product_id))


@app.post("/margins/analyze")
def analyze_margins(req: MarginRequest, service: PricingService = Depends(get_service)):
    items = [item.model_dump() for item in req.items]
    return unwrap(service.analyze_margins(items, req.minimum_margin_percent))


@app.get("/suppliers/health")
def all_supplier_health(service: PricingService = Depends(get_service)):
    return unwrap(service.get_supplier_health())


@app.get("/suppliers/{supplier_id}/health")
def supplier_health(supplier_id: str, service: PricingService = Depends(get_service)):
    return unwrap(service.get_supplier_health(supplier_id))


@app.get("/system/health")
def system_health(service: PricingService = Depends(get_service)):
    return unwrap(service.get_system_health())


@app.post("/cache/invalidate")
def invalidate_cache(req: InvalidateRequest, service: PricingService = Depends(get_service)):
    return unwrap(service.invalidate_cache(req.supplier_product_ids, req.supplier_id))
