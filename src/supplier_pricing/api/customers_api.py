"""
Customers API - FastAPI router for customer pricing management.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..engine.models import CustomerProductOverride, CustomerSupplierAgreement
from ..services.pricing_service import PricingService
from .state import get_service, unwrap

router = APIRouter(tags=["customers"])


# Pydantic models for API
class TierUpdate(BaseModel):
    """Request model for changing a customer's tier."""
    tier: str


class ProductPriceIn(BaseModel):
    """Request model for a customer product price."""
    supplier_product_id: str
    custom_cost_price: Optional[float] = None
    custom_list_price: Optional[float] = None
    custom_discount_percent: Optional[float] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    is_active: bool = True
    source: str = "manual"
    notes: Optional[str] = None


class SupplierAgreementIn(BaseModel):
    """Request model for a customer-supplier agreement."""
    supplier_id: str
    discount_percent: float = 0.0
    custom_margin_percent: Optional[float] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    is_active: bool = True
    price_list_code: Optional[str] = None
    notes: Optional[str] = None


# Endpoints

@router.get("/customers/{customer_id}/tier")
def get_customer_tier(customer_id: str, service: PricingService = Depends(get_service)):
    return unwrap(service.get_customer_tier(customer_id))


@router.put("/customers/{customer_id}/tier")
def set_customer_tier(customer_id: str, body: TierUpdate, service: PricingService = Depends(get_service)):
    return unwrap(service.set_customer_tier(customer_id, body.tier))


@router.get("/customers/{customer_id}/product-prices")
def list_product_prices(customer_id: str, service: PricingService = Depends(get_service)):
    return unwrap(service.list_customer_overrides(customer_id))


@router.put("/customers/{customer_id}/product-prices")
def save_product_price(customer_id: str, body: ProductPriceIn, service: PricingService = Depends(get_service)):
    override = CustomerProductOverride(customer_id=customer_id, **body.model_dump())
    return unwrap(service.upsert_customer_override(override))


@router.delete("/customers/{customer_id}/product-prices/{supplier_product_id}")
def delete_product_price(customer_id: str, supplier_product_id: str,
                         service: PricingService = Depends(get_service)):
    return unwrap(service.delete_customer_override(customer_id, supplier_product_id))


@router.get("/customers/{customer_id}/supplier-agreements")
def list_supplier_agreements(customer_id: str, service: PricingService = Depends(get_service)):
    return unwrap(service.list_customer_agreements(customer_id))


@router.put("/customers/{customer_id}/supplier-agreements")
def save_supplier_agreement(customer_id: str, body: SupplierAgreementIn,
                            service: PricingService = Depends(get_service)):
    agreement = CustomerSupplierAgreement(customer_id=customer_id, **body.model_dump())
    return unwrap(service.upsert_customer_agreement(agreement))


@router.delete("/customers/{customer_id}/supplier-agreements/{supplier_id}")
def delete_supplier_agreement(customer_id: str, supplier_id: str,
                              service: PricingService = Depends(get_service)):
    return unwrap(service.delete_customer_agreement(customer_id, supplier_id))


@router.get("/pricing/config")
def get_pricing_config(service: PricingService = Depends(get_service)):
    return unwrap(service.get_pricing_config())


@router.get("/pricing/volume-discount")
def get_volume_discount(quantity: int, service: PricingService = Depends(get_service)):
    return unwrap(service.get_volume_discount(quantity))
