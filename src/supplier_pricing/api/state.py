"""
Shared API state - the pricing service used by every router.
"""
from typing import Optional

from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder

from ..services.pricing_service import ActionResult, PricingService, build_service

STATUS_BY_KIND = {
    'validation': 400,
    'not_found': 404,
    'all_sources_failed': 503,
}

_service: Optional[PricingService] = None


def get_service() -> PricingService:
    """Get the process-wide pricing service, building it on first use."""
    global _service
    if _service is None:
        _service = build_service()
    return _service


def set_service(service: Optional[PricingService]):
    """Replace the process-wide service (None resets it)."""
    global _service
    _service = service


def unwrap(result: ActionResult):
    """JSON body for a successful result; HTTPException for a failed one."""
    if not result.success:
        status = STATUS_BY_KIND.get(result.error_kind, 500)
        raise HTTPException(status_code=status, detail=result.error)
    # Use jsonable_encoder to handle dataclasses and datetimes
    return jsonable_encoder(result.data)
