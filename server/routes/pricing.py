"""
Public subscription pricing.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from server.dependencies import service
from services.pricing_service import PricingService

router = APIRouter(prefix="/api/pricing", tags=["pricing"])

pricing_service = service(PricingService)


@router.get("")
def get_price(region: Optional[str] = Query(None), pricing: PricingService = Depends(pricing_service)):
    return pricing.get_price(region)
