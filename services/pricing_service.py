"""
Subscription pricing per region.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from models.entities import PricingRegion, PricingUpdate
from services.base_service import BaseService
from storage.tables import PricingSettings
from utils.error_handling import ValidationError

PUBLIC_REGIONS = (PricingRegion.NIGERIA.value, PricingRegion.REST_OF_WORLD.value)
PRICING_CURRENCIES = ("USD", "NGN")

FALLBACK_PRICE = {"region": "default", "price": 9.99, "currency": "USD", "is_active": True}


def builtin_price(region: str) -> Dict[str, Any]:
    if region == PricingRegion.NIGERIA.value:
        return {"region": region, "price": 3000, "currency": "NGN", "is_active": True}
    return {"region": region, "price": 9.99, "currency": "USD", "is_active": True}


class PricingService(BaseService):
    name = "pricing"

    def _row(self, region: str) -> Optional[PricingSettings]:
        return self.session.scalars(select(PricingSettings).where(PricingSettings.region == region)).first()

    def get_price(self, region: Optional[str] = None) -> Dict[str, Any]:
        """
        Price for a region: its own row, else the default row, else the
        built-in price. A database failure falls back to 9.99 USD.
        """
        normalized = region if region in PUBLIC_REGIONS else PricingRegion.DEFAULT.value
        try:
            row = self._row(normalized)
            if row is None and normalized != PricingRegion.DEFAULT.value:
                row = self._row(PricingRegion.DEFAULT.value)
        except SQLAlchemyError as e:
            self.logger.error(f"Error fetching pricing: {e}")
            return dict(FALLBACK_PRICE)

        if row is None:
            return builtin_price(normalized)
        return {"region": row.region, "price": row.price, "currency": row.currency, "is_active": row.is_active}

    def list_settings(self) -> List[Dict[str, Any]]:
        rows = self.session.scalars(select(PricingSettings).order_by(PricingSettings.region))
        return [row.to_dict() for row in rows]

    def update_settings(self, request: PricingUpdate) -> Dict[str, Any]:
        valid_regions = [r.value for r in PricingRegion]
        if not request.region or request.region not in valid_regions:
            raise ValidationError("Invalid region. Must be: nigeria, rest-of-world, or default")
        if request.price is None or request.price < 0:
            raise ValidationError("Premium price must be a positive number")
        if request.currency not in PRICING_CURRENCIES:
            raise ValidationError("Currency must be USD or NGN")

        row = self._row(request.region)
        if row is None:
            row = PricingSettings(region=request.region)
            self.session.add(row)
        row.price = request.price
        row.currency = request.currency
        row.is_active = request.is_active if request.is_active is not None else True
        self.session.flush()

        self.logger.info(f"Pricing for {row.region} set to {row.price} {row.currency}")
        return row.to_dict()
