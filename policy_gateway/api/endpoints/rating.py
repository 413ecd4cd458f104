from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from policy_gateway.api.dependencies import get_services
from policy_gateway.api.services import GatewayServices
from policy_gateway.rating.models import to_money

api = APIRouter()
rating_api = api


class PremiumRequest(BaseModel):
    product_id: str
    package_id: str
    coverage_inputs: Dict[str, Any] = Field(default_factory=dict)
    term_months: int = Field(default=1, ge=1)
    enforce_limits: Optional[bool] = None


@api.post("/premium", tags=["Rating"])
async def calculate_premium(request: PremiumRequest, services: GatewayServices = Depends(get_services)):
    breakdown = await services.rating_engine.calculate_premium(
        request.product_id,
        request.package_id,
        request.coverage_inputs,
        request.term_months,
        enforce_limits=request.enforce_limits,
    )
    return breakdown.to_dict()


@api.get("/products/{product_id}/packages", tags=["Rating"])
async def list_packages(product_id: str, services: GatewayServices = Depends(get_services)):
    snapshot = await services.rate_table.snapshot()
    product = snapshot.get_product(product_id)
    return {
        "product_id": product.product_id,
        "name": product.name,
        "rating_strategy": product.rating_strategy,
        "packages": [
            {
                "package_id": p.package_id,
                "name": p.name,
                "rate": str(p.rate),
                "currency": p.currency,
                "minimum_premium": str(to_money(p.minimum_premium)) if p.minimum_premium is not None else None,
                "benefits": [
                    {"type": b.type, "value": b.value, "unit": b.unit}
                    for b in snapshot.get_benefits(p.package_id)
                ],
            }
            for p in snapshot.list_packages(product_id)
        ],
    }


@api.post("/cache/invalidate", tags=["Rating"])
async def invalidate_rate_cache(services: GatewayServices = Depends(get_services)):
    services.rate_table.invalidate()
    version = await services.version_source.bump_version()
    return {"invalidated": True, "version": version}
