from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

from policy_gateway.api.dependencies import get_services
from policy_gateway.api.services import GatewayServices

api = APIRouter()
policies_api = api


def _policy_to_dict(p):
    return {
        "policy_number": p.policy_number,
        "policy_holder_name": p.holder_name,
        "currency": p.currency,
        "product_category": p.product_category,
        "insurance_type": p.insurance_type,
        "status": p.status,
        "premium": str(p.premium) if p.premium is not None else None,
        "sum_insured": str(p.sum_insured) if p.sum_insured is not None else None,
        "database": p.database,
        "cover_start_date": p.cover_start_date,
        "expiry_date": p.expiry_date,
    }


@api.get("/search", tags=["Policies"])
async def search_policies(
    policy_number: str = Query(..., min_length=1),
    currency: str = "USD",
    insurance_type: Optional[Literal["Life", "General"]] = None,
    services: GatewayServices = Depends(get_services),
):
    policies = await services.policy_source.search(policy_number, currency, insurance_type)
    return {"total_found": len(policies), "policies": [_policy_to_dict(p) for p in policies]}


@api.get("/{policy_number}", tags=["Policies"])
async def get_policy(policy_number: str, currency: str = "USD", services: GatewayServices = Depends(get_services)):
    return _policy_to_dict(await services.policy_source.get_details(policy_number, currency))
