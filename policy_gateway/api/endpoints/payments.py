from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field

from policy_gateway.api.dependencies import get_services
from policy_gateway.api.services import GatewayServices
from policy_gateway.errors import InvalidCallbackPayload
from policy_gateway.integrations.policy.response_wrappers import IntegrationResponseError, extract_callback_reference

api = APIRouter()
payments_api = api


class PaymentInitiateRequest(BaseModel):
    policy_identifier: str = Field(..., description="Policy number (or alternative identifier)")
    currency: Optional[str] = Field(default=None, description="USD or ZIG; selects the policy database")
    payment_method: str = "ICECASH"
    coverage_inputs: Dict[str, Any] = Field(default_factory=dict, description="Only used when the policy has no fixed premium")
    term_months: Optional[int] = Field(default=None, ge=1)
    payment_reference: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CancelRequest(BaseModel):
    reason: str = "Cancelled by request"


@api.post("/initiate", tags=["Payments"])
async def initiate_payment(request: PaymentInitiateRequest, services: GatewayServices = Depends(get_services)):
    record = await services.orchestrator.initiate(
        request.policy_identifier,
        request.coverage_inputs,
        request.payment_method,
        currency=request.currency,
        payment_reference=request.payment_reference,
        term_months=request.term_months,
        metadata=request.metadata,
    )
    return record.to_dict()


@api.post("/callback", tags=["Payments"])
async def payment_callback(payload: Dict[str, Any] = Body(...), services: GatewayServices = Depends(get_services)):
    try:
        reference = extract_callback_reference(payload)
    except IntegrationResponseError as exc:
        raise InvalidCallbackPayload(str(exc)) from exc
    record = await services.orchestrator.apply_callback(reference, payload)
    return record.to_dict()


@api.post("/callback/{payment_reference}", tags=["Payments"])
async def payment_callback_for_reference(
    payment_reference: str,
    payload: Dict[str, Any] = Body(...),
    services: GatewayServices = Depends(get_services),
):
    record = await services.orchestrator.apply_callback(payment_reference, payload)
    return record.to_dict()


@api.get("/stale", tags=["Payments"])
async def stale_payments(
    older_than_minutes: Optional[int] = Query(default=None, ge=1),
    services: GatewayServices = Depends(get_services),
):
    minutes = older_than_minutes or services.config.payments.stale_after_minutes
    records = await services.ledger.stale(timedelta(minutes=minutes))
    return {"older_than_minutes": minutes, "payments": [r.to_dict() for r in records]}


@api.get("/statistics", tags=["Payments"])
async def payment_statistics(currency: Optional[str] = None, services: GatewayServices = Depends(get_services)):
    rows = await services.ledger.statistics(currency)
    return {"statistics": [{**row, "total_amount": str(row["total_amount"])} for row in rows]}


@api.get("/policy/{policy_number}/history", tags=["Payments"])
async def payment_history(
    policy_number: str,
    include_status_log: bool = False,
    services: GatewayServices = Depends(get_services),
):
    records = await services.ledger.history(policy_number, include_status_log=include_status_log)
    return {"policy_number": policy_number, "payments": [r.to_dict() for r in records]}


@api.get("/{payment_reference}", tags=["Payments"])
async def get_payment(payment_reference: str, services: GatewayServices = Depends(get_services)):
    record = await services.ledger.get_by_reference(payment_reference)
    return record.to_dict()


@api.get("/{payment_reference}/status-log", tags=["Payments"])
async def get_status_log(payment_reference: str, services: GatewayServices = Depends(get_services)):
    entries = await services.ledger.status_log(payment_reference)
    return {"payment_reference": payment_reference, "entries": [e.to_dict() for e in entries]}


@api.post("/{payment_reference}/cancel", tags=["Payments"])
async def cancel_payment(
    payment_reference: str,
    request: Optional[CancelRequest] = None,
    services: GatewayServices = Depends(get_services),
):
    record = await services.orchestrator.cancel(payment_reference, (request or CancelRequest()).reason)
    return record.to_dict()
