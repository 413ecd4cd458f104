from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from policy_gateway.integrations.contracts.interfaces import GatewaySubmission
from policy_gateway.integrations.contracts.payments import PaymentCallbackEvent
from policy_gateway.payments.models import PaymentStatus


class IntegrationResponseError(ValueError):
    def __init__(self, message: str, *, payload: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.payload = payload or {}


class GatewaySubmitResponseModel(BaseModel):
    accepted: bool
    gateway_reference: Optional[str] = None
    message: str = ""
    raw: Dict[str, Any] = Field(default_factory=dict)


class CallbackPayloadModel(BaseModel):
    payment_reference: str
    status: PaymentStatus
    gateway_reference: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    message: str = ""
    raw: Dict[str, Any] = Field(default_factory=dict)


_STATUS_MAPPING = {
    "PENDING": PaymentStatus.PENDING,
    "PROCESSING": PaymentStatus.PENDING,
    "ACCEPTED": PaymentStatus.PENDING,
    "SUCCESS": PaymentStatus.SUCCESS,
    "SUCCESSFUL": PaymentStatus.SUCCESS,
    "COMPLETED": PaymentStatus.SUCCESS,
    "PAID": PaymentStatus.SUCCESS,
    "CONFIRMED": PaymentStatus.SUCCESS,
    "FAILED": PaymentStatus.FAILED,
    "ERROR": PaymentStatus.FAILED,
    "DECLINED": PaymentStatus.FAILED,
    "REJECTED": PaymentStatus.FAILED,
    "CANCELLED": PaymentStatus.CANCELLED,
    "CANCELED": PaymentStatus.CANCELLED,
}

_REJECTED_SUBMIT_STATUSES = {"FAILED", "ERROR", "DECLINED", "REJECTED"}
_CALLBACK_REFERENCE_KEYS = ("payment_reference", "reference", "our_reference", "paymentReference")


def normalize_gateway_submission(raw: Dict[str, Any]) -> GatewaySubmission:
    """Map a partner's initiate-payment response onto GatewaySubmission."""
    accepted = raw.get("accepted")
    if accepted is None:
        status = str(_first_non_empty(raw, "status", "payment_status", default="PENDING")).strip().upper()
        accepted = status not in _REJECTED_SUBMIT_STATUSES
    gateway_reference = _first_non_empty(
        raw, "gateway_reference", "provider_reference", "transaction_id", "providerRef", default=""
    )
    message = str(_first_non_empty(raw, "message", "detail", default="Payment request accepted by gateway"))

    model = _build_model(
        GatewaySubmitResponseModel,
        {
            "accepted": bool(accepted),
            "gateway_reference": str(gateway_reference) or None,
            "message": message,
            "raw": raw,
        },
        raw,
    )
    return GatewaySubmission(
        accepted=model.accepted,
        gateway_reference=model.gateway_reference,
        message=model.message,
        raw=model.raw,
    )


def extract_callback_reference(raw: Dict[str, Any]) -> str:
    return str(_first_non_empty(raw, *_CALLBACK_REFERENCE_KEYS))


def normalize_callback_payload(
    raw: Dict[str, Any],
    *,
    fallback_reference: Optional[str] = None,
) -> PaymentCallbackEvent:
    reference = str(
        _first_non_empty(raw, *_CALLBACK_REFERENCE_KEYS, default=fallback_reference)
    )
    status = _map_payment_status(_first_non_empty(raw, "status", "payment_status", "paymentStatus"), raw)
    gateway_reference = _first_non_empty(
        raw, "gateway_reference", "transaction_id", "provider_reference", "gatewayReference", default=""
    )
    amount = raw.get("amount")
    currency = raw.get("currency")
    message = str(_first_non_empty(raw, "message", "notes", "detail", default=""))

    model = _build_model(
        CallbackPayloadModel,
        {
            "payment_reference": reference,
            "status": status,
            "gateway_reference": str(gateway_reference) or None,
            "amount": _coerce_amount(amount, raw) if amount is not None else None,
            "currency": str(currency).upper() if currency else None,
            "message": message,
            "raw": raw,
        },
        raw,
    )
    return PaymentCallbackEvent(
        payment_reference=model.payment_reference,
        status=model.status,
        gateway_reference=model.gateway_reference,
        amount=model.amount,
        currency=model.currency,
        message=model.message,
        raw=model.raw,
    )


def _first_non_empty(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    if default is not None:
        return default
    raise IntegrationResponseError(f"Missing required field. Checked keys: {', '.join(keys)}", payload=data)


def _coerce_amount(value: Any, raw: Dict[str, Any]) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise IntegrationResponseError(f"Invalid amount: {value!r}", payload=raw) from exc
    if amount <= 0:
        raise IntegrationResponseError(f"Amount must be > 0; got {amount}.", payload=raw)
    return amount


def _map_payment_status(raw_status: Any, raw: Dict[str, Any]) -> PaymentStatus:
    value = str(raw_status or "").strip().upper()
    if value not in _STATUS_MAPPING:
        raise IntegrationResponseError(f"Unsupported payment status '{value}'.", payload=raw)
    return _STATUS_MAPPING[value]


def _build_model(model_type, payload: Dict[str, Any], raw: Dict[str, Any]):
    try:
        return model_type(**payload)
    except ValidationError as exc:
        raise IntegrationResponseError(f"Response validation failed: {exc}", payload=raw) from exc
