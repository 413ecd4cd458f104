"""
Real Payments HTTP Client.

Used when partner payment gateway credentials are configured
(INTEGRATIONS_MODE=real).
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import httpx

from policy_gateway.errors import GatewayUnavailable
from policy_gateway.integrations.contracts.interfaces import GatewayAdapter, GatewaySubmission
from policy_gateway.integrations.policy.response_wrappers import (
    IntegrationResponseError,
    normalize_gateway_submission,
)
from policy_gateway.payments.models import PaymentRecord

logger = logging.getLogger(__name__)


class RealPaymentsClient(GatewayAdapter):
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        initiate_path: Optional[str] = None,
        callback_url: Optional[str] = None,
        timeout_seconds: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("PARTNER_PAYMENT_API_URL", "")).rstrip("/")
        self.api_key = api_key or os.getenv("PARTNER_PAYMENT_API_KEY", "")
        self.initiate_path = initiate_path or os.getenv("PARTNER_PAYMENT_INITIATE_PATH", "/payments/initiate")
        self.callback_url = callback_url or os.getenv("PARTNER_PAYMENT_CALLBACK_URL", "")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def submit(self, record: PaymentRecord) -> GatewaySubmission:
        if not self.base_url:
            raise ValueError("PARTNER_PAYMENT_API_URL is not configured.")

        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload: Dict[str, Any] = {
            "reference": record.payment_reference,
            "policy_number": record.policy_number,
            "amount": str(record.amount),
            "currency": record.currency,
            "payment_method": record.payment_method,
            "callback_url": self.callback_url or None,
            "metadata": {
                "policy_holder_name": record.metadata.get("policy_holder_name"),
                "product_category": record.metadata.get("product_category"),
            },
        }

        url = f"{self.base_url}{self.initiate_path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            logger.error("Gateway request timed out: reference=%s url=%s", record.payment_reference, url)
            raise GatewayUnavailable(
                f"Payment gateway timed out for {record.payment_reference}",
                payment_reference=record.payment_reference,
            ) from exc
        except httpx.TransportError as exc:
            logger.error("Gateway transport error: reference=%s error=%s", record.payment_reference, exc)
            raise GatewayUnavailable(
                f"Payment gateway unreachable: {exc.__class__.__name__}",
                payment_reference=record.payment_reference,
            ) from exc

        if response.status_code >= 500:
            logger.error("Gateway server error %s for %s", response.status_code, record.payment_reference)
            raise GatewayUnavailable(
                f"Payment gateway returned HTTP {response.status_code}",
                payment_reference=record.payment_reference,
                http_status=response.status_code,
            )

        data = _json_body(response)
        if response.status_code >= 400:
            # business rejection: the gateway answered and said no
            return GatewaySubmission(
                accepted=False,
                message=str(data.get("message") or f"Gateway rejected request (HTTP {response.status_code})"),
                raw=data,
            )

        try:
            return normalize_gateway_submission(data)
        except IntegrationResponseError as exc:
            logger.error("Unreadable gateway response for %s: %s", record.payment_reference, exc)
            raise GatewayUnavailable(
                f"Unreadable gateway response for {record.payment_reference}",
                payment_reference=record.payment_reference,
            ) from exc


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError:
        return {"body": response.text}
    return data if isinstance(data, dict) else {"body": data}
