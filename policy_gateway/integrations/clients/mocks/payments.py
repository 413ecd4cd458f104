"""
Payment gateway: MOCK client.

This is a mock implementation for development and testing.
It makes no network calls. Behaviour is configurable through the
constructor: acceptance rate, simulated latency, and simulated transport
failure. ``build_callback`` produces the settlement payload the real
gateway would POST back later.
"""

import asyncio
import logging
import random
import uuid
from typing import Any, Dict, Optional

from policy_gateway.errors import GatewayUnavailable
from policy_gateway.integrations.contracts.interfaces import GatewayAdapter, GatewaySubmission
from policy_gateway.payments.models import PaymentRecord

logger = logging.getLogger(__name__)


class MockGatewayAdapter(GatewayAdapter):
    """
    Parameters
    ----------
    acceptance_rate : float
        Probability (0.0 to 1.0) that a submission is accepted.
    latency_seconds : float
        Delay applied before answering; use it to exercise caller timeouts.
    unavailable : bool
        When True every submit raises GatewayUnavailable.
    """

    def __init__(
        self,
        acceptance_rate: float = 1.0,
        latency_seconds: float = 0.0,
        unavailable: bool = False,
    ) -> None:
        self._acceptance_rate = acceptance_rate
        self._latency_seconds = latency_seconds
        self.unavailable = unavailable

        # In-memory store (reset on restart)
        self.submissions: Dict[str, GatewaySubmission] = {}

        logger.info("[GATEWAY MOCK] Client initialised (acceptance_rate=%.0f%%)", acceptance_rate * 100)

    def _should_accept(self) -> bool:
        return random.random() < self._acceptance_rate

    def _new_gateway_ref(self) -> str:
        return f"GW-{uuid.uuid4().hex[:12].upper()}"

    async def submit(self, record: PaymentRecord) -> GatewaySubmission:
        if self._latency_seconds:
            logger.debug("[GATEWAY MOCK] Simulating %.2fs latency for %s", self._latency_seconds, record.payment_reference)
            await asyncio.sleep(self._latency_seconds)

        if self.unavailable:
            logger.warning("[GATEWAY MOCK] Simulated outage for %s", record.payment_reference)
            raise GatewayUnavailable("Mock gateway unavailable", payment_reference=record.payment_reference)

        logger.info(
            "[GATEWAY MOCK] Submitting payment ref=%s amount=%s %s method=%s",
            record.payment_reference,
            record.amount,
            record.currency,
            record.payment_method,
        )
        if self._should_accept():
            submission = GatewaySubmission(
                accepted=True,
                gateway_reference=self._new_gateway_ref(),
                message="Payment request accepted",
                raw={"status": "PENDING", "reference": record.payment_reference},
            )
        else:
            submission = GatewaySubmission(
                accepted=False,
                message="Payment request declined by gateway",
                raw={"status": "DECLINED", "reference": record.payment_reference},
            )
        self.submissions[record.payment_reference] = submission
        logger.info("[GATEWAY MOCK] Payment %s -> %s", record.payment_reference, "accepted" if submission.accepted else "declined")
        return submission

    def build_callback(self, payment_reference: str, status: str = "SUCCESS", **extra: Any) -> Dict[str, Any]:
        """Settlement payload as the partner gateway would deliver it."""
        submission: Optional[GatewaySubmission] = self.submissions.get(payment_reference)
        payload: Dict[str, Any] = {
            "reference": payment_reference,
            "status": status,
            "transaction_id": (submission.gateway_reference if submission else None) or self._new_gateway_ref(),
            "message": f"Payment {status.lower()}",
        }
        payload.update(extra)
        return payload
