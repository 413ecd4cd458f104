"""
PaymentOrchestrator: the only component that drives a payment end-to-end.

initiate:  policy lookup -> premium (fixed on policy, or rated) -> ledger
           INITIATED -> gateway submit -> PENDING / FAILED
callback:  normalise payload -> SUCCESS / FAILED on the ledger; duplicate
           deliveries for terminal payments are no-ops.

A gateway timeout or transport failure never marks a payment FAILED: the
record stays INITIATED for the reconciliation job and the transient error
is surfaced to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple

from policy_gateway.errors import (
    GatewayUnavailable,
    InvalidCallbackPayload,
    InvalidTransition,
    PolicyNotRateable,
    UnknownReference,
)
from policy_gateway.integrations.contracts.interfaces import (
    GatewayAdapter,
    GatewaySubmission,
    PolicyRecord,
    PolicySource,
)
from policy_gateway.integrations.policy.response_wrappers import (
    IntegrationResponseError,
    normalize_callback_payload,
)
from policy_gateway.payments.ledger import PaymentLedger
from policy_gateway.payments.models import (
    PaymentRecord,
    PaymentStatus,
    generate_payment_reference,
)
from policy_gateway.rating.engine import RatingEngine
from policy_gateway.rating.models import PremiumBreakdown, to_money

logger = logging.getLogger(__name__)


class PaymentOrchestrator:
    def __init__(
        self,
        *,
        policy_source: PolicySource,
        rating_engine: RatingEngine,
        ledger: PaymentLedger,
        gateway: GatewayAdapter,
        gateway_timeout_seconds: float = 30.0,
        default_currency: str = "USD",
        reference_prefix: str = "POL",
        callback_attempts: int = 3,
    ) -> None:
        self.policy_source = policy_source
        self.rating_engine = rating_engine
        self.ledger = ledger
        self.gateway = gateway
        self.gateway_timeout_seconds = gateway_timeout_seconds
        self.default_currency = default_currency
        self.reference_prefix = reference_prefix
        self.callback_attempts = max(1, callback_attempts)

    # ------------------------------------------------------------------ #
    # Initiation
    # ------------------------------------------------------------------ #
    async def initiate(
        self,
        policy_identifier: str,
        coverage_inputs: Optional[Mapping[str, Any]] = None,
        payment_method: str = "ICECASH",
        *,
        currency: Optional[str] = None,
        payment_reference: Optional[str] = None,
        term_months: Optional[int] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> PaymentRecord:
        currency = (currency or self.default_currency).upper()
        policy = await self.policy_source.get_details(policy_identifier, currency)
        amount, breakdown = await self._resolve_amount(policy, coverage_inputs, term_months)

        record_metadata: Dict[str, Any] = {
            "policy_holder_name": policy.holder_name,
            "product_category": policy.product_category,
            "insurance_type": policy.insurance_type,
            "database_source": policy.database,
            "premium_source": "rated" if breakdown else "policy",
            **dict(metadata or {}),
        }
        if breakdown is not None:
            record_metadata["premium_breakdown"] = breakdown.to_dict()

        record = await self.ledger.create_payment(
            PaymentRecord(
                payment_reference=payment_reference
                or generate_payment_reference(policy.currency or currency, self.reference_prefix),
                policy_number=policy.policy_number,
                amount=amount,
                currency=policy.currency or currency,
                payment_method=payment_method,
                metadata=record_metadata,
            )
        )
        submission = await self._submit(record)
        return await self._apply_submission(record, submission)

    async def _resolve_amount(
        self,
        policy: PolicyRecord,
        coverage_inputs: Optional[Mapping[str, Any]],
        term_months: Optional[int],
    ) -> Tuple[Decimal, Optional[PremiumBreakdown]]:
        if policy.has_fixed_premium:
            return to_money(policy.premium), None

        if not policy.product_id or not policy.package_id:
            raise PolicyNotRateable(
                f"Policy {policy.policy_number} has no fixed premium and no product/package to rate",
                policy_number=policy.policy_number,
            )

        breakdown = await self.rating_engine.calculate_premium(
            policy.product_id,
            policy.package_id,
            coverage_inputs,
            term_months or policy.term_months or 1,
        )
        amount = to_money(breakdown.total_premium)
        if amount <= 0:
            raise PolicyNotRateable(
                f"Rated premium for policy {policy.policy_number} is not payable: {amount}",
                policy_number=policy.policy_number,
            )
        return amount, breakdown

    async def _submit(self, record: PaymentRecord) -> GatewaySubmission:
        reference = record.payment_reference
        try:
            return await asyncio.wait_for(self.gateway.submit(record), timeout=self.gateway_timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.error(
                "Gateway submit timed out after %.1fs; payment %s left INITIATED",
                self.gateway_timeout_seconds,
                reference,
            )
            raise GatewayUnavailable(
                f"Payment gateway timed out for {reference}",
                payment_reference=reference,
            ) from exc
        except GatewayUnavailable as exc:
            logger.error("Gateway unavailable: %s; payment %s left INITIATED", exc.message, reference)
            raise GatewayUnavailable(exc.message, payment_reference=reference) from exc
        except OSError as exc:
            logger.error("Gateway transport error: %s; payment %s left INITIATED", exc, reference)
            raise GatewayUnavailable(
                f"Payment gateway unreachable for {reference}: {exc}",
                payment_reference=reference,
            ) from exc

    async def _apply_submission(self, record: PaymentRecord, submission: GatewaySubmission) -> PaymentRecord:
        if submission.accepted:
            target = PaymentStatus.PENDING
            reason = submission.message or "Gateway accepted payment request"
        else:
            target = PaymentStatus.FAILED
            reason = submission.message or "Gateway rejected payment request"

        try:
            return await self.ledger.transition(
                record.payment_reference,
                target,
                reason,
                {"gateway_response": submission.raw},
                gateway_reference=submission.gateway_reference,
                changed_by="gateway",
            )
        except InvalidTransition:
            # a callback overtook the submit response
            logger.info("Payment %s already moved on before submit response was applied", record.payment_reference)
            return await self.ledger.get_by_reference(record.payment_reference)

    # ------------------------------------------------------------------ #
    # Callbacks
    # ------------------------------------------------------------------ #
    async def apply_callback(self, payment_reference: str, callback_payload: Mapping[str, Any]) -> PaymentRecord:
        try:
            event = normalize_callback_payload(dict(callback_payload), fallback_reference=payment_reference)
        except IntegrationResponseError as exc:
            raise InvalidCallbackPayload(str(exc), payment_reference=payment_reference) from exc

        if event.payment_reference != payment_reference:
            raise InvalidCallbackPayload(
                f"Callback reference {event.payment_reference} does not match {payment_reference}",
                payment_reference=payment_reference,
            )

        additional = {"callback": event.raw}
        last_error: Optional[InvalidTransition] = None
        for _ in range(self.callback_attempts):
            record = await self.ledger.find(payment_reference)
            if record is None:
                logger.warning("Callback for unknown payment reference %s ignored", payment_reference)
                raise UnknownReference(
                    f"No payment with reference {payment_reference}", payment_reference=payment_reference
                )

            if record.is_terminal:
                self._log_duplicate(record, event.status)
                return record

            try:
                return await self._advance(record, event, additional)
            except InvalidTransition as exc:
                # the submit response or another callback moved the record
                logger.info("Payment %s changed while applying %s callback", payment_reference, event.status.value)
                last_error = exc
        raise last_error

    async def _advance(self, record: PaymentRecord, event, additional) -> PaymentRecord:
        if event.status == PaymentStatus.PENDING:
            if record.status != PaymentStatus.INITIATED:
                return record
            return await self._callback_transition(record, PaymentStatus.PENDING, event, additional)

        if record.status == PaymentStatus.INITIATED and event.status == PaymentStatus.SUCCESS:
            record = await self._callback_transition(
                record,
                PaymentStatus.PENDING,
                event,
                additional,
                reason="Gateway callback confirms acceptance",
            )
        return await self._callback_transition(record, event.status, event, additional)

    async def _callback_transition(self, record, status, event, additional, reason: Optional[str] = None) -> PaymentRecord:
        return await self.ledger.transition(
            record.payment_reference,
            status,
            reason or event.message or f"Payment {status.value.lower()} via callback",
            additional,
            gateway_reference=event.gateway_reference,
            from_callback=True,
            changed_by="callback",
        )

    def _log_duplicate(self, record: PaymentRecord, incoming: PaymentStatus) -> None:
        if record.status == incoming:
            logger.info("Duplicate %s callback for %s ignored", incoming.value, record.payment_reference)
        else:
            logger.warning(
                "Callback %s for %s ignored; payment already %s",
                incoming.value,
                record.payment_reference,
                record.status.value,
            )

    # ------------------------------------------------------------------ #
    # Cancellation
    # ------------------------------------------------------------------ #
    async def cancel(self, payment_reference: str, reason: str = "Cancelled by request") -> PaymentRecord:
        return await self.ledger.transition(payment_reference, PaymentStatus.CANCELLED, reason, changed_by="API")
