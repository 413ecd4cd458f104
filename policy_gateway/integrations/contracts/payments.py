"""
Payment contracts.

Defines the structures exchanged with payment gateways, e.g.:
- the callback (webhook) event delivered after settlement
- request validation before a payment record is created

These contracts must be used by both:
- clients/mocks/payments.py (simulated gateway for development/testing)
- clients/real_http/payments.py (real partner gateway)
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from policy_gateway.payments.models import PaymentRecord, PaymentStatus, utcnow


@dataclass(frozen=True)
class PaymentCallbackEvent:
    """Payload received from a gateway callback, after normalisation."""
    payment_reference: str
    status: PaymentStatus
    gateway_reference: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    message: str = ""
    received_at: datetime = field(default_factory=utcnow)
    raw: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def validate_payment_record(record: PaymentRecord, supported_currencies: Optional[List[str]] = None) -> List[str]:
    """
    Return a list of validation errors.
    Empty list means the record can be created.
    """
    errors: List[str] = []

    if not (record.payment_reference or "").strip():
        errors.append("payment_reference is required")
    if not (record.policy_number or "").strip():
        errors.append("policy_number is required")
    if record.amount is None or record.amount <= 0:
        errors.append("amount must be greater than zero")
    if not record.currency:
        errors.append("currency is required")
    elif supported_currencies and record.currency.upper() not in supported_currencies:
        errors.append(f"currency '{record.currency}' is not supported")
    if not (record.payment_method or "").strip():
        errors.append("payment_method is required")

    return errors
