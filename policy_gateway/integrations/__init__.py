"""
Integrations layer.
This package contains all code used to communicate with external systems such as:
- The USD / ZIG policy databases (policy lookup)
- Partner payment gateways (payment submission and settlement callbacks)

Key rule:
- The payment core MUST NOT call external systems directly.
- It talks to PolicySource and GatewayAdapter implementations (under policy_gateway/integrations/clients
  and policy_gateway/database/policy_lookup.py).
- We use MOCK clients during development and swap to REAL clients when credentials are available.

Switching implementations:
- The selection of mock vs real clients happens in ONE place (policy_gateway/api/services.py).
"""

from .contracts.interfaces import (
    GatewayAdapter,
    GatewaySubmission,
    PolicyRecord,
    PolicySource,
)
from .contracts.payments import PaymentCallbackEvent, validate_payment_record

__all__ = [
    # interfaces
    "GatewayAdapter", "GatewaySubmission", "PolicyRecord", "PolicySource",
    # payments
    "PaymentCallbackEvent", "validate_payment_record",
]
