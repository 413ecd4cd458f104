"""
Mock integration clients.

These clients return fake (but realistic) responses without calling any external system.
They are used when:
- Partner gateway credentials or the policy databases are not available
- We want to test payment flows end-to-end without external dependencies

Important:
- Mock clients must follow the SAME interface as the real clients.
- Mock clients must return data shaped according to policy_gateway/integrations/contracts/*

Switching to real:
Set INTEGRATIONS_MODE=real; policy_gateway/api/services.py then wires
clients/real_http/* and the SQL policy lookup instead.
"""

from .payments import MockGatewayAdapter
from .policy_source import MockPolicySource

__all__ = ["MockGatewayAdapter", "MockPolicySource"]
