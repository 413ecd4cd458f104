"""
Real HTTP integration clients.

These clients communicate with the partner payment gateway over HTTP.

Important:
- Must implement the same interfaces as the mock clients
- Must return data shaped according to policy_gateway/integrations/contracts/*

Switching:
The selection of mock vs real clients happens in policy_gateway/api/services.py only.
"""

from .payments import RealPaymentsClient

__all__ = ["RealPaymentsClient"]
