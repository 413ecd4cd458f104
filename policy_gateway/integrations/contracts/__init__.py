"""
Contracts (data models).

This folder defines the shapes exchanged with external collaborators:
- PolicySource: policy lookup over the USD / ZIG policy databases
- GatewayAdapter: payment submission
- Callback events delivered by gateways

Both mock and real clients must use these contracts.
"""
