"""
Policy gateway core.

Premium rating over product/package rate tables and the payment lifecycle
(ledger + orchestration) behind the partner-facing REST gateway.
"""

__version__ = "1.0.0"
