"""
Payment lifecycle: status state machine, ledger and orchestration.

``PaymentOrchestrator`` lives in ``policy_gateway.payments.orchestrator`` and
is imported from there (it depends on the integration contracts).
"""

from .models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    PaymentRecord,
    PaymentStatus,
    PaymentStatusLogEntry,
    can_transition,
    generate_payment_reference,
    is_terminal_status,
)
from .ledger import PaymentLedger, PaymentStore

__all__ = [
    "ALLOWED_TRANSITIONS", "TERMINAL_STATUSES", "PaymentRecord", "PaymentStatus",
    "PaymentStatusLogEntry", "can_transition", "generate_payment_reference",
    "is_terminal_status", "PaymentLedger", "PaymentStore",
]
