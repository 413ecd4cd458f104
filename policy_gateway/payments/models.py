"""
Payment lifecycle types and the status state machine.

    INITIATED -> PENDING -> SUCCESS* | FAILED*
    INITIATED -> FAILED*
    INITIATED | PENDING -> CANCELLED*

No transition leaves a terminal (*) status.
"""

from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional


class PaymentStatus(str, Enum):
    INITIATED = "INITIATED"
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES: FrozenSet[PaymentStatus] = frozenset(
    {PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
)

ALLOWED_TRANSITIONS: Mapping[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.INITIATED: frozenset({PaymentStatus.PENDING, PaymentStatus.FAILED, PaymentStatus.CANCELLED}),
    PaymentStatus.PENDING: frozenset({PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.CANCELLED}),
    PaymentStatus.SUCCESS: frozenset(),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
}


def is_terminal_status(status: PaymentStatus) -> bool:
    """Return True if the payment has reached a final, non-changeable state."""
    return PaymentStatus(status) in TERMINAL_STATUSES


def can_transition(current: PaymentStatus, new: PaymentStatus) -> bool:
    return PaymentStatus(new) in ALLOWED_TRANSITIONS[PaymentStatus(current)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_payment_reference(currency: str, prefix: str = "POL") -> str:
    """e.g. USD-POL-1718000000000-K3J9QZ"""
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"{currency.upper()}-{prefix}-{int(time.time() * 1000)}-{suffix}"


@dataclass(frozen=True)
class PaymentRecord:
    payment_reference: str
    policy_number: str
    amount: Decimal
    currency: str
    payment_method: str
    status: PaymentStatus = PaymentStatus.INITIATED
    gateway_reference: Optional[str] = None
    initiated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    callback_received_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    status_log: List["PaymentStatusLogEntry"] = field(default_factory=list, compare=False)

    @property
    def is_terminal(self) -> bool:
        return is_terminal_status(self.status)

    def evolve(self, **changes: Any) -> "PaymentRecord":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "payment_reference": self.payment_reference,
            "policy_number": self.policy_number,
            "amount": str(self.amount),
            "currency": self.currency,
            "payment_method": self.payment_method,
            "status": self.status.value,
            "gateway_reference": self.gateway_reference,
            "initiated_at": _iso(self.initiated_at),
            "completed_at": _iso(self.completed_at),
            "callback_received_at": _iso(self.callback_received_at),
            "metadata": dict(self.metadata),
        }
        if self.status_log:
            data["status_log"] = [entry.to_dict() for entry in self.status_log]
        return data


@dataclass(frozen=True)
class PaymentStatusLogEntry:
    payment_reference: str
    old_status: Optional[PaymentStatus]
    new_status: PaymentStatus
    reason: str = ""
    changed_at: datetime = field(default_factory=utcnow)
    changed_by: str = "API"
    additional_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_reference": self.payment_reference,
            "old_status": self.old_status.value if self.old_status else None,
            "new_status": self.new_status.value,
            "reason": self.reason,
            "changed_at": _iso(self.changed_at),
            "changed_by": self.changed_by,
            "additional_data": dict(self.additional_data),
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
