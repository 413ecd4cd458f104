"""
Error taxonomy for the rating and payment core.

Every error exposes a stable machine-readable ``kind`` and a human-readable
``message``. Families:

- NotFoundError      -> caller can map to 404, never retried internally
- InvalidInputError  -> caller input problem, surfaced verbatim
- ConflictError      -> concurrency / lifecycle violation, logged for audit
- TransientError     -> storage or network failure, safe to retry later
"""

from __future__ import annotations

import re
from typing import Any, Dict, Optional


def _kind_from_name(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).upper()


class GatewayError(Exception):
    retryable = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    @property
    def kind(self) -> str:
        return _kind_from_name(type(self).__name__)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
            "context": dict(self.context),
        }


# ---------------------------------------------------------------------------
# Families
# ---------------------------------------------------------------------------

class NotFoundError(GatewayError):
    pass


class InvalidInputError(GatewayError):
    pass


class ConflictError(GatewayError):
    pass


class TransientError(GatewayError):
    retryable = True


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------

class ProductNotFound(NotFoundError):
    pass


class PackageNotFound(NotFoundError):
    pass


class PaymentNotFound(NotFoundError):
    pass


class UnknownReference(NotFoundError):
    """A gateway callback referenced a payment this ledger never created."""


class PolicyNotFound(NotFoundError):
    pass


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class InvalidCoverValue(InvalidInputError):
    pass


class UnsupportedRatingStrategy(InvalidInputError):
    pass


class PackageInactive(InvalidInputError):
    pass


class InvalidCoverageInputs(InvalidInputError):
    pass


class OutOfLimits(InvalidInputError):
    pass


class PolicyNotRateable(InvalidInputError):
    pass


class InvalidPaymentRequest(InvalidInputError):
    pass


class InvalidCallbackPayload(InvalidInputError):
    pass


class UnsupportedCurrency(InvalidInputError):
    pass


# ---------------------------------------------------------------------------
# Conflict
# ---------------------------------------------------------------------------

class DuplicateReference(ConflictError):
    pass


class InvalidTransition(ConflictError):
    pass


# ---------------------------------------------------------------------------
# Transient
# ---------------------------------------------------------------------------

class PolicySourceUnavailable(TransientError):
    pass


class GatewayUnavailable(TransientError):
    def __init__(self, message: str, *, payment_reference: Optional[str] = None, **context: Any) -> None:
        super().__init__(message, payment_reference=payment_reference, **context)
        self.payment_reference = payment_reference


class StorageUnavailable(TransientError):
    pass
