from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from policy_gateway.payments.models import PaymentRecord


# ---------------------------------------------------------------------------
# Shared data models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PolicyRecord:
    policy_number: str
    holder_name: str
    currency: str                        # USD / ZIG, one source database each
    product_id: Optional[str] = None
    package_id: Optional[str] = None
    product_category: str = ""
    insurance_type: str = "General"      # Life / General
    status: str = "ACTIVE"
    premium: Optional[Decimal] = None    # fixed gross premium, when the source carries one
    sum_insured: Optional[Decimal] = None
    term_months: Optional[int] = None
    database: str = ""
    mobile: Optional[str] = None
    agent: Optional[str] = None
    cover_start_date: Optional[str] = None
    expiry_date: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_fixed_premium(self) -> bool:
        return self.premium is not None and self.premium > 0


@dataclass(frozen=True)
class GatewaySubmission:
    """Business outcome of submitting a payment to the external gateway."""
    accepted: bool
    gateway_reference: Optional[str] = None
    message: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Abstract collaborator interfaces
# ---------------------------------------------------------------------------

class PolicySource(ABC):
    """Policy lookup over the external (currency-segregated) policy databases."""

    @abstractmethod
    async def search(
        self,
        policy_identifier: str,
        currency: str,
        product_filter: Optional[str] = None,
    ) -> List[PolicyRecord]:
        """Return matching policies; empty list when none match.

        Raises PolicySourceUnavailable when the source cannot be reached.
        """

    @abstractmethod
    async def get_details(self, policy_identifier: str, currency: str) -> PolicyRecord:
        """Return one policy. Raises PolicyNotFound or PolicySourceUnavailable."""


class GatewayAdapter(ABC):
    """Every payment gateway client must implement this interface."""

    @abstractmethod
    async def submit(self, record: PaymentRecord) -> GatewaySubmission:
        """Submit a payment for collection.

        A business rejection is ``GatewaySubmission(accepted=False)``;
        transport failure raises GatewayUnavailable.
        """
