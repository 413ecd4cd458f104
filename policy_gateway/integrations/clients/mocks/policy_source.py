"""
Policy lookup: MOCK client.

Serves a small seed of USD and ZIG policies from memory, shaped like the
rows of the VClient_LookUP_* views. Set ``unavailable=True`` to simulate a
database outage.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from policy_gateway.errors import PolicyNotFound, PolicySourceUnavailable, UnsupportedCurrency
from policy_gateway.integrations.contracts.interfaces import PolicyRecord, PolicySource

logger = logging.getLogger(__name__)


_SEED_POLICIES: List[PolicyRecord] = [
    PolicyRecord(
        policy_number="PA-USD-000123",
        holder_name="Tendai Moyo",
        currency="USD",
        product_id="PA",
        package_id="PA_STANDARD",
        product_category="Accident and Health",
        term_months=12,
        database="ZIMNATUSD",
        mobile="+263771000123",
    ),
    PolicyRecord(
        policy_number="HCP-USD-000456",
        holder_name="Rudo Chikore",
        currency="USD",
        product_id="HCP",
        package_id="HCP_FAMILY",
        product_category="Accident and Health",
        term_months=1,
        database="ZIMNATUSD",
    ),
    PolicyRecord(
        policy_number="LIFE-USD-000789",
        holder_name="Farai Ncube",
        currency="USD",
        product_category="Life Assurance",
        insurance_type="Life",
        premium=Decimal("45.50"),
        sum_insured=Decimal("10000"),
        database="ZIMNATUSD",
    ),
    PolicyRecord(
        policy_number="DOM-ZIG-000321",
        holder_name="Chipo Dube",
        currency="ZIG",
        product_category="Property",
        premium=Decimal("1250.00"),
        sum_insured=Decimal("150000"),
        database="ZIMNATZIG",
    ),
]


class MockPolicySource(PolicySource):
    def __init__(self, policies: Optional[Iterable[PolicyRecord]] = None, unavailable: bool = False) -> None:
        self._policies: Dict[Tuple[str, str], PolicyRecord] = {
            (p.currency.upper(), p.policy_number): p
            for p in (_SEED_POLICIES if policies is None else policies)
        }
        self.unavailable = unavailable
        logger.info("[POLICY MOCK] Client initialised with %d policies", len(self._policies))

    def add(self, policy: PolicyRecord) -> None:
        self._policies[(policy.currency.upper(), policy.policy_number)] = policy

    def _check(self, currency: str) -> str:
        currency = (currency or "").upper()
        if currency not in ("USD", "ZIG"):
            raise UnsupportedCurrency(f"Unsupported currency: {currency}", currency=currency)
        if self.unavailable:
            raise PolicySourceUnavailable(f"Policy database for {currency} is unavailable", currency=currency)
        return currency

    async def search(
        self,
        policy_identifier: str,
        currency: str,
        product_filter: Optional[str] = None,
    ) -> List[PolicyRecord]:
        currency = self._check(currency)
        results = [
            p for (cur, number), p in sorted(self._policies.items())
            if cur == currency
            and (not policy_identifier or number == policy_identifier.strip())
            and (not product_filter or p.insurance_type == product_filter)
        ]
        logger.info("[POLICY MOCK] Search policy=%s currency=%s found=%d", policy_identifier, currency, len(results))
        return results

    async def get_details(self, policy_identifier: str, currency: str) -> PolicyRecord:
        currency = self._check(currency)
        policy = self._policies.get((currency, policy_identifier.strip()))
        if policy is None:
            logger.warning("[POLICY MOCK] Policy not found: %s (%s)", policy_identifier, currency)
            raise PolicyNotFound(
                f"Policy {policy_identifier} not found in {currency} policies",
                policy_identifier=policy_identifier,
                currency=currency,
            )
        return policy
