"""
In-memory rate and payment stores for local development and tests.

They implement the same interfaces as policy_gateway.database.postgres_real
so the API can run without a database. NOT intended for production use:
nothing survives a restart.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from policy_gateway.errors import DuplicateReference
from policy_gateway.payments.models import PaymentRecord, PaymentStatus, PaymentStatusLogEntry
from policy_gateway.rating.rate_table import RateCatalog


class InMemoryRateStore:
    def __init__(self, catalog: Optional[RateCatalog] = None) -> None:
        self._catalog = catalog or RateCatalog()

    def replace(self, catalog: RateCatalog) -> None:
        """Swap the whole catalogue; callers bump the rate-table version."""
        self._catalog = catalog

    async def load_catalog(self) -> RateCatalog:
        c = self._catalog
        return RateCatalog(
            products=list(c.products),
            packages=list(c.packages),
            benefits=list(c.benefits),
            limits=list(c.limits),
            risk_factors=list(c.risk_factors),
        )


class InMemoryPaymentStore:
    def __init__(self) -> None:
        self._records: Dict[str, PaymentRecord] = {}
        self._log: Dict[str, List[PaymentStatusLogEntry]] = defaultdict(list)

    async def insert(self, record: PaymentRecord) -> PaymentRecord:
        if record.payment_reference in self._records:
            raise DuplicateReference(
                f"Payment reference already exists: {record.payment_reference}",
                payment_reference=record.payment_reference,
            )
        self._records[record.payment_reference] = record
        return record

    async def get(self, payment_reference: str) -> Optional[PaymentRecord]:
        return self._records.get(payment_reference)

    async def list_by_policy(self, policy_number: str) -> List[PaymentRecord]:
        records = [r for r in self._records.values() if r.policy_number == policy_number]
        return sorted(records, key=lambda r: r.initiated_at, reverse=True)

    async def compare_and_set(
        self,
        expected_status: PaymentStatus,
        updated: PaymentRecord,
        entry: PaymentStatusLogEntry,
    ) -> bool:
        # no await between the check and the writes
        current = self._records.get(updated.payment_reference)
        if current is None or current.status != expected_status:
            return False
        self._records[updated.payment_reference] = updated
        self._log[updated.payment_reference].append(entry)
        return True

    async def log_entries(self, payment_reference: str) -> List[PaymentStatusLogEntry]:
        return list(self._log.get(payment_reference, ()))

    async def list_by_status(
        self, statuses: Iterable[PaymentStatus], initiated_before: datetime
    ) -> List[PaymentRecord]:
        wanted = set(statuses)
        records = [
            r for r in self._records.values()
            if r.status in wanted and r.initiated_at < initiated_before
        ]
        return sorted(records, key=lambda r: r.initiated_at)

    async def statistics(self, currency: Optional[str] = None) -> List[Dict[str, Any]]:
        groups: Dict[tuple, Dict[str, Any]] = {}
        for r in self._records.values():
            if currency and r.currency != currency:
                continue
            key = (r.status.value, r.currency)
            bucket = groups.setdefault(
                key, {"status": key[0], "currency": key[1], "count": 0, "total_amount": Decimal("0")}
            )
            bucket["count"] += 1
            bucket["total_amount"] += r.amount
        return [groups[k] for k in sorted(groups)]
