"""
PaymentLedger: sole owner of PaymentRecord state and its append-only status
log.

Transitions on one payment reference are serialised twice over: an
in-process lock per reference, plus a compare-and-set on the stored status
so that writers in other processes cannot interleave either. A transition
either lands together with its log entry or not at all.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Protocol

from policy_gateway.errors import (
    InvalidPaymentRequest,
    InvalidTransition,
    PaymentNotFound,
)
from policy_gateway.integrations.contracts.payments import validate_payment_record
from policy_gateway.payments.models import (
    PaymentRecord,
    PaymentStatus,
    PaymentStatusLogEntry,
    can_transition,
    utcnow,
)

logger = logging.getLogger(__name__)


class PaymentStore(Protocol):
    async def insert(self, record: PaymentRecord) -> PaymentRecord:
        """Persist a new record. Raises DuplicateReference."""

    async def get(self, payment_reference: str) -> Optional[PaymentRecord]: ...

    async def list_by_policy(self, policy_number: str) -> List[PaymentRecord]:
        """Newest ``initiated_at`` first."""

    async def compare_and_set(
        self,
        expected_status: PaymentStatus,
        updated: PaymentRecord,
        entry: PaymentStatusLogEntry,
    ) -> bool:
        """Atomically write ``updated`` and append ``entry`` iff the stored
        status still equals ``expected_status``."""

    async def log_entries(self, payment_reference: str) -> List[PaymentStatusLogEntry]:
        """Oldest first."""

    async def list_by_status(
        self, statuses: Iterable[PaymentStatus], initiated_before: Any
    ) -> List[PaymentRecord]: ...

    async def statistics(self, currency: Optional[str] = None) -> List[Dict[str, Any]]: ...


class PaymentLedger:
    def __init__(self, store: PaymentStore, *, supported_currencies: Optional[List[str]] = None) -> None:
        self._store = store
        self._supported_currencies = [c.upper() for c in supported_currencies] if supported_currencies else None
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _serialized(self, payment_reference: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(payment_reference, asyncio.Lock())
        self._lock_users[payment_reference] = self._lock_users.get(payment_reference, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[payment_reference] -= 1
            if not self._lock_users[payment_reference]:
                del self._lock_users[payment_reference]
                del self._locks[payment_reference]

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #
    async def create_payment(self, record: PaymentRecord) -> PaymentRecord:
        errors = validate_payment_record(record, self._supported_currencies)
        if errors:
            raise InvalidPaymentRequest(
                f"Invalid payment record: {'; '.join(errors)}",
                payment_reference=record.payment_reference,
                errors=errors,
            )

        record = record.evolve(
            status=PaymentStatus.INITIATED,
            currency=record.currency.upper(),
            completed_at=None,
            callback_received_at=None,
            status_log=[],
        )
        async with self._serialized(record.payment_reference):
            created = await self._store.insert(record)

        logger.info(
            "Payment record created: reference=%s policy=%s amount=%s %s method=%s",
            created.payment_reference,
            created.policy_number,
            created.amount,
            created.currency,
            created.payment_method,
        )
        return created

    async def transition(
        self,
        payment_reference: str,
        new_status: PaymentStatus,
        reason: str = "",
        additional_data: Optional[Mapping[str, Any]] = None,
        *,
        gateway_reference: Optional[str] = None,
        from_callback: bool = False,
        changed_by: str = "API",
    ) -> PaymentRecord:
        new_status = PaymentStatus(new_status)

        async with self._serialized(payment_reference):
            current = await self._store.get(payment_reference)
            if current is None:
                raise PaymentNotFound(f"Payment not found: {payment_reference}", payment_reference=payment_reference)

            if not can_transition(current.status, new_status):
                self._reject(payment_reference, current.status, new_status, reason)

            now = utcnow()
            updated = current.evolve(
                status=new_status,
                gateway_reference=gateway_reference or current.gateway_reference,
                completed_at=now if new_status == PaymentStatus.SUCCESS else current.completed_at,
                callback_received_at=now if from_callback else current.callback_received_at,
                status_log=[],
            )
            entry = PaymentStatusLogEntry(
                payment_reference=payment_reference,
                old_status=current.status,
                new_status=new_status,
                reason=reason or f"Status change to {new_status.value}",
                changed_at=now,
                changed_by=changed_by,
                additional_data=dict(additional_data or {}),
            )

            if not await self._store.compare_and_set(current.status, updated, entry):
                # another writer moved the record between our read and write
                latest = await self._store.get(payment_reference)
                self._reject(payment_reference, latest.status if latest else current.status, new_status, reason)

        logger.info(
            "Payment status updated: reference=%s %s -> %s reason=%s",
            payment_reference,
            current.status.value,
            new_status.value,
            entry.reason,
        )
        return updated

    def _reject(self, payment_reference: str, current: PaymentStatus, attempted: PaymentStatus, reason: str) -> None:
        logger.warning(
            "Rejected payment transition: reference=%s current=%s attempted=%s reason=%s",
            payment_reference,
            current.value,
            attempted.value,
            reason,
        )
        raise InvalidTransition(
            f"Cannot move payment {payment_reference} from {current.value} to {attempted.value}",
            payment_reference=payment_reference,
            current_status=current.value,
            attempted_status=attempted.value,
        )

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    async def find(self, payment_reference: str) -> Optional[PaymentRecord]:
        return await self._store.get(payment_reference)

    async def get_by_reference(self, payment_reference: str) -> PaymentRecord:
        record = await self._store.get(payment_reference)
        if record is None:
            raise PaymentNotFound(f"Payment not found: {payment_reference}", payment_reference=payment_reference)
        return record

    async def history(self, policy_number: str, *, include_status_log: bool = False) -> List[PaymentRecord]:
        records = await self._store.list_by_policy(policy_number)
        if not include_status_log:
            return records
        return [
            r.evolve(status_log=await self._store.log_entries(r.payment_reference))
            for r in records
        ]

    async def status_log(self, payment_reference: str) -> List[PaymentStatusLogEntry]:
        await self.get_by_reference(payment_reference)
        return await self._store.log_entries(payment_reference)

    async def stale(
        self,
        older_than: timedelta,
        statuses: Iterable[PaymentStatus] = (PaymentStatus.INITIATED, PaymentStatus.PENDING),
    ) -> List[PaymentRecord]:
        """Non-terminal records initiated before ``now - older_than``, for reconciliation."""
        return await self._store.list_by_status(list(statuses), utcnow() - older_than)

    async def statistics(self, currency: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._store.statistics(currency.upper() if currency else None)
