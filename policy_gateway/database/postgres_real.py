"""
SQL-backed rate and payment stores for production when DATABASE_URL is set.
Implements the same interfaces as policy_gateway.database.postgres (in-memory).

Driver calls are blocking; every public coroutine runs its unit of work in
``asyncio.to_thread`` inside one session/transaction.
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, TypeVar

from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from policy_gateway.database.models import (
    Base,
    PackageBenefitRow,
    PackageLimitRow,
    PackageRow,
    PaymentStatusLogRow,
    PolicyPaymentRow,
    ProductRow,
    RatingFactorRow,
)
from policy_gateway.database.repository import Repository
from policy_gateway.errors import DuplicateReference, StorageUnavailable
from policy_gateway.payments.models import PaymentRecord, PaymentStatus, PaymentStatusLogEntry
from policy_gateway.rating.models import Benefit, Limit, Package, Product, ProductStatus, RiskFactor
from policy_gateway.rating.rate_table import RateCatalog

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _normalize_connection_string(s: str) -> str:
    """Strip common mistakes: 'psql \'...\'', extra quotes, whitespace."""
    s = s.strip()
    if re.match(r"^psql\s+", s, re.IGNORECASE):
        s = re.sub(r"^psql\s+", "", s, flags=re.IGNORECASE).strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"'):
        s = s[1:-1].strip()
    if s.startswith("postgres://"):
        s = "postgresql://" + s[len("postgres://"):]
    return s


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Database:
    """
    Explicit engine/session handle passed to every SQL store. Nothing in this
    module holds a global connection pool.
    """

    def __init__(self, connection_string: str) -> None:
        connection_string = _normalize_connection_string(connection_string)
        if connection_string.startswith("sqlite"):
            self.engine = create_engine(connection_string, connect_args={"check_same_thread": False})
        else:
            self.engine = create_engine(connection_string, pool_pre_ping=True, pool_size=5, max_overflow=10)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine, expire_on_commit=False)

    def create_tables(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        s = self.SessionLocal()
        try:
            yield s
            s.commit()
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()

    async def run(self, work: Callable[[Session], T]) -> T:
        """Run ``work(session)`` in a worker thread as one transaction."""

        def _unit() -> T:
            with self.session() as s:
                return work(s)

        try:
            return await asyncio.to_thread(_unit)
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Database operation failed: %s", exc)
            raise StorageUnavailable(f"Database operation failed: {exc.__class__.__name__}") from exc


# ---------------------------------------------------------------------------
# Rate catalogue
# ---------------------------------------------------------------------------

class SqlRateStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def load_catalog(self) -> RateCatalog:
        try:
            return await self.db.run(self._load)
        except IntegrityError as exc:
            raise StorageUnavailable(f"Database operation failed: {exc.__class__.__name__}") from exc

    @staticmethod
    def _load(s: Session) -> RateCatalog:
        return RateCatalog(
            products=[
                Product(
                    product_id=row.product_id,
                    rating_strategy=row.rating_type,
                    status=ProductStatus(row.status),
                    name=row.product_name,
                    category=row.product_category,
                )
                for row in Repository(s, ProductRow).list(order_by="product_id")
            ],
            packages=[
                Package(
                    package_id=row.package_id,
                    product_id=row.product_id,
                    rate=Decimal(row.rate),
                    currency=row.currency,
                    minimum_premium=Decimal(row.minimum_premium) if row.minimum_premium is not None else None,
                    sort_order=row.sort_order,
                    is_active=row.is_active,
                    name=row.package_name,
                )
                for row in Repository(s, PackageRow).list(order_by="sort_order")
            ],
            benefits=[
                Benefit(
                    package_id=row.package_id,
                    type=row.benefit_type,
                    value=row.benefit_value,
                    unit=row.benefit_unit,
                )
                for row in Repository(s, PackageBenefitRow).list(order_by="id")
            ],
            limits=[
                Limit(
                    package_id=row.package_id,
                    min_age=row.min_age,
                    max_age=row.max_age,
                    min_family_size=row.min_family_size,
                    max_family_size=row.max_family_size,
                    min_sum_insured=row.min_sum_insured,
                    max_sum_insured=row.max_sum_insured,
                )
                for row in Repository(s, PackageLimitRow).list()
            ],
            risk_factors=[
                RiskFactor(
                    product_id=row.product_id,
                    factor_type=row.factor_type,
                    factor_key=row.factor_key,
                    multiplier=Decimal(row.multiplier) if row.multiplier is not None else None,
                    addition=Decimal(row.addition) if row.addition is not None else None,
                    description=row.description,
                    is_active=row.is_active,
                )
                for row in Repository(s, RatingFactorRow).list(order_by="id")
            ],
        )


# ---------------------------------------------------------------------------
# Payment ledger
# ---------------------------------------------------------------------------

def _to_record(row: PolicyPaymentRow) -> PaymentRecord:
    return PaymentRecord(
        payment_reference=row.payment_reference,
        policy_number=row.policy_number,
        amount=Decimal(row.amount),
        currency=row.currency,
        payment_method=row.payment_method,
        status=PaymentStatus(row.payment_status),
        gateway_reference=row.gateway_reference,
        initiated_at=_aware(row.initiated_at),
        completed_at=_aware(row.paid_at),
        callback_received_at=_aware(row.callback_received_at),
        metadata=dict(row.payment_metadata or {}),
    )


def _to_entry(row: PaymentStatusLogRow) -> PaymentStatusLogEntry:
    return PaymentStatusLogEntry(
        payment_reference=row.payment_reference,
        old_status=PaymentStatus(row.old_status) if row.old_status else None,
        new_status=PaymentStatus(row.new_status),
        reason=row.reason,
        changed_at=_aware(row.changed_at),
        changed_by=row.changed_by,
        additional_data=dict(row.additional_data or {}),
    )


class SqlPaymentStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def insert(self, record: PaymentRecord) -> PaymentRecord:
        def work(s: Session) -> PaymentRecord:
            row = Repository(s, PolicyPaymentRow).create(
                payment_reference=record.payment_reference,
                policy_number=record.policy_number,
                amount=record.amount,
                currency=record.currency,
                payment_method=record.payment_method,
                payment_status=record.status.value,
                gateway_reference=record.gateway_reference,
                initiated_at=record.initiated_at,
                paid_at=record.completed_at,
                callback_received_at=record.callback_received_at,
                payment_metadata=dict(record.metadata),
            )
            return _to_record(row)

        try:
            return await self.db.run(work)
        except IntegrityError as exc:
            raise DuplicateReference(
                f"Payment reference already exists: {record.payment_reference}",
                payment_reference=record.payment_reference,
            ) from exc

    async def get(self, payment_reference: str) -> Optional[PaymentRecord]:
        def work(s: Session) -> Optional[PaymentRecord]:
            row = Repository(s, PolicyPaymentRow).find_by(payment_reference=payment_reference)
            return _to_record(row) if row else None

        return await self._run(work)

    async def list_by_policy(self, policy_number: str) -> List[PaymentRecord]:
        def work(s: Session) -> List[PaymentRecord]:
            rows = Repository(s, PolicyPaymentRow).list(
                order_by="initiated_at", descending=True, policy_number=policy_number
            )
            return [_to_record(r) for r in rows]

        return await self._run(work)

    async def compare_and_set(
        self,
        expected_status: PaymentStatus,
        updated: PaymentRecord,
        entry: PaymentStatusLogEntry,
    ) -> bool:
        def work(s: Session) -> bool:
            affected = Repository(s, PolicyPaymentRow).update_where(
                {"payment_reference": updated.payment_reference, "payment_status": expected_status.value},
                {
                    "payment_status": updated.status.value,
                    "gateway_reference": updated.gateway_reference,
                    "paid_at": updated.completed_at,
                    "callback_received_at": updated.callback_received_at,
                    "updated_at": entry.changed_at,
                },
            )
            if affected != 1:
                return False
            Repository(s, PaymentStatusLogRow).create(
                payment_reference=entry.payment_reference,
                old_status=entry.old_status.value if entry.old_status else None,
                new_status=entry.new_status.value,
                reason=entry.reason,
                changed_at=entry.changed_at,
                changed_by=entry.changed_by,
                additional_data=dict(entry.additional_data),
            )
            return True

        return await self._run(work)

    async def log_entries(self, payment_reference: str) -> List[PaymentStatusLogEntry]:
        def work(s: Session) -> List[PaymentStatusLogEntry]:
            rows = Repository(s, PaymentStatusLogRow).list(order_by="id", payment_reference=payment_reference)
            return [_to_entry(r) for r in rows]

        return await self._run(work)

    async def list_by_status(
        self, statuses: Iterable[PaymentStatus], initiated_before: datetime
    ) -> List[PaymentRecord]:
        values = [PaymentStatus(st).value for st in statuses]

        def work(s: Session) -> List[PaymentRecord]:
            stmt = (
                select(PolicyPaymentRow)
                .where(PolicyPaymentRow.payment_status.in_(values))
                .where(PolicyPaymentRow.initiated_at < initiated_before)
                .order_by(PolicyPaymentRow.initiated_at.asc())
            )
            return [_to_record(r) for r in s.execute(stmt).scalars().all()]

        return await self._run(work)

    async def statistics(self, currency: Optional[str] = None) -> List[Dict[str, Any]]:
        def work(s: Session) -> List[Dict[str, Any]]:
            stmt = select(
                PolicyPaymentRow.payment_status,
                PolicyPaymentRow.currency,
                func.count(PolicyPaymentRow.id),
                func.sum(PolicyPaymentRow.amount),
            ).group_by(PolicyPaymentRow.payment_status, PolicyPaymentRow.currency)
            if currency:
                stmt = stmt.where(PolicyPaymentRow.currency == currency)
            stmt = stmt.order_by(PolicyPaymentRow.payment_status, PolicyPaymentRow.currency)
            return [
                {
                    "status": status,
                    "currency": cur,
                    "count": int(count),
                    "total_amount": Decimal(str(total or 0)),
                }
                for status, cur, count, total in s.execute(stmt).all()
            ]

        return await self._run(work)

    async def _run(self, work: Callable[[Session], T]) -> T:
        try:
            return await self.db.run(work)
        except IntegrityError as exc:
            raise StorageUnavailable(f"Database operation failed: {exc.__class__.__name__}") from exc
