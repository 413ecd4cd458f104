"""
SQLAlchemy models for the rate catalogue and the payment ledger.
Used by postgres_real and scripts/init_database.py.
"""
from __future__ import annotations
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional
from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


# ======================================================================
# Rate catalogue
# ======================================================================

class ProductRow(Base):
    __tablename__ = "products"

    product_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    product_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    product_category: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    rating_type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="ACTIVE", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class PackageRow(Base):
    __tablename__ = "packages"

    package_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    product_id: Mapped[str] = mapped_column(String(50), ForeignKey("products.product_id"), nullable=False, index=True)
    package_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(15, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    minimum_premium: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class PackageBenefitRow(Base):
    __tablename__ = "package_benefits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    package_id: Mapped[str] = mapped_column(String(50), ForeignKey("packages.package_id"), nullable=False, index=True)
    benefit_type: Mapped[str] = mapped_column(String(100), nullable=False)
    benefit_value: Mapped[str] = mapped_column(String(255), nullable=False)
    benefit_unit: Mapped[str] = mapped_column(String(30), default="", nullable=False)


class PackageLimitRow(Base):
    __tablename__ = "package_limits"

    package_id: Mapped[str] = mapped_column(String(50), ForeignKey("packages.package_id"), primary_key=True)
    min_age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    min_family_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_family_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    min_sum_insured: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    max_sum_insured: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)


class RatingFactorRow(Base):
    __tablename__ = "rating_factors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(String(50), ForeignKey("products.product_id"), nullable=False)
    factor_type: Mapped[str] = mapped_column(String(30), nullable=False)
    factor_key: Mapped[str] = mapped_column(String(50), nullable=False)
    multiplier: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4), nullable=True)
    addition: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("ix_rating_factors_product_type", "product_id", "factor_type"),)


# ======================================================================
# Payment ledger
# ======================================================================

class PolicyPaymentRow(Base):
    __tablename__ = "policy_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payment_reference: Mapped[str] = mapped_column(String(150), unique=True, nullable=False)
    policy_number: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), default="INITIATED", nullable=False, index=True)
    gateway_reference: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)
    initiated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    callback_received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_metadata: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, default=dict, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class PaymentStatusLogRow(Base):
    __tablename__ = "payment_status_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payment_reference: Mapped[str] = mapped_column(
        String(150), ForeignKey("policy_payments.payment_reference"), nullable=False, index=True
    )
    old_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(Text, default="", nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    changed_by: Mapped[str] = mapped_column(String(100), default="API", nullable=False)
    additional_data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
