"""
Seed the SQL rate catalogue from a RateCatalog (normally config/rate_tables.yml).

Existing catalogue rows are cleared in dependency order first; the payment
tables are never touched.
"""

from __future__ import annotations

import logging
from typing import Dict

from sqlalchemy import delete
from sqlalchemy.orm import Session

from policy_gateway.database.models import (
    PackageBenefitRow,
    PackageLimitRow,
    PackageRow,
    ProductRow,
    RatingFactorRow,
)
from policy_gateway.database.postgres_real import Database
from policy_gateway.database.repository import Repository
from policy_gateway.rating.rate_table import RateCatalog

logger = logging.getLogger(__name__)

_CLEAR_ORDER = (RatingFactorRow, PackageLimitRow, PackageBenefitRow, PackageRow, ProductRow)


def _enum_value(value) -> str:
    return str(getattr(value, "value", value))


def seed_rate_catalog(db: Database, catalog: RateCatalog) -> Dict[str, int]:
    with db.session() as s:
        return _seed(s, catalog)


def _seed(s: Session, catalog: RateCatalog) -> Dict[str, int]:
    for model in _CLEAR_ORDER:
        s.execute(delete(model))

    products = Repository(s, ProductRow)
    for p in catalog.products:
        products.create(
            product_id=p.product_id,
            product_name=p.name,
            product_category=p.category,
            rating_type=_enum_value(p.rating_strategy),
            status=_enum_value(p.status),
        )

    packages = Repository(s, PackageRow)
    for p in catalog.packages:
        packages.create(
            package_id=p.package_id,
            product_id=p.product_id,
            package_name=p.name,
            rate=p.rate,
            currency=p.currency,
            minimum_premium=p.minimum_premium,
            sort_order=p.sort_order,
            is_active=p.is_active,
        )

    benefits = Repository(s, PackageBenefitRow)
    for b in catalog.benefits:
        benefits.create(package_id=b.package_id, benefit_type=b.type, benefit_value=b.value, benefit_unit=b.unit)

    limits = Repository(s, PackageLimitRow)
    for l in catalog.limits:
        limits.create(
            package_id=l.package_id,
            min_age=l.min_age,
            max_age=l.max_age,
            min_family_size=l.min_family_size,
            max_family_size=l.max_family_size,
            min_sum_insured=l.min_sum_insured,
            max_sum_insured=l.max_sum_insured,
        )

    factors = Repository(s, RatingFactorRow)
    for f in catalog.risk_factors:
        factors.create(
            product_id=f.product_id,
            factor_type=_enum_value(f.factor_type),
            factor_key=f.factor_key,
            multiplier=f.multiplier,
            addition=f.addition,
            description=f.description,
            is_active=f.is_active,
        )

    counts = {
        "products": len(catalog.products),
        "packages": len(catalog.packages),
        "benefits": len(catalog.benefits),
        "limits": len(catalog.limits),
        "risk_factors": len(catalog.risk_factors),
    }
    logger.info("Rate catalogue seeded: %s", counts)
    return counts
