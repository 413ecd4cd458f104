"""
Rating domain types: catalogue entities, tagged coverage inputs and the
premium breakdown returned to callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

TWO_PLACES = Decimal("0.01")


def to_money(value: Decimal) -> Decimal:
    """Round for presentation. Never call mid-calculation."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RatingStrategy(str, Enum):
    FLAT = "FLAT"
    PERCENTAGE = "PERCENTAGE"
    DURATION_BASED = "DURATION_BASED"


class ProductStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class FactorType(str, Enum):
    AGE_BAND = "AGE_BAND"
    FAMILY_SIZE = "FAMILY_SIZE"
    COVER_TYPE = "COVER_TYPE"
    OCCUPATION = "OCCUPATION"
    LOCATION = "LOCATION"


# ---------------------------------------------------------------------------
# Catalogue entities
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Product:
    product_id: str
    rating_strategy: str                 # kept raw so unknown strategies surface at rating time
    status: ProductStatus = ProductStatus.ACTIVE
    name: str = ""
    category: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.ACTIVE


@dataclass(frozen=True)
class Package:
    package_id: str
    product_id: str
    rate: Decimal                        # flat amount, percent of value, or daily rate
    currency: str = "USD"
    minimum_premium: Optional[Decimal] = None
    sort_order: int = 0
    is_active: bool = True
    name: str = ""


@dataclass(frozen=True)
class Benefit:
    package_id: str
    type: str
    value: str
    unit: str = ""


@dataclass(frozen=True)
class Limit:
    package_id: str
    min_age: Optional[int] = None
    max_age: Optional[int] = None
    min_family_size: Optional[int] = None
    max_family_size: Optional[int] = None
    min_sum_insured: Optional[Decimal] = None
    max_sum_insured: Optional[Decimal] = None


@dataclass(frozen=True)
class RiskFactor:
    product_id: str
    factor_type: str
    factor_key: str
    multiplier: Optional[Decimal] = None
    addition: Optional[Decimal] = None
    description: str = ""
    is_active: bool = True

    @property
    def is_multiplicative(self) -> bool:
        return self.multiplier is not None


# ---------------------------------------------------------------------------
# Coverage inputs (tagged by rating strategy)
# ---------------------------------------------------------------------------

class _CoverageBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    age: Optional[int] = Field(default=None, ge=0, le=130)


class FlatCoverage(_CoverageBase):
    strategy: Literal["FLAT"] = "FLAT"
    family_size: Optional[int] = Field(default=None, ge=1, alias="familySize")


class PercentageCoverage(_CoverageBase):
    strategy: Literal["PERCENTAGE"] = "PERCENTAGE"
    # sign is checked by the engine so it can raise InvalidCoverValue
    cover_value: Decimal = Field(alias="coverValue")
    coverage_type: Optional[str] = Field(default=None, alias="coverageType")


class DurationCoverage(_CoverageBase):
    strategy: Literal["DURATION_BASED"] = "DURATION_BASED"
    duration_days: int = Field(ge=1, alias="durationDays")
    destination: Optional[str] = None
    cover_type: Optional[str] = Field(default=None, alias="coverType")
    travelers: int = Field(default=1, ge=1)


CoverageInputs = Annotated[
    Union[FlatCoverage, PercentageCoverage, DurationCoverage],
    Field(discriminator="strategy"),
]


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AppliedFactor:
    type: str
    key: str
    effect: str                          # "x1.2" or "+3.00"

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "key": self.key, "effect": self.effect}


@dataclass(frozen=True)
class PremiumBreakdown:
    """
    Unrounded premium figures. ``to_dict`` is the presentation boundary and is
    the only place amounts are rounded to two decimals.
    """
    product_id: str
    package_id: str
    base_premium: Decimal
    monthly_or_unit_premium: Decimal
    total_premium: Decimal
    currency: str
    strategy: RatingStrategy
    term_months: int
    applied_factors: Tuple[AppliedFactor, ...] = ()
    minimum_applied: bool = False
    benefits: Tuple[Benefit, ...] = ()
    limits: Optional[Limit] = None
    limit_violations: Tuple[str, ...] = ()
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "package_id": self.package_id,
            "base_premium": str(to_money(self.base_premium)),
            "monthly_or_unit_premium": str(to_money(self.monthly_or_unit_premium)),
            "total_premium": str(to_money(self.total_premium)),
            "currency": self.currency,
            "strategy": self.strategy.value,
            "term_months": self.term_months,
            "applied_factors": [f.to_dict() for f in self.applied_factors],
            "minimum_applied": self.minimum_applied,
            "benefits": [
                {"type": b.type, "value": b.value, "unit": b.unit} for b in self.benefits
            ],
            "limits": _limit_to_dict(self.limits),
            "limit_violations": list(self.limit_violations),
            "details": {k: str(v) if isinstance(v, Decimal) else v for k, v in self.details.items()},
        }


def _limit_to_dict(limit: Optional[Limit]) -> Optional[Dict[str, Any]]:
    if limit is None:
        return None
    out: Dict[str, Any] = {}
    for name in ("min_age", "max_age", "min_family_size", "max_family_size", "min_sum_insured", "max_sum_insured"):
        value = getattr(limit, name)
        if value is not None:
            out[name] = str(value) if isinstance(value, Decimal) else value
    return out
