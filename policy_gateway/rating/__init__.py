"""
Premium rating.

RateTable serves catalogue lookups from a cached snapshot; RatingEngine turns
a product/package plus typed coverage inputs into a PremiumBreakdown.
"""

from .engine import RatingEngine, check_limits, parse_coverage
from .models import (
    Benefit,
    DurationCoverage,
    FlatCoverage,
    Limit,
    Package,
    PercentageCoverage,
    PremiumBreakdown,
    Product,
    RatingStrategy,
    RiskFactor,
)
from .rate_table import RateCatalog, RateSnapshot, RateTable

__all__ = [
    "RatingEngine", "check_limits", "parse_coverage",
    "Benefit", "DurationCoverage", "FlatCoverage", "Limit", "Package",
    "PercentageCoverage", "PremiumBreakdown", "Product", "RatingStrategy", "RiskFactor",
    "RateCatalog", "RateSnapshot", "RateTable",
]
