"""
RatingEngine: maps (product, package, coverage inputs, term) to a
PremiumBreakdown, dispatching on the product's rating strategy.

Arithmetic is done in Decimal and is never rounded mid-calculation;
rounding happens in ``PremiumBreakdown.to_dict``.

Factor order:
  1. strategy base (flat rate, percent of value, or adjusted daily rate)
  2. multiplicative risk factors, by factor type then ascending factor_key
  3. additive risk factors
  4. minimum premium floor (PERCENTAGE only)
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import TypeAdapter, ValidationError

from policy_gateway.errors import (
    InvalidCoverageInputs,
    InvalidCoverValue,
    OutOfLimits,
    UnsupportedRatingStrategy,
)
from policy_gateway.rating.models import (
    AppliedFactor,
    CoverageInputs,
    DurationCoverage,
    FactorType,
    FlatCoverage,
    Limit,
    Package,
    PercentageCoverage,
    PremiumBreakdown,
    Product,
    RatingStrategy,
    RiskFactor,
    to_money,
)
from policy_gateway.rating.rate_table import RateSnapshot, RateTable

logger = logging.getLogger(__name__)

DESTINATION_MULTIPLIERS: Dict[str, Decimal] = {
    "DOMESTIC": Decimal("1.0"),
    "REGIONAL": Decimal("1.2"),
    "INTERNATIONAL": Decimal("1.5"),
    "WORLDWIDE": Decimal("2.0"),
}

COVER_TYPE_MULTIPLIERS: Dict[str, Decimal] = {
    "BASIC": Decimal("1.0"),
    "COMPREHENSIVE": Decimal("1.8"),
}

# Legacy rating_type values found in seeded catalogues
_STRATEGY_ALIASES = {
    "FLAT": RatingStrategy.FLAT,
    "FLAT_RATE": RatingStrategy.FLAT,
    "FLAT_PREMIUM": RatingStrategy.FLAT,
    "PERCENTAGE": RatingStrategy.PERCENTAGE,
    "DURATION_BASED": RatingStrategy.DURATION_BASED,
}

_MULTIPLIER_TYPES = (FactorType.AGE_BAND.value, FactorType.COVER_TYPE.value)

_coverage_adapter = TypeAdapter(CoverageInputs)

Coverage = Union[FlatCoverage, PercentageCoverage, DurationCoverage]
ONE = Decimal("1")


def resolve_strategy(product: Product) -> RatingStrategy:
    raw = str(getattr(product.rating_strategy, "value", product.rating_strategy) or "").strip().upper()
    strategy = _STRATEGY_ALIASES.get(raw)
    if strategy is None:
        raise UnsupportedRatingStrategy(
            f"Unsupported rating strategy '{raw}' for product {product.product_id}",
            product_id=product.product_id,
            strategy=raw,
        )
    return strategy


def parse_coverage(strategy: RatingStrategy, inputs: Union[Coverage, Mapping[str, Any], None]) -> Coverage:
    """Build the typed coverage variant for ``strategy`` from a model or a plain mapping."""
    if isinstance(inputs, (FlatCoverage, PercentageCoverage, DurationCoverage)):
        if inputs.strategy != strategy.value:
            raise InvalidCoverageInputs(
                f"{inputs.strategy} coverage inputs cannot rate a {strategy.value} product",
                expected=strategy.value,
                received=inputs.strategy,
            )
        return inputs

    data = dict(inputs or {})
    data["strategy"] = strategy.value
    try:
        return _coverage_adapter.validate_python(data)
    except ValidationError as exc:
        raise InvalidCoverageInputs(
            f"Invalid coverage inputs for {strategy.value}: {exc.errors(include_url=False)}",
            strategy=strategy.value,
        ) from exc


class RatingEngine:
    def __init__(self, rate_table: RateTable, *, enforce_limits: bool = False) -> None:
        self.rate_table = rate_table
        self.enforce_limits = enforce_limits

    async def calculate_premium(
        self,
        product_id: str,
        package_id: str,
        coverage_inputs: Union[Coverage, Mapping[str, Any], None] = None,
        term_months: int = 1,
        *,
        enforce_limits: Optional[bool] = None,
    ) -> PremiumBreakdown:
        snapshot = await self.rate_table.snapshot()
        return self.rate(
            snapshot,
            product_id,
            package_id,
            coverage_inputs,
            term_months,
            enforce_limits=enforce_limits,
        )

    def rate(
        self,
        snapshot: RateSnapshot,
        product_id: str,
        package_id: str,
        coverage_inputs: Union[Coverage, Mapping[str, Any], None],
        term_months: int = 1,
        *,
        enforce_limits: Optional[bool] = None,
    ) -> PremiumBreakdown:
        """Synchronous rating against an already-fetched snapshot."""
        product = snapshot.get_product(product_id)
        package = snapshot.get_package(product_id, package_id)
        strategy = resolve_strategy(product)
        coverage = parse_coverage(strategy, coverage_inputs)

        if isinstance(coverage, PercentageCoverage) and coverage.cover_value <= 0:
            raise InvalidCoverValue(
                f"Cover value must be greater than 0 for percentage-based products; got {coverage.cover_value}",
                package_id=package_id,
                cover_value=str(coverage.cover_value),
            )

        if not isinstance(term_months, int) or isinstance(term_months, bool) or term_months < 1:
            raise InvalidCoverageInputs(
                f"term_months must be a positive integer; got {term_months!r}",
                term_months=term_months,
            )

        limits = snapshot.get_limits(package_id)
        has_extra_member_charge = any(
            f.factor_key == "EXTRA_MEMBER" and f.addition is not None
            for f in snapshot.get_risk_factors(product_id, FactorType.FAMILY_SIZE)
        )
        violations = check_limits(limits, coverage, allow_extra_members=has_extra_member_charge)
        enforce = self.enforce_limits if enforce_limits is None else enforce_limits
        if violations and enforce:
            raise OutOfLimits(
                f"Coverage inputs outside package limits: {'; '.join(violations)}",
                package_id=package_id,
                violations=list(violations),
            )

        if strategy is RatingStrategy.FLAT:
            figures = self._rate_flat(snapshot, product, package, coverage, limits, term_months)
        elif strategy is RatingStrategy.PERCENTAGE:
            figures = self._rate_percentage(snapshot, product, package, coverage, term_months)
        else:
            figures = self._rate_duration(snapshot, product, package, coverage)

        breakdown = PremiumBreakdown(
            product_id=product_id,
            package_id=package_id,
            currency=package.currency,
            strategy=strategy,
            term_months=term_months,
            benefits=snapshot.get_benefits(package_id),
            limits=limits,
            limit_violations=tuple(violations),
            **figures,
        )
        logger.info(
            "Premium calculated: product=%s package=%s strategy=%s total=%s %s",
            product_id,
            package_id,
            strategy.value,
            to_money(breakdown.total_premium),
            breakdown.currency,
        )
        return breakdown

    # ------------------------------------------------------------------ #
    # Strategies
    # ------------------------------------------------------------------ #
    def _rate_flat(
        self,
        snapshot: RateSnapshot,
        product: Product,
        package: Package,
        coverage: FlatCoverage,
        limits: Optional[Limit],
        term_months: int,
    ) -> Dict[str, Any]:
        base = package.rate
        adjusted, applied = _apply_multipliers(base, _matching_multipliers(snapshot, product.product_id, coverage))

        extra_members = 0
        if coverage.family_size is not None and limits is not None and limits.max_family_size is not None:
            extra_members = max(coverage.family_size - limits.max_family_size, 0)

        additions = Decimal("0")
        if extra_members:
            for factor in snapshot.get_risk_factors(product.product_id, FactorType.FAMILY_SIZE):
                if factor.factor_key != "EXTRA_MEMBER" or factor.addition is None:
                    continue
                amount = factor.addition * extra_members
                additions += amount
                applied.append(AppliedFactor(factor.factor_type, factor.factor_key, f"+{to_money(amount)}"))

        monthly = adjusted + additions
        return {
            "base_premium": base,
            "monthly_or_unit_premium": monthly,
            "total_premium": monthly * term_months,
            "applied_factors": tuple(applied),
            "details": {"extra_members": extra_members},
        }

    def _rate_percentage(
        self,
        snapshot: RateSnapshot,
        product: Product,
        package: Package,
        coverage: PercentageCoverage,
        term_months: int,
    ) -> Dict[str, Any]:
        calculated = coverage.cover_value * (package.rate / Decimal("100"))
        premium, applied = _apply_multipliers(calculated, _matching_multipliers(snapshot, product.product_id, coverage))

        # the floor compares against the premium after cover-type multipliers
        minimum_applied = False
        if package.minimum_premium is not None and premium < package.minimum_premium:
            premium = package.minimum_premium
            minimum_applied = True

        return {
            "base_premium": calculated,
            "monthly_or_unit_premium": premium,
            "total_premium": premium * term_months,
            "applied_factors": tuple(applied),
            "minimum_applied": minimum_applied,
            "details": {
                "cover_value": coverage.cover_value,
                "rate_percentage": package.rate,
                "minimum_premium": package.minimum_premium,
            },
        }

    def _rate_duration(
        self,
        snapshot: RateSnapshot,
        product: Product,
        package: Package,
        coverage: DurationCoverage,
    ) -> Dict[str, Any]:
        destination = (coverage.destination or "").strip().upper()
        cover_type = (coverage.cover_type or "").strip().upper()
        destination_multiplier = DESTINATION_MULTIPLIERS.get(destination, ONE)
        cover_multiplier = COVER_TYPE_MULTIPLIERS.get(cover_type, ONE)

        base_daily = package.rate
        daily = base_daily * destination_multiplier * cover_multiplier
        daily, applied = _apply_multipliers(daily, _matching_multipliers(snapshot, product.product_id, coverage))

        return {
            "base_premium": base_daily,
            "monthly_or_unit_premium": daily,
            "total_premium": daily * coverage.duration_days * coverage.travelers,
            "applied_factors": tuple(applied),
            "details": {
                "destination_multiplier": destination_multiplier,
                "cover_multiplier": cover_multiplier,
                "duration_days": coverage.duration_days,
                "travelers": coverage.travelers,
            },
        }


# ---------------------------------------------------------------------------
# Risk factors
# ---------------------------------------------------------------------------

def _cover_type_of(coverage: Coverage) -> Optional[str]:
    if isinstance(coverage, PercentageCoverage):
        return coverage.coverage_type
    if isinstance(coverage, DurationCoverage):
        return coverage.cover_type
    return None


def _age_band_contains(key: str, age: int) -> bool:
    """Keys look like '18-30' or '71+'."""
    key = key.strip()
    try:
        if key.endswith("+"):
            return age >= int(key[:-1])
        low, high = key.split("-", 1)
        return int(low) <= age <= int(high)
    except ValueError:
        logger.warning("Ignoring malformed AGE_BAND key %r", key)
        return False


def _matching_multipliers(snapshot: RateSnapshot, product_id: str, coverage: Coverage) -> List[RiskFactor]:
    matches: List[RiskFactor] = []
    cover_type = (_cover_type_of(coverage) or "").strip().upper()

    for factor_type in _MULTIPLIER_TYPES:
        candidates = [f for f in snapshot.get_risk_factors(product_id, factor_type) if f.is_multiplicative]
        for factor in sorted(candidates, key=lambda f: f.factor_key):
            if factor_type == FactorType.AGE_BAND.value:
                if coverage.age is not None and _age_band_contains(factor.factor_key, coverage.age):
                    matches.append(factor)
            elif cover_type and factor.factor_key.strip().upper() == cover_type:
                matches.append(factor)
    return matches


def _apply_multipliers(amount: Decimal, factors: List[RiskFactor]) -> Tuple[Decimal, List[AppliedFactor]]:
    applied: List[AppliedFactor] = []
    for factor in factors:
        amount = amount * factor.multiplier
        applied.append(AppliedFactor(factor.factor_type, factor.factor_key, f"x{factor.multiplier}"))
    return amount, applied


# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------

def check_limits(limits: Optional[Limit], coverage: Coverage, *, allow_extra_members: bool = False) -> List[str]:
    """Advisory eligibility check. Empty list means within limits (or no limits)."""
    if limits is None:
        return []
    violations: List[str] = []

    if coverage.age is not None:
        if limits.min_age is not None and coverage.age < limits.min_age:
            violations.append(f"age {coverage.age} below minimum {limits.min_age}")
        if limits.max_age is not None and coverage.age > limits.max_age:
            violations.append(f"age {coverage.age} above maximum {limits.max_age}")

    if isinstance(coverage, FlatCoverage) and coverage.family_size is not None:
        size = coverage.family_size
        if limits.min_family_size is not None and size < limits.min_family_size:
            violations.append(f"family size {size} below minimum {limits.min_family_size}")
        if not allow_extra_members and limits.max_family_size is not None and size > limits.max_family_size:
            violations.append(f"family size {size} above maximum {limits.max_family_size}")

    if isinstance(coverage, PercentageCoverage):
        value = coverage.cover_value
        if limits.min_sum_insured is not None and value < limits.min_sum_insured:
            violations.append(f"sum insured {value} below minimum {limits.min_sum_insured}")
        if limits.max_sum_insured is not None and value > limits.max_sum_insured:
            violations.append(f"sum insured {value} above maximum {limits.max_sum_insured}")

    return violations
