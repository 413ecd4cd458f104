"""
RateTable: read-only lookup of products, packages, benefits, limits and
risk factors.

Lookups are served from an immutable ``RateSnapshot``. The snapshot is
reloaded from the backing store when its TTL expires, when ``invalidate()``
is called, or when the shared rate-table version moves (another process
re-seeded the catalogue and bumped the version).
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from policy_gateway.errors import PackageInactive, PackageNotFound, ProductNotFound
from policy_gateway.rating.models import Benefit, Limit, Package, Product, RiskFactor

logger = logging.getLogger(__name__)


@dataclass
class RateCatalog:
    """Raw catalogue rows as loaded from a store."""
    products: List[Product] = field(default_factory=list)
    packages: List[Package] = field(default_factory=list)
    benefits: List[Benefit] = field(default_factory=list)
    limits: List[Limit] = field(default_factory=list)
    risk_factors: List[RiskFactor] = field(default_factory=list)


class RateStore(Protocol):
    async def load_catalog(self) -> RateCatalog: ...


class RateVersionSource(Protocol):
    async def get_version(self) -> int: ...


class RateSnapshot:
    """Point-in-time, immutable view of the catalogue."""

    def __init__(self, catalog: RateCatalog, version: int = 0) -> None:
        self.version = version
        self._products: Dict[str, Product] = {p.product_id: p for p in catalog.products}
        self._packages: Dict[Tuple[str, str], Package] = {
            (p.product_id, p.package_id): p for p in catalog.packages
        }
        self._benefits: Dict[str, Tuple[Benefit, ...]] = _group(catalog.benefits, lambda b: b.package_id)
        self._limits: Dict[str, Limit] = {l.package_id: l for l in catalog.limits}
        self._factors: Dict[Tuple[str, str], Tuple[RiskFactor, ...]] = _group(
            (f for f in catalog.risk_factors if f.is_active),
            lambda f: (f.product_id, _value(f.factor_type)),
        )

    def __len__(self) -> int:
        return len(self._packages)

    def get_product(self, product_id: str) -> Product:
        product = self._products.get(product_id)
        if product is None:
            raise ProductNotFound(f"Product {product_id} not found", product_id=product_id)
        return product

    def get_package(self, product_id: str, package_id: str, *, include_inactive: bool = False) -> Package:
        product = self.get_product(product_id)
        package = self._packages.get((product_id, package_id))
        if package is None:
            raise PackageNotFound(
                f"Package {package_id} not found for product {product_id}",
                product_id=product_id,
                package_id=package_id,
            )
        if include_inactive:
            return package
        if not package.is_active:
            raise PackageInactive(
                f"Package {package_id} is inactive",
                product_id=product_id,
                package_id=package_id,
            )
        if not product.is_active:
            raise PackageInactive(
                f"Package {package_id} belongs to inactive product {product_id}",
                product_id=product_id,
                package_id=package_id,
            )
        return package

    def list_packages(self, product_id: str, *, include_inactive: bool = False) -> List[Package]:
        self.get_product(product_id)
        packages = [
            p for (pid, _), p in self._packages.items()
            if pid == product_id and (include_inactive or p.is_active)
        ]
        return sorted(packages, key=lambda p: (p.sort_order, p.package_id))

    def get_benefits(self, package_id: str) -> Tuple[Benefit, ...]:
        return self._benefits.get(package_id, ())

    def get_limits(self, package_id: str) -> Optional[Limit]:
        return self._limits.get(package_id)

    def get_risk_factors(self, product_id: str, factor_type: str) -> Tuple[RiskFactor, ...]:
        return self._factors.get((product_id, _value(factor_type)), ())


def _value(value) -> str:
    return str(getattr(value, "value", value))


def _group(items: Iterable, key: Callable) -> Dict:
    grouped: Dict = {}
    for item in items:
        grouped.setdefault(key(item), []).append(item)
    return {k: tuple(v) for k, v in grouped.items()}


class RateTable:
    """
    Cached, async facade over a ``RateStore``.

    Callers that need several lookups for one logical rating session should
    take ``await snapshot()`` once and query the snapshot directly.
    """

    def __init__(
        self,
        store: RateStore,
        *,
        cache_ttl_seconds: float = 300.0,
        version_source: Optional[RateVersionSource] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._ttl = cache_ttl_seconds
        self._version_source = version_source
        self._clock = clock
        self._snapshot: Optional[RateSnapshot] = None
        self._loaded_at = 0.0
        self._lock = asyncio.Lock()

    def invalidate(self) -> None:
        self._snapshot = None

    async def snapshot(self) -> RateSnapshot:
        current = self._snapshot
        if current is not None and not await self._is_stale(current):
            return current

        async with self._lock:
            current = self._snapshot
            if current is not None and not await self._is_stale(current):
                return current
            version = await self._current_version()
            catalog = await self._store.load_catalog()
            snapshot = RateSnapshot(catalog, version=version)
            self._snapshot = snapshot
            self._loaded_at = self._clock()
            logger.info(
                "Rate table loaded: version=%s products=%d packages=%d factors=%d",
                version,
                len(catalog.products),
                len(catalog.packages),
                len(catalog.risk_factors),
            )
            return snapshot

    async def _is_stale(self, snapshot: RateSnapshot) -> bool:
        if self._clock() - self._loaded_at >= self._ttl:
            return True
        if self._version_source is None:
            return False
        return await self._current_version() != snapshot.version

    async def _current_version(self) -> int:
        if self._version_source is None:
            return 0
        return await self._version_source.get_version()

    # -- Single lookups (each takes the current snapshot) --

    async def get_product(self, product_id: str) -> Product:
        return (await self.snapshot()).get_product(product_id)

    async def get_package(self, product_id: str, package_id: str, *, include_inactive: bool = False) -> Package:
        return (await self.snapshot()).get_package(product_id, package_id, include_inactive=include_inactive)

    async def get_benefits(self, package_id: str) -> Tuple[Benefit, ...]:
        return (await self.snapshot()).get_benefits(package_id)

    async def get_limits(self, package_id: str) -> Optional[Limit]:
        return (await self.snapshot()).get_limits(package_id)

    async def get_risk_factors(self, product_id: str, factor_type: str) -> Tuple[RiskFactor, ...]:
        return (await self.snapshot()).get_risk_factors(product_id, factor_type)
