from decimal import Decimal

import pytest

from policy_gateway.database.postgres import InMemoryRateStore
from policy_gateway.errors import PackageInactive, PackageNotFound, ProductNotFound
from policy_gateway.rating.models import Package, Product, ProductStatus, RiskFactor
from policy_gateway.rating.rate_table import RateCatalog, RateTable


class CountingStore(InMemoryRateStore):
    def __init__(self, catalog):
        super().__init__(catalog)
        self.loads = 0

    async def load_catalog(self):
        self.loads += 1
        return await super().load_catalog()


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _small_catalog(active=True, product_status=ProductStatus.ACTIVE):
    return RateCatalog(
        products=[Product("PA", "FLAT_RATE", status=product_status)],
        packages=[
            Package("PA_B", "PA", Decimal("2.50"), sort_order=2),
            Package("PA_A", "PA", Decimal("1.00"), sort_order=1, is_active=active),
        ],
        risk_factors=[
            RiskFactor("PA", "AGE_BAND", "18-30", multiplier=Decimal("1.0")),
            RiskFactor("PA", "AGE_BAND", "31-45", multiplier=Decimal("1.2"), is_active=False),
        ],
    )


@pytest.mark.asyncio
async def test_lookups_from_seed_catalogue(rate_table):
    product = await rate_table.get_product("DOMESTIC")
    package = await rate_table.get_package("DOMESTIC", "DOMESTIC_STANDARD")
    limits = await rate_table.get_limits("DOMESTIC_STANDARD")

    assert product.rating_strategy == "PERCENTAGE"
    assert package.rate == Decimal("0.75")
    assert package.minimum_premium == Decimal("25.00")
    assert limits.max_sum_insured == Decimal("100000")
    assert await rate_table.get_limits("TRAVEL_STANDARD") is None

    benefits = await rate_table.get_benefits("HCP_FAMILY")
    assert [b.type for b in benefits] == ["Daily Cash Benefit", "Maximum Days", "Family Members"]


@pytest.mark.asyncio
async def test_missing_product_and_package(rate_table):
    with pytest.raises(ProductNotFound) as exc:
        await rate_table.get_product("NOPE")
    assert exc.value.kind == "PRODUCT_NOT_FOUND"

    with pytest.raises(PackageNotFound):
        await rate_table.get_package("PA", "DOMESTIC_STANDARD")


@pytest.mark.asyncio
async def test_inactive_package_only_returned_on_request():
    table = RateTable(InMemoryRateStore(_small_catalog(active=False)))

    with pytest.raises(PackageInactive):
        await table.get_package("PA", "PA_A")

    package = await table.get_package("PA", "PA_A", include_inactive=True)
    assert package.is_active is False


@pytest.mark.asyncio
async def test_package_of_inactive_product_is_inactive():
    table = RateTable(InMemoryRateStore(_small_catalog(product_status=ProductStatus.INACTIVE)))

    with pytest.raises(PackageInactive):
        await table.get_package("PA", "PA_B")


@pytest.mark.asyncio
async def test_only_active_risk_factors_returned():
    table = RateTable(InMemoryRateStore(_small_catalog()))

    factors = await table.get_risk_factors("PA", "AGE_BAND")

    assert [f.factor_key for f in factors] == ["18-30"]
    assert await table.get_risk_factors("PA", "COVER_TYPE") == ()


@pytest.mark.asyncio
async def test_list_packages_sorted_by_sort_order():
    table = RateTable(InMemoryRateStore(_small_catalog()))
    snapshot = await table.snapshot()

    assert [p.package_id for p in snapshot.list_packages("PA")] == ["PA_A", "PA_B"]


@pytest.mark.asyncio
async def test_snapshot_cached_until_ttl_expires():
    store = CountingStore(_small_catalog())
    clock = FakeClock()
    table = RateTable(store, cache_ttl_seconds=60, clock=clock)

    first = await table.snapshot()
    clock.now = 59
    assert await table.snapshot() is first
    assert store.loads == 1

    clock.now = 61
    assert await table.snapshot() is not first
    assert store.loads == 2


@pytest.mark.asyncio
async def test_invalidate_forces_reload():
    store = CountingStore(_small_catalog())
    table = RateTable(store, cache_ttl_seconds=3600)

    await table.snapshot()
    table.invalidate()
    await table.snapshot()

    assert store.loads == 2


@pytest.mark.asyncio
async def test_version_bump_reloads_new_rates(version_source):
    store = CountingStore(_small_catalog())
    table = RateTable(store, cache_ttl_seconds=3600, version_source=version_source)

    before = await table.get_package("PA", "PA_B")
    store.replace(
        RateCatalog(
            products=[Product("PA", "FLAT_RATE")],
            packages=[Package("PA_B", "PA", Decimal("3.00"))],
        )
    )
    assert (await table.get_package("PA", "PA_B")).rate == before.rate

    await version_source.bump_version()
    after = await table.get_package("PA", "PA_B")

    assert after.rate == Decimal("3.00")
    assert (await table.snapshot()).version == 1


@pytest.mark.asyncio
async def test_old_snapshot_unchanged_after_reload():
    store = CountingStore(_small_catalog())
    table = RateTable(store, cache_ttl_seconds=3600)

    old = await table.snapshot()
    store.replace(RateCatalog(products=[Product("PA", "FLAT_RATE")]))
    table.invalidate()
    await table.snapshot()

    assert old.get_package("PA", "PA_B").rate == Decimal("2.50")
