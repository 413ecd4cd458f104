from decimal import Decimal

import pytest
from sqlalchemy import create_engine, text

from policy_gateway.database.policy_lookup import SqlPolicySource, row_to_policy
from policy_gateway.errors import PolicyNotFound, PolicySourceUnavailable, UnsupportedCurrency

_DDL = """
CREATE TABLE {view} (
    insurance_ref TEXT, resolved_name TEXT, product_category TEXT, description TEXT,
    "Status" TEXT, "GROSS_PREMIUM" NUMERIC, "SUM_INSURED" NUMERIC, cover_start_date TEXT,
    expiry_date TEXT, mobile TEXT, agent_shortname TEXT, alternative_identifier TEXT
)
"""

_INSERT = """
INSERT INTO {view} VALUES (
    :ref, :name, :category, 'cover', 'ACTIVE', :premium, 5000, '2024-01-01',
    '2024-12-31', '+263770000000', 'AGT', :alt
)
"""


def _make_policy_db(path, view, rows):
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        conn.execute(text(_DDL.format(view=view)))
        for row in rows:
            conn.execute(text(_INSERT.format(view=view)), row)
    engine.dispose()
    return f"sqlite:///{path}"


@pytest.fixture
def source(tmp_path):
    usd = _make_policy_db(
        tmp_path / "usd.db",
        "VClient_LookUP_USD",
        [
            {"ref": "P-200", "name": " Tendai Moyo ", "category": "Accident and Health", "premium": "12.5", "alt": "ID-77"},
            {"ref": "P-100", "name": "Farai Ncube", "category": "Life Assurance", "premium": "45.5", "alt": None},
        ],
    )
    zig = _make_policy_db(
        tmp_path / "zig.db",
        "VClient_LookUP_ZIG",
        [{"ref": "Z-1", "name": "Chipo Dube", "category": "Property", "premium": None, "alt": None}],
    )
    policy_source = SqlPolicySource({"usd": usd, "ZIG": zig})
    yield policy_source
    policy_source.dispose()


@pytest.mark.asyncio
async def test_search_orders_by_reference_and_filters_category(source):
    everything = await source.search("", "USD")
    life = await source.search("", "usd", product_filter="Life")
    general = await source.search("", "USD", product_filter="General")

    assert [p.policy_number for p in everything] == ["P-100", "P-200"]
    assert [p.policy_number for p in life] == ["P-100"]
    assert [p.policy_number for p in general] == ["P-200"]


@pytest.mark.asyncio
async def test_get_details_by_reference_or_alternative_identifier(source):
    by_ref = await source.get_details(" P-200 ", "USD")
    by_alt = await source.get_details("ID-77", "USD")

    assert by_ref == by_alt
    assert by_ref.holder_name == "Tendai Moyo"
    assert by_ref.premium == Decimal("12.5")
    assert by_ref.database == "ZIMNATUSD"
    assert by_ref.insurance_type == "General"
    assert by_ref.product_id is None


@pytest.mark.asyncio
async def test_currencies_are_segregated(source):
    zig = await source.get_details("Z-1", "ZIG")

    assert zig.currency == "ZIG"
    assert zig.database == "ZIMNATZIG"
    assert zig.has_fixed_premium is False
    with pytest.raises(PolicyNotFound):
        await source.get_details("Z-1", "USD")


@pytest.mark.asyncio
async def test_lookup_errors(source):
    with pytest.raises(UnsupportedCurrency):
        await source.search("P-100", "EUR")
    assert await source.search("NOPE", "USD") == []


@pytest.mark.asyncio
async def test_unconfigured_or_broken_database(tmp_path):
    missing = SqlPolicySource({"USD": ""})
    broken = SqlPolicySource({"USD": f"sqlite:///{tmp_path / 'empty.db'}"})

    with pytest.raises(PolicySourceUnavailable):
        await missing.get_details("P-1", "USD")
    with pytest.raises(PolicySourceUnavailable):
        await broken.search("P-1", "USD")
    broken.dispose()


def test_row_to_policy_defaults():
    policy = row_to_policy({"product_category": "Group Life", "GROSS_PREMIUM": "n/a"}, "USD")

    assert policy.policy_number == "N/A"
    assert policy.holder_name == "Unknown"
    assert policy.insurance_type == "Life"
    assert policy.status == "UNKNOWN"
    assert policy.premium is None
