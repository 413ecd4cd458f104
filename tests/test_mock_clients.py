from decimal import Decimal

import pytest
import redis

from policy_gateway.database.redis_real import RedisRateVersion
from policy_gateway.errors import GatewayUnavailable, PolicyNotFound, PolicySourceUnavailable, UnsupportedCurrency
from policy_gateway.integrations.clients.mocks.payments import MockGatewayAdapter
from policy_gateway.integrations.clients.mocks.policy_source import MockPolicySource
from policy_gateway.payments.models import PaymentRecord

RECORD = PaymentRecord(
    payment_reference="REF-M1",
    policy_number="PA-USD-000123",
    amount=Decimal("12.00"),
    currency="USD",
    payment_method="ICECASH",
)


@pytest.mark.asyncio
async def test_mock_gateway_accepts_and_builds_callback():
    gateway = MockGatewayAdapter()

    submission = await gateway.submit(RECORD)
    callback = gateway.build_callback("REF-M1", "PAID", amount="12.00")

    assert submission.accepted is True
    assert submission.gateway_reference.startswith("GW-")
    assert callback["transaction_id"] == submission.gateway_reference
    assert callback["status"] == "PAID"
    assert callback["amount"] == "12.00"


@pytest.mark.asyncio
async def test_mock_gateway_declines_and_outage():
    declined = await MockGatewayAdapter(acceptance_rate=0.0).submit(RECORD)

    assert declined.accepted is False
    assert declined.gateway_reference is None
    with pytest.raises(GatewayUnavailable):
        await MockGatewayAdapter(unavailable=True).submit(RECORD)


@pytest.mark.asyncio
async def test_mock_policy_source_lookup():
    source = MockPolicySource()

    life = await source.search("", "USD", product_filter="Life")
    zig = await source.get_details(" DOM-ZIG-000321 ", "zig")

    assert [p.policy_number for p in life] == ["LIFE-USD-000789"]
    assert zig.premium == Decimal("1250.00")
    with pytest.raises(PolicyNotFound):
        await source.get_details("DOM-ZIG-000321", "USD")
    with pytest.raises(UnsupportedCurrency):
        await source.search("", "GBP")

    source.unavailable = True
    with pytest.raises(PolicySourceUnavailable):
        await source.get_details("PA-USD-000123", "USD")


class FlakyRedis:
    def __init__(self):
        self.value = "3"
        self.down = False

    def get(self, key):
        if self.down:
            raise redis.ConnectionError("connection refused")
        return self.value

    def incr(self, key):
        self.value = str(int(self.value) + 1)
        return int(self.value)

    def ping(self):
        if self.down:
            raise redis.ConnectionError("connection refused")
        return True


@pytest.mark.asyncio
async def test_redis_version_falls_back_to_last_known():
    version = RedisRateVersion("redis://localhost:6379/0")
    fake = FlakyRedis()
    version._client = fake

    assert await version.get_version() == 3
    assert await version.bump_version() == 4
    fake.down = True
    assert await version.get_version() == 4
    assert version.ping() is False
