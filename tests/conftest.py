"""Pytest fixtures for rating and payment tests."""

import pytest

from policy_gateway.database.postgres import InMemoryPaymentStore, InMemoryRateStore
from policy_gateway.database.redis import InMemoryRateVersion
from policy_gateway.integrations.clients.mocks.payments import MockGatewayAdapter
from policy_gateway.integrations.clients.mocks.policy_source import MockPolicySource
from policy_gateway.payments.ledger import PaymentLedger
from policy_gateway.payments.orchestrator import PaymentOrchestrator
from policy_gateway.rating.engine import RatingEngine
from policy_gateway.rating.rate_table import RateTable
from policy_gateway.utils.config_loader import load_rate_catalog


@pytest.fixture
def catalog():
    """Seed catalogue from config/rate_tables.yml."""
    return load_rate_catalog()


@pytest.fixture
def rate_store(catalog):
    return InMemoryRateStore(catalog)


@pytest.fixture
def version_source():
    return InMemoryRateVersion()


@pytest.fixture
def rate_table(rate_store, version_source):
    return RateTable(rate_store, cache_ttl_seconds=300, version_source=version_source)


@pytest.fixture
def engine(rate_table):
    return RatingEngine(rate_table)


@pytest.fixture
def payment_store():
    """In-memory payment store stub for tests."""
    return InMemoryPaymentStore()


@pytest.fixture
def ledger(payment_store):
    return PaymentLedger(payment_store, supported_currencies=["USD", "ZIG"])


@pytest.fixture
def gateway():
    return MockGatewayAdapter()


@pytest.fixture
def policy_source():
    return MockPolicySource()


@pytest.fixture
def orchestrator(policy_source, engine, ledger, gateway):
    return PaymentOrchestrator(
        policy_source=policy_source,
        rating_engine=engine,
        ledger=ledger,
        gateway=gateway,
        gateway_timeout_seconds=0.5,
    )
