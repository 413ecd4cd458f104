"""
Service wiring.

The selection of in-memory vs SQL stores and of mock vs real integration
clients happens here, from GatewayConfig. Every component receives its
collaborators explicitly; nothing is a module-level singleton.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from policy_gateway.api.ip_filter import IPFilter
from policy_gateway.integrations.contracts.interfaces import GatewayAdapter, PolicySource
from policy_gateway.payments.ledger import PaymentLedger
from policy_gateway.payments.orchestrator import PaymentOrchestrator
from policy_gateway.rating.engine import RatingEngine
from policy_gateway.rating.rate_table import RateTable
from policy_gateway.utils.config_loader import GatewayConfig, load_rate_catalog

logger = logging.getLogger(__name__)


@dataclass
class GatewayServices:
    config: GatewayConfig
    rate_table: RateTable
    rating_engine: RatingEngine
    ledger: PaymentLedger
    orchestrator: PaymentOrchestrator
    policy_source: PolicySource
    gateway: GatewayAdapter
    ip_filter: IPFilter
    version_source: Any
    storage: str = "memory"
    closers: List[Callable[[], None]] = field(default_factory=list)

    def close(self) -> None:
        for close in self.closers:
            close()


def build_services(
    config: GatewayConfig,
    *,
    policy_source: Optional[PolicySource] = None,
    gateway: Optional[GatewayAdapter] = None,
) -> GatewayServices:
    closers: List[Callable[[], None]] = []

    # Stores: real SQL when DATABASE_URL is set, else in-memory stubs
    if config.storage.database_url:
        from policy_gateway.database.postgres_real import Database, SqlPaymentStore, SqlRateStore

        db = Database(config.storage.database_url)
        rate_store = SqlRateStore(db)
        payment_store = SqlPaymentStore(db)
        closers.append(db.dispose)
        storage = "sql"
    else:
        from policy_gateway.database.postgres import InMemoryPaymentStore, InMemoryRateStore

        rate_store = InMemoryRateStore(load_rate_catalog(config.rate_table.catalog_path))
        payment_store = InMemoryPaymentStore()
        storage = "memory"

    if config.storage.redis_url:
        from policy_gateway.database.redis_real import RedisRateVersion

        version_source = RedisRateVersion(url=config.storage.redis_url)
    else:
        from policy_gateway.database.redis import InMemoryRateVersion

        version_source = InMemoryRateVersion()

    # Integrations: real clients only when INTEGRATIONS_MODE=real
    real = config.integrations.mode == "real"
    if policy_source is None:
        if real and config.storage.policy_db_urls:
            from policy_gateway.database.policy_lookup import SqlPolicySource

            sql_source = SqlPolicySource(config.storage.policy_db_urls)
            closers.append(sql_source.dispose)
            policy_source = sql_source
        else:
            from policy_gateway.integrations.clients.mocks.policy_source import MockPolicySource

            policy_source = MockPolicySource()

    if gateway is None:
        if real and config.integrations.partner_payment_api_url:
            from policy_gateway.integrations.clients.real_http.payments import RealPaymentsClient

            gateway = RealPaymentsClient(
                base_url=config.integrations.partner_payment_api_url,
                api_key=config.integrations.partner_payment_api_key,
                timeout_seconds=config.payments.gateway_timeout_seconds,
            )
        else:
            from policy_gateway.integrations.clients.mocks.payments import MockGatewayAdapter

            gateway = MockGatewayAdapter()

    rate_table = RateTable(
        rate_store,
        cache_ttl_seconds=config.rate_table.cache_ttl_seconds,
        version_source=version_source,
    )
    rating_engine = RatingEngine(rate_table, enforce_limits=config.limits.enforce)
    ledger = PaymentLedger(payment_store, supported_currencies=config.payments.supported_currencies)
    orchestrator = PaymentOrchestrator(
        policy_source=policy_source,
        rating_engine=rating_engine,
        ledger=ledger,
        gateway=gateway,
        gateway_timeout_seconds=config.payments.gateway_timeout_seconds,
        default_currency=config.payments.default_currency,
        reference_prefix=config.payments.reference_prefix,
    )

    logger.info(
        "Gateway services ready: storage=%s integrations=%s policy_source=%s gateway=%s",
        storage,
        config.integrations.mode,
        type(policy_source).__name__,
        type(gateway).__name__,
    )
    return GatewayServices(
        config=config,
        rate_table=rate_table,
        rating_engine=rating_engine,
        ledger=ledger,
        orchestrator=orchestrator,
        policy_source=policy_source,
        gateway=gateway,
        ip_filter=IPFilter(config.ip_filter),
        version_source=version_source,
        storage=storage,
        closers=closers,
    )
