import asyncio
from decimal import Decimal

import pytest

from policy_gateway.database.postgres import InMemoryPaymentStore
from policy_gateway.errors import (
    GatewayUnavailable,
    InvalidCallbackPayload,
    InvalidTransition,
    PolicyNotFound,
    PolicyNotRateable,
    PolicySourceUnavailable,
    UnknownReference,
)
from policy_gateway.integrations.clients.mocks.payments import MockGatewayAdapter
from policy_gateway.integrations.contracts.interfaces import PolicyRecord
from policy_gateway.payments.ledger import PaymentLedger
from policy_gateway.payments.models import PaymentRecord, PaymentStatus
from policy_gateway.payments.orchestrator import PaymentOrchestrator


class RaisingGateway(MockGatewayAdapter):
    def __init__(self, exc):
        super().__init__()
        self.exc = exc

    async def submit(self, record):
        raise self.exc


class HeldReadStore(InMemoryPaymentStore):
    """Returns the record as read, but only once ``release`` is set."""

    def __init__(self):
        super().__init__()
        self.hold_next_read = False
        self.read_taken = asyncio.Event()
        self.release = asyncio.Event()

    async def get(self, payment_reference):
        record = await super().get(payment_reference)
        if self.hold_next_read:
            self.hold_next_read = False
            self.read_taken.set()
            await self.release.wait()
        return record


def _orchestrator(policy_source, engine, ledger, gateway, timeout=0.5):
    return PaymentOrchestrator(
        policy_source=policy_source,
        rating_engine=engine,
        ledger=ledger,
        gateway=gateway,
        gateway_timeout_seconds=timeout,
    )


@pytest.mark.asyncio
async def test_initiate_rates_policy_without_fixed_premium(orchestrator, ledger):
    record = await orchestrator.initiate("PA-USD-000123", {}, "ICECASH", currency="USD")

    assert record.status is PaymentStatus.PENDING
    assert record.amount == Decimal("12.00")
    assert record.gateway_reference.startswith("GW-")
    assert record.payment_reference.startswith("USD-POL-")
    assert record.metadata["premium_source"] == "rated"
    assert record.metadata["premium_breakdown"]["total_premium"] == "12.00"

    log = await ledger.status_log(record.payment_reference)
    assert [(e.old_status, e.new_status) for e in log] == [(PaymentStatus.INITIATED, PaymentStatus.PENDING)]


@pytest.mark.asyncio
async def test_initiate_uses_fixed_premium(orchestrator):
    record = await orchestrator.initiate("DOM-ZIG-000321", currency="ZIG", payment_reference="ZIG-REF-1")

    assert record.payment_reference == "ZIG-REF-1"
    assert record.amount == Decimal("1250.00")
    assert record.currency == "ZIG"
    assert record.metadata["premium_source"] == "policy"
    assert "premium_breakdown" not in record.metadata


@pytest.mark.asyncio
async def test_initiate_with_coverage_inputs(orchestrator):
    record = await orchestrator.initiate("HCP-USD-000456", {"familySize": 8})

    assert record.amount == Decimal("7.00")


@pytest.mark.asyncio
async def test_gateway_rejection_marks_failed(policy_source, engine, ledger):
    orchestrator = _orchestrator(policy_source, engine, ledger, MockGatewayAdapter(acceptance_rate=0.0))

    record = await orchestrator.initiate("LIFE-USD-000789")

    assert record.status is PaymentStatus.FAILED
    assert record.amount == Decimal("45.50")


@pytest.mark.asyncio
async def test_gateway_timeout_leaves_payment_initiated(policy_source, engine, ledger):
    slow = MockGatewayAdapter(latency_seconds=1.0)
    orchestrator = _orchestrator(policy_source, engine, ledger, slow, timeout=0.05)

    with pytest.raises(GatewayUnavailable) as exc:
        await orchestrator.initiate("LIFE-USD-000789", payment_reference="REF-TIMEOUT")

    assert exc.value.retryable is True
    assert exc.value.payment_reference == "REF-TIMEOUT"
    record = await ledger.get_by_reference("REF-TIMEOUT")
    assert record.status is PaymentStatus.INITIATED
    assert await ledger.status_log("REF-TIMEOUT") == []


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [ConnectionResetError("reset"), GatewayUnavailable("down")])
async def test_gateway_transport_failure_leaves_payment_initiated(policy_source, engine, ledger, error):
    orchestrator = _orchestrator(policy_source, engine, ledger, RaisingGateway(error))

    with pytest.raises(GatewayUnavailable) as exc:
        await orchestrator.initiate("LIFE-USD-000789", payment_reference="REF-DOWN")

    assert exc.value.payment_reference == "REF-DOWN"
    assert (await ledger.get_by_reference("REF-DOWN")).status is PaymentStatus.INITIATED


@pytest.mark.asyncio
async def test_unknown_policy_and_unavailable_source(orchestrator, policy_source, ledger):
    with pytest.raises(PolicyNotFound):
        await orchestrator.initiate("NOPE-1")

    policy_source.unavailable = True
    with pytest.raises(PolicySourceUnavailable):
        await orchestrator.initiate("PA-USD-000123")

    assert await ledger.statistics() == []


@pytest.mark.asyncio
async def test_policy_without_premium_or_package_not_rateable(orchestrator, policy_source):
    policy_source.add(PolicyRecord(policy_number="BARE-1", holder_name="X", currency="USD"))

    with pytest.raises(PolicyNotRateable):
        await orchestrator.initiate("BARE-1")


@pytest.mark.asyncio
async def test_success_callback_settles_pending_payment(orchestrator, gateway, ledger):
    record = await orchestrator.initiate("PA-USD-000123")

    settled = await orchestrator.apply_callback(
        record.payment_reference, gateway.build_callback(record.payment_reference, "COMPLETED")
    )

    assert settled.status is PaymentStatus.SUCCESS
    assert settled.completed_at is not None
    assert settled.callback_received_at is not None
    log = await ledger.status_log(record.payment_reference)
    assert log[-1].changed_by == "callback"
    assert log[-1].additional_data["callback"]["status"] == "COMPLETED"


@pytest.mark.asyncio
async def test_duplicate_callback_is_noop(orchestrator, gateway, ledger):
    record = await orchestrator.initiate("PA-USD-000123")
    payload = gateway.build_callback(record.payment_reference, "SUCCESS")

    first = await orchestrator.apply_callback(record.payment_reference, payload)
    second = await orchestrator.apply_callback(record.payment_reference, payload)

    assert first.status is second.status is PaymentStatus.SUCCESS
    assert len(await ledger.status_log(record.payment_reference)) == 2


@pytest.mark.asyncio
async def test_conflicting_callback_after_terminal_is_ignored(orchestrator, gateway, ledger):
    record = await orchestrator.initiate("PA-USD-000123")
    await orchestrator.apply_callback(record.payment_reference, gateway.build_callback(record.payment_reference, "FAILED"))

    late = await orchestrator.apply_callback(
        record.payment_reference, gateway.build_callback(record.payment_reference, "SUCCESS")
    )

    assert late.status is PaymentStatus.FAILED
    assert [e.new_status for e in await ledger.status_log(record.payment_reference)] == [
        PaymentStatus.PENDING,
        PaymentStatus.FAILED,
    ]


@pytest.mark.asyncio
async def test_concurrent_duplicate_callbacks(orchestrator, gateway, ledger):
    record = await orchestrator.initiate("PA-USD-000123")
    payload = gateway.build_callback(record.payment_reference, "PAID")

    results = await asyncio.gather(*(orchestrator.apply_callback(record.payment_reference, payload) for _ in range(20)))

    assert {r.status for r in results} == {PaymentStatus.SUCCESS}
    terminal = [e for e in await ledger.status_log(record.payment_reference) if e.new_status is PaymentStatus.SUCCESS]
    assert len(terminal) == 1


@pytest.mark.asyncio
async def test_success_callback_on_initiated_goes_through_pending(policy_source, engine, ledger):
    orchestrator = _orchestrator(policy_source, engine, ledger, RaisingGateway(ConnectionResetError("x")))
    with pytest.raises(GatewayUnavailable):
        await orchestrator.initiate("LIFE-USD-000789", payment_reference="REF-LATE")

    settled = await orchestrator.apply_callback("REF-LATE", {"reference": "REF-LATE", "status": "SUCCESS"})

    assert settled.status is PaymentStatus.SUCCESS
    assert [(e.old_status, e.new_status) for e in await ledger.status_log("REF-LATE")] == [
        (PaymentStatus.INITIATED, PaymentStatus.PENDING),
        (PaymentStatus.PENDING, PaymentStatus.SUCCESS),
    ]


@pytest.mark.asyncio
async def test_callback_for_unknown_reference(orchestrator):
    with pytest.raises(UnknownReference):
        await orchestrator.apply_callback("NOPE", {"status": "SUCCESS"})


@pytest.mark.asyncio
async def test_callback_with_unmapped_status_or_other_reference(orchestrator):
    record = await orchestrator.initiate("PA-USD-000123")

    with pytest.raises(InvalidCallbackPayload):
        await orchestrator.apply_callback(record.payment_reference, {"status": "MAYBE"})
    with pytest.raises(InvalidCallbackPayload):
        await orchestrator.apply_callback(record.payment_reference, {"reference": "OTHER", "status": "SUCCESS"})


@pytest.mark.asyncio
async def test_cancel_pending_then_cannot_settle(orchestrator, gateway):
    record = await orchestrator.initiate("PA-USD-000123")

    cancelled = await orchestrator.cancel(record.payment_reference, "customer abandoned")
    late = await orchestrator.apply_callback(
        record.payment_reference, gateway.build_callback(record.payment_reference, "SUCCESS")
    )

    assert cancelled.status is PaymentStatus.CANCELLED
    assert late.status is PaymentStatus.CANCELLED
    with pytest.raises(InvalidTransition):
        await orchestrator.cancel(record.payment_reference)


@pytest.mark.asyncio
async def test_success_callback_overtaken_by_submit_response(policy_source, engine, gateway):
    store = HeldReadStore()
    ledger = PaymentLedger(store, supported_currencies=["USD"])
    orchestrator = _orchestrator(policy_source, engine, ledger, gateway)
    await ledger.create_payment(
        PaymentRecord(
            payment_reference="REF-RACE",
            policy_number="LIFE-USD-000789",
            amount=Decimal("45.50"),
            currency="USD",
            payment_method="ICECASH",
        )
    )

    # the callback reads INITIATED, then the submit response lands before it writes
    store.hold_next_read = True
    callback = asyncio.create_task(orchestrator.apply_callback("REF-RACE", {"status": "SUCCESS"}))
    await store.read_taken.wait()
    await ledger.transition("REF-RACE", PaymentStatus.PENDING, "Gateway accepted payment request", changed_by="gateway")
    store.release.set()

    settled = await callback

    assert settled.status is PaymentStatus.SUCCESS
    assert [(e.old_status, e.new_status) for e in await ledger.status_log("REF-RACE")] == [
        (PaymentStatus.INITIATED, PaymentStatus.PENDING),
        (PaymentStatus.PENDING, PaymentStatus.SUCCESS),
    ]
