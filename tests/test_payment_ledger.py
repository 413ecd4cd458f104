import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from policy_gateway.errors import DuplicateReference, InvalidPaymentRequest, InvalidTransition, PaymentNotFound
from policy_gateway.payments.models import (
    ALLOWED_TRANSITIONS,
    PaymentRecord,
    PaymentStatus,
    can_transition,
    generate_payment_reference,
    is_terminal_status,
    utcnow,
)


def _record(reference="USD-POL-1-AAAAAA", policy="PA-USD-000123", amount="12.00", **kw):
    return PaymentRecord(
        payment_reference=reference,
        policy_number=policy,
        amount=Decimal(amount),
        currency=kw.pop("currency", "USD"),
        payment_method="ICECASH",
        **kw,
    )


def test_state_machine_has_no_exit_from_terminal_states():
    for status in PaymentStatus:
        if is_terminal_status(status):
            assert ALLOWED_TRANSITIONS[status] == frozenset()
            assert not any(can_transition(status, target) for target in PaymentStatus)

    assert can_transition(PaymentStatus.INITIATED, PaymentStatus.FAILED)
    assert not can_transition(PaymentStatus.INITIATED, PaymentStatus.SUCCESS)
    assert can_transition(PaymentStatus.PENDING, PaymentStatus.CANCELLED)


def test_generated_reference_format():
    reference = generate_payment_reference("zig")
    currency, prefix, millis, suffix = reference.split("-")

    assert (currency, prefix) == ("ZIG", "POL")
    assert millis.isdigit()
    assert len(suffix) == 6 and suffix.isalnum() and suffix.upper() == suffix


@pytest.mark.asyncio
async def test_create_payment_starts_initiated(ledger):
    created = await ledger.create_payment(_record(status=PaymentStatus.SUCCESS, currency="usd"))

    assert created.status is PaymentStatus.INITIATED
    assert created.currency == "USD"
    assert await ledger.status_log(created.payment_reference) == []


@pytest.mark.asyncio
async def test_duplicate_reference_rejected_and_ledger_unchanged(ledger):
    await ledger.create_payment(_record(amount="12.00"))

    with pytest.raises(DuplicateReference):
        await ledger.create_payment(_record(amount="99.00"))

    stored = await ledger.get_by_reference("USD-POL-1-AAAAAA")
    assert stored.amount == Decimal("12.00")
    assert len(await ledger.history("PA-USD-000123")) == 1


@pytest.mark.asyncio
async def test_create_payment_validates_record(ledger):
    with pytest.raises(InvalidPaymentRequest) as exc:
        await ledger.create_payment(_record(amount="0", currency="EUR"))

    assert "amount must be greater than zero" in exc.value.context["errors"]
    assert "currency 'EUR' is not supported" in exc.value.context["errors"]


@pytest.mark.asyncio
async def test_transition_appends_one_log_entry(ledger):
    await ledger.create_payment(_record())

    pending = await ledger.transition("USD-POL-1-AAAAAA", PaymentStatus.PENDING, "accepted", gateway_reference="GW-1")
    success = await ledger.transition(
        "USD-POL-1-AAAAAA", PaymentStatus.SUCCESS, "paid", {"channel": "test"}, from_callback=True
    )

    assert pending.gateway_reference == "GW-1"
    assert success.status is PaymentStatus.SUCCESS
    assert success.gateway_reference == "GW-1"
    assert success.completed_at is not None
    assert success.callback_received_at is not None

    log = await ledger.status_log("USD-POL-1-AAAAAA")
    assert [(e.old_status, e.new_status) for e in log] == [
        (PaymentStatus.INITIATED, PaymentStatus.PENDING),
        (PaymentStatus.PENDING, PaymentStatus.SUCCESS),
    ]
    assert log[1].additional_data == {"channel": "test"}


@pytest.mark.asyncio
async def test_transition_out_of_failed_is_rejected_without_log(ledger):
    await ledger.create_payment(_record())
    await ledger.transition("USD-POL-1-AAAAAA", PaymentStatus.FAILED, "declined")

    with pytest.raises(InvalidTransition) as exc:
        await ledger.transition("USD-POL-1-AAAAAA", PaymentStatus.SUCCESS, "late success")

    assert exc.value.context == {
        "payment_reference": "USD-POL-1-AAAAAA",
        "current_status": "FAILED",
        "attempted_status": "SUCCESS",
    }
    assert len(await ledger.status_log("USD-POL-1-AAAAAA")) == 1
    assert (await ledger.get_by_reference("USD-POL-1-AAAAAA")).status is PaymentStatus.FAILED


@pytest.mark.asyncio
async def test_transition_unknown_reference(ledger):
    with pytest.raises(PaymentNotFound):
        await ledger.transition("missing", PaymentStatus.PENDING)


@pytest.mark.asyncio
async def test_concurrent_transitions_single_winner(ledger):
    await ledger.create_payment(_record())
    await ledger.transition("USD-POL-1-AAAAAA", PaymentStatus.PENDING, "accepted")

    targets = [PaymentStatus.SUCCESS if i % 2 else PaymentStatus.FAILED for i in range(100)]
    results = await asyncio.gather(
        *(ledger.transition("USD-POL-1-AAAAAA", t, f"attempt {i}") for i, t in enumerate(targets)),
        return_exceptions=True,
    )

    winners = [r for r in results if isinstance(r, PaymentRecord)]
    losers = [r for r in results if isinstance(r, InvalidTransition)]
    assert len(winners) == 1
    assert len(losers) == 99

    final = await ledger.get_by_reference("USD-POL-1-AAAAAA")
    log = await ledger.status_log("USD-POL-1-AAAAAA")
    terminal_entries = [e for e in log if is_terminal_status(e.new_status)]
    assert final.status == winners[0].status
    assert len(terminal_entries) == 1
    assert terminal_entries[0].new_status == final.status


@pytest.mark.asyncio
async def test_concurrent_transitions_from_initiated(ledger):
    await ledger.create_payment(_record())

    results = await asyncio.gather(
        *(
            ledger.transition("USD-POL-1-AAAAAA", PaymentStatus.SUCCESS if i % 2 else PaymentStatus.FAILED)
            for i in range(100)
        ),
        return_exceptions=True,
    )

    # INITIATED -> SUCCESS is not legal, so FAILED is the only possible winner
    assert sum(isinstance(r, PaymentRecord) for r in results) == 1
    assert (await ledger.get_by_reference("USD-POL-1-AAAAAA")).status is PaymentStatus.FAILED
    assert len(await ledger.status_log("USD-POL-1-AAAAAA")) == 1


@pytest.mark.asyncio
async def test_history_newest_first_with_status_log(ledger):
    now = utcnow()
    await ledger.create_payment(_record("REF-OLD", initiated_at=now - timedelta(days=2)))
    await ledger.create_payment(_record("REF-NEW", initiated_at=now))
    await ledger.create_payment(_record("REF-OTHER", policy="OTHER"))
    await ledger.transition("REF-OLD", PaymentStatus.CANCELLED, "abandoned")

    history = await ledger.history("PA-USD-000123")
    assert [r.payment_reference for r in history] == ["REF-NEW", "REF-OLD"]
    assert history[1].status_log == []

    detailed = await ledger.history("PA-USD-000123", include_status_log=True)
    assert [e.new_status for e in detailed[1].status_log] == [PaymentStatus.CANCELLED]
    assert "status_log" in detailed[1].to_dict()


@pytest.mark.asyncio
async def test_stale_lists_old_non_terminal_payments(ledger):
    now = utcnow()
    await ledger.create_payment(_record("REF-STUCK", initiated_at=now - timedelta(hours=2)))
    await ledger.create_payment(_record("REF-DONE", initiated_at=now - timedelta(hours=2)))
    await ledger.create_payment(_record("REF-FRESH"))
    await ledger.transition("REF-DONE", PaymentStatus.FAILED)

    stale = await ledger.stale(timedelta(minutes=30))

    assert [r.payment_reference for r in stale] == ["REF-STUCK"]


@pytest.mark.asyncio
async def test_statistics_grouped_by_status_and_currency(ledger):
    await ledger.create_payment(_record("A", amount="10.00"))
    await ledger.create_payment(_record("B", amount="5.50"))
    await ledger.create_payment(_record("C", amount="100.00", currency="ZIG"))
    await ledger.transition("B", PaymentStatus.FAILED)

    stats = await ledger.statistics()
    assert {(s["status"], s["currency"]): (s["count"], s["total_amount"]) for s in stats} == {
        ("FAILED", "USD"): (1, Decimal("5.50")),
        ("INITIATED", "USD"): (1, Decimal("10.00")),
        ("INITIATED", "ZIG"): (1, Decimal("100.00")),
    }

    zig_only = await ledger.statistics("zig")
    assert [(s["status"], s["currency"]) for s in zig_only] == [("INITIATED", "ZIG")]
