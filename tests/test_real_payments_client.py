import json
from decimal import Decimal

import httpx
import pytest

from policy_gateway.errors import GatewayUnavailable
from policy_gateway.integrations.clients.real_http.payments import RealPaymentsClient
from policy_gateway.payments.models import PaymentRecord

RECORD = PaymentRecord(
    payment_reference="USD-POL-1-ABC123",
    policy_number="PA-USD-000123",
    amount=Decimal("12.00"),
    currency="USD",
    payment_method="ICECASH",
    metadata={"policy_holder_name": "Tendai Moyo", "product_category": "Accident and Health"},
)


def _client(handler, **kwargs):
    return RealPaymentsClient(
        base_url="https://pay.example/",
        api_key="secret",
        initiate_path="/v1/initiate",
        callback_url="https://gw.example/api/v1/payments/callback",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_submit_posts_payment_and_normalises_acceptance():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": "PROCESSING", "transaction_id": "TX-42"})

    submission = await _client(handler).submit(RECORD)

    assert submission.accepted is True
    assert submission.gateway_reference == "TX-42"
    assert seen["url"] == "https://pay.example/v1/initiate"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"]["amount"] == "12.00"
    assert seen["body"]["reference"] == "USD-POL-1-ABC123"
    assert seen["body"]["callback_url"] == "https://gw.example/api/v1/payments/callback"
    assert seen["body"]["metadata"]["policy_holder_name"] == "Tendai Moyo"


@pytest.mark.asyncio
async def test_client_error_is_business_rejection():
    def handler(request):
        return httpx.Response(400, json={"message": "Insufficient funds"})

    submission = await _client(handler).submit(RECORD)

    assert submission.accepted is False
    assert submission.message == "Insufficient funds"


@pytest.mark.asyncio
async def test_declined_status_in_success_response():
    def handler(request):
        return httpx.Response(200, json={"status": "DECLINED", "message": "Card blocked"})

    submission = await _client(handler).submit(RECORD)

    assert submission.accepted is False
    assert submission.message == "Card blocked"


def _server_error(request):
    return httpx.Response(502, text="bad gateway")


def _timeout(request):
    raise httpx.ConnectTimeout("slow", request=request)


def _refused(request):
    raise httpx.ConnectError("refused", request=request)


@pytest.mark.asyncio
@pytest.mark.parametrize("handler", [_server_error, _timeout, _refused], ids=["http-5xx", "timeout", "connect-error"])
async def test_transport_failures_raise_gateway_unavailable(handler):
    with pytest.raises(GatewayUnavailable) as exc:
        await _client(handler).submit(RECORD)

    assert exc.value.payment_reference == "USD-POL-1-ABC123"
    assert exc.value.retryable is True


@pytest.mark.asyncio
async def test_non_json_rejection_body():
    def handler(request):
        return httpx.Response(403, text="forbidden")

    submission = await _client(handler).submit(RECORD)

    assert submission.accepted is False
    assert submission.raw == {"body": "forbidden"}


@pytest.mark.asyncio
async def test_missing_base_url(monkeypatch):
    monkeypatch.delenv("PARTNER_PAYMENT_API_URL", raising=False)

    with pytest.raises(ValueError):
        await RealPaymentsClient(base_url="").submit(RECORD)
