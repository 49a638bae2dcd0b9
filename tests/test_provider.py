"""Daraja client wire format, via `httpx.MockTransport`."""

import base64
import json
from datetime import datetime, timezone

import httpx
import pytest

from pushpay.common.errors import ProviderCallFailed
from pushpay.services.gateway.provider import DarajaClient, stk_password, stk_timestamp


def test_timestamp_is_east_africa_time():
    assert stk_timestamp(datetime(2026, 10, 17, 21, 30, 5, tzinfo=timezone.utc)) == "20261018003005"


def test_password_is_base64_of_shortcode_passkey_timestamp():
    password = stk_password("174379", "passkey", "20261017101500")

    assert base64.b64decode(password).decode() == "174379passkey20261017101500"


@pytest.mark.asyncio
async def test_issue_token(mock_transport):
    def handler(request):
        assert request.url.path == "/oauth/v1/generate"
        assert request.url.params["grant_type"] == "client_credentials"
        assert request.headers["Authorization"] == "Basic YmFzaWM="
        return httpx.Response(200, json={"access_token": "abc", "expires_in": "3599"})

    client = DarajaClient("https://sandbox.test", transport=mock_transport(handler))

    grant = await client.issue_token("YmFzaWM=")

    assert grant.token == "abc"
    assert grant.ttl_seconds == 3599


@pytest.mark.asyncio
async def test_issue_token_without_access_token(mock_transport):
    client = DarajaClient("https://sandbox.test", transport=mock_transport(lambda _: httpx.Response(200, json={})))

    with pytest.raises(ValueError):
        await client.issue_token("YmFzaWM=")


@pytest.mark.asyncio
async def test_push_payment_returns_correlation_key(mock_transport):
    def handler(request):
        assert request.url.path == "/mpesa/stkpush/v1/processrequest"
        assert request.headers["Authorization"] == "Bearer tok"
        assert json.loads(request.content)["Amount"] == 100
        return httpx.Response(200, json={"CheckoutRequestID": "ws_1", "ResponseCode": "0"})

    client = DarajaClient("https://sandbox.test", transport=mock_transport(handler))

    result = await client.push_payment({"Amount": 100}, "tok")

    assert result.correlation_key == "ws_1"
    assert result.raw["ResponseCode"] == "0"


@pytest.mark.asyncio
async def test_push_payment_without_correlation_key(mock_transport):
    client = DarajaClient(
        "https://sandbox.test",
        transport=mock_transport(lambda _: httpx.Response(200, json={"errorMessage": "Bad Request"})),
    )

    result = await client.push_payment({"Amount": 100}, "tok")

    assert result.correlation_key is None


@pytest.mark.asyncio
async def test_push_payment_http_error(mock_transport):
    client = DarajaClient(
        "https://sandbox.test",
        transport=mock_transport(lambda _: httpx.Response(500, json={"errorMessage": "boom"})),
    )

    with pytest.raises(ProviderCallFailed):
        await client.push_payment({"Amount": 100}, "tok")


@pytest.mark.asyncio
async def test_status_query_retries_then_succeeds(mock_transport):
    responses = [httpx.Response(503), httpx.Response(503), httpx.Response(200, json={"ResponseCode": "0"})]
    transport = mock_transport(lambda _: responses.pop(0))
    client = DarajaClient("https://sandbox.test", status_retry_delay_seconds=0, transport=transport)

    data = await client.query_transaction_status({"TransactionID": "p1"}, "tok")

    assert data == {"ResponseCode": "0"}
    assert len(transport.seen) == 3


@pytest.mark.asyncio
async def test_status_query_gives_up_after_max_retries(mock_transport):
    transport = mock_transport(lambda _: httpx.Response(500))
    client = DarajaClient("https://sandbox.test", status_retry_delay_seconds=0, transport=transport)

    with pytest.raises(ProviderCallFailed):
        await client.query_transaction_status({"TransactionID": "p1"}, "tok")

    assert len(transport.seen) == 3
