"""Shared fixtures: controllable clock, Redis and Daraja doubles, an in-memory gateway."""

import os

# Settings are read at import time; tests never touch Postgres.
os.environ.setdefault("POSTGRES_DSN", "sqlite://")
os.environ.setdefault("API_KEY", "test-key")

import httpx
import pytest
import redis

from pushpay.common.config import CommonSettings
from pushpay.common.documents import InMemoryDocumentStore
from pushpay.services.gateway.provider import PushResult, TokenGrant
from pushpay.services.gateway.service import GatewayService

START = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """The subset of `redis.Redis` used by the attempt limiter."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.values: dict[str, int] = {}
        self.ttls: dict[str, int] = {}

    def _check(self) -> None:
        if self.fail:
            raise redis.ConnectionError("redis unavailable")

    def get(self, key):
        self._check()
        value = self.values.get(key)
        return None if value is None else str(value)

    def incr(self, key):
        self._check()
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    def expire(self, key, seconds):
        self._check()
        self.ttls[key] = seconds
        return True


class FakeProvider:
    """Records every Daraja call and answers from configurable fields."""

    def __init__(self) -> None:
        self.token_calls = 0
        self.token_error: Exception | None = None
        self.ttl_seconds = 3599
        self.pushes: list[tuple[dict, str]] = []
        self.push_error: Exception | None = None
        self.omit_correlation_key = False
        self.status_queries: list[tuple[dict, str]] = []
        self.status_response: dict = {}
        self.registrations: list[dict] = []

    async def issue_token(self, basic_auth: str) -> TokenGrant:
        self.token_calls += 1
        if self.token_error is not None:
            raise self.token_error
        return TokenGrant(token=f"tok-{self.token_calls}", ttl_seconds=self.ttl_seconds)

    async def push_payment(self, payload: dict, access_token: str) -> PushResult:
        self.pushes.append((payload, access_token))
        if self.push_error is not None:
            raise self.push_error
        raw = {"MerchantRequestID": f"mr_{len(self.pushes)}", "ResponseCode": "0"}
        if not self.omit_correlation_key:
            raw["CheckoutRequestID"] = f"ws_{len(self.pushes)}"
        return PushResult(correlation_key=raw.get("CheckoutRequestID"), raw=raw)

    async def query_transaction_status(self, payload: dict, access_token: str) -> dict:
        self.status_queries.append((payload, access_token))
        return self.status_response

    async def register_urls(self, payload: dict, access_token: str) -> dict:
        self.registrations.append(payload)
        return {"ResponseDescription": "success"}


def make_config(**overrides) -> CommonSettings:
    values = {
        "postgres_dsn": "sqlite://",
        "api_key": "test-key",
        "mpesa_consumer_key": "key",
        "mpesa_consumer_secret": "secret",
        "mpesa_shortcode": "174379",
        "mpesa_passkey": "passkey",
        "mpesa_callback_url": "https://example.test/mpesa/callback",
    }
    values.update(overrides)
    return CommonSettings(**values)


def stk_callback(checkout_request_id, result_code=0, amount=100, receipt="RCP123", phone=254708374149):
    """Webhook body in the shape Daraja posts it."""

    callback = {
        "MerchantRequestID": "mr_1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully." if result_code == 0 else "Request cancelled",
    }
    if amount is not None:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "TransactionDate", "Value": 20261017101500},
                {"Name": "PhoneNumber", "Value": phone},
            ]
        }
    return {"Body": {"stkCallback": callback}}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def documents():
    return InMemoryDocumentStore()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def gateway(config, documents, fake_redis, provider, clock):
    return GatewayService(config, documents, fake_redis, provider=provider, clock=clock)


@pytest.fixture
def mock_transport():
    """`httpx.MockTransport` factory that also records requests."""

    def build(handler):
        seen: list[httpx.Request] = []

        def recording(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return handler(request)

        transport = httpx.MockTransport(recording)
        transport.seen = seen
        return transport

    return build
