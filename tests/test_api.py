"""HTTP surface: routing, error mapping and admin key enforcement."""

import pytest
from conftest import stk_callback
from fastapi.testclient import TestClient

from pushpay.services.gateway.api import create_app

ADMIN = {"x-api-key": "test-key"}


@pytest.fixture
def client(gateway):
    return TestClient(create_app(gateway, start_background=False))


def initiate_body(**overrides):
    body = {
        "userId": "u1",
        "invoiceId": "inv1",
        "paymentId": "p1",
        "phoneNumber": "254708374149",
        "amount": 100,
    }
    body.update(overrides)
    return body


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_initiate_payment(client):
    resp = client.post("/initiate-payment", json=initiate_body())

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["paymentId"] == "p1"
    assert body["checkoutRequestId"] == "ws_1"


def test_initiate_accepts_customer_phone_number_and_numeric_ids(client, provider):
    body = initiate_body(userId=42)
    body["customerPhoneNumber"] = body.pop("phoneNumber")

    resp = client.post("/initiate-payment", json=body)

    assert resp.status_code == 200
    assert provider.pushes[0][0]["PhoneNumber"] == "254708374149"


def test_initiate_missing_fields(client, provider):
    resp = client.post("/initiate-payment", json={"userId": "u1"})

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "validation_failed"
    assert body["missing"] == ["invoiceId", "paymentId", "amount", "phoneNumber"]
    assert provider.pushes == []


def test_initiate_rate_limited(client):
    for i in range(5):
        assert client.post("/initiate-payment", json=initiate_body(paymentId=f"p{i}")).status_code == 200

    resp = client.post("/initiate-payment", json=initiate_body(paymentId="p5"))

    assert resp.status_code == 429
    assert resp.json()["error"] == "rate_limited"


def test_initiate_without_correlation_key(client, provider):
    provider.omit_correlation_key = True

    resp = client.post("/initiate-payment", json=initiate_body())

    assert resp.status_code == 500
    assert resp.json()["apiCalled"] is True


def test_callback_then_status(client):
    client.post("/initiate-payment", json=initiate_body())
    assert client.get("/payment-status", params={"paymentId": "p1"}).json()["status"] == "pending"

    resp = client.post("/mpesa/callback", json=stk_callback("ws_1", result_code=1032, amount=None))

    assert resp.status_code == 200
    status = client.get("/payment-status", params={"checkoutRequestId": "ws_1"})
    assert status.json()["status"] == "failed"


def test_malformed_and_unknown_callbacks(client):
    assert client.post("/mpesa/callback", json={"Body": {}}).status_code == 400
    assert client.post("/mpesa/callback", json=stk_callback("ws_nope")).status_code == 404


def test_confirmation_and_query_transaction(client):
    client.post("/initiate-payment", json=initiate_body())
    client.post("/mpesa/callback", json=stk_callback("ws_1"))

    resp = client.post("/payments/confirmation", json=stk_callback("ws_1"))

    assert resp.json() == {"success": True}
    transaction = client.get("/query-transaction", params={"paymentId": "p1"}).json()["transaction"]
    assert transaction["checkoutRequestId"] == "ws_1"
    assert transaction["statusData"]["status"] == "completed"


def test_payment_status_requires_an_id(client):
    resp = client.get("/payment-status")

    assert resp.status_code == 400
    assert client.get("/query-transaction").status_code == 400
    assert client.get("/payment-status", params={"paymentId": "nope"}).status_code == 404


def test_admin_endpoints_require_api_key(client):
    assert client.get("/admin/pending-payments").status_code == 401
    assert client.get("/admin/payment-analytics", headers={"x-api-key": "wrong"}).status_code == 401
    assert client.get("/token").status_code == 401


def test_admin_pending_payments(client):
    client.post("/initiate-payment", json=initiate_body())

    body = client.get("/admin/pending-payments", headers=ADMIN).json()

    assert body["count"] == 1
    assert body["ttlMinutes"] == 15
    assert body["sample"][0]["paymentId"] == "p1"
    assert "phoneNumber" not in body["sample"][0]


def test_admin_payment_analytics(client):
    body = client.get("/admin/payment-analytics", headers=ADMIN).json()

    assert body["count"] == 0
    assert body["eventTypeCounts"] == {}


def test_token_endpoint(client):
    body = client.get("/token", headers=ADMIN).json()

    assert body["accessToken"] == "tok-1"
    assert body["source"] == "remote"
    assert body["expiresInSeconds"] == 3599


def test_metrics_endpoint(client):
    client.get("/health")

    assert b"http_requests_total" in client.get("/metrics").content
