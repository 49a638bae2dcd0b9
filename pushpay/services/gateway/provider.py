"""Daraja (M-Pesa) HTTP client used for tokens, STK push and status queries.

Only the transaction-status query carries a request timeout and a retry loop;
the other calls rely on the transport defaults.
"""

import asyncio
import base64
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from pushpay.common.errors import ProviderCallFailed
from pushpay.common.logging import logger
from pushpay.common.metrics import retries_total
from pushpay.common.tracing import provider_span

# Daraja timestamps are East Africa Time, which has no DST.
EAT = timezone(timedelta(hours=3))


@dataclass(frozen=True)
class TokenGrant:
    token: str
    ttl_seconds: float


@dataclass(frozen=True)
class PushResult:
    correlation_key: str | None
    raw: dict[str, Any]


def stk_timestamp(now: datetime | None = None) -> str:
    """`YYYYMMDDHHMMSS` in East Africa Time."""

    now = now or datetime.now(timezone.utc)
    return now.astimezone(EAT).strftime("%Y%m%d%H%M%S")


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode("utf-8")).decode("ascii")


class DarajaClient:
    """Thin async wrapper around the Daraja REST endpoints."""

    TOKEN_PATH = "/oauth/v1/generate"
    STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
    TX_STATUS_PATH = "/mpesa/transactionstatus/v1/query"
    REGISTER_URL_PATH = "/mpesa/c2b/v1/registerurl"

    def __init__(
        self,
        base_url: str,
        status_timeout_seconds: float = 10.0,
        status_max_retries: int = 3,
        status_retry_delay_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
        service_name: str = "pushpay-gateway",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.status_timeout_seconds = status_timeout_seconds
        self.status_max_retries = status_max_retries
        self.status_retry_delay_seconds = status_retry_delay_seconds
        self.transport = transport
        self.service_name = service_name

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=self.transport)

    @staticmethod
    def _bearer(access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"}

    async def issue_token(self, basic_auth: str) -> TokenGrant:
        """Exchange the app's basic-auth credential for a bearer token.

        Raises `httpx.HTTPError` or `ValueError`; the credential cache wraps both.
        """

        with provider_span("issue_token"):
            async with self._client() as client:
                resp = await client.get(
                    self.TOKEN_PATH,
                    params={"grant_type": "client_credentials"},
                    headers={"Authorization": f"Basic {basic_auth}"},
                )
            resp.raise_for_status()
            data = resp.json()
        token = data.get("access_token")
        if not token:
            raise ValueError("invalid token response from provider")
        return TokenGrant(token=token, ttl_seconds=float(data.get("expires_in", 3599)))

    async def push_payment(self, payload: dict[str, Any], access_token: str) -> PushResult:
        """Send an STK push; the correlation key is the `CheckoutRequestID`."""

        try:
            with provider_span("stk_push", amount=payload.get("Amount")):
                async with self._client() as client:
                    resp = await client.post(self.STK_PUSH_PATH, json=payload, headers=self._bearer(access_token))
                resp.raise_for_status()
                raw = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.error("stk_push_rejected status=%s body=%s", exc.response.status_code, exc.response.text)
            raise ProviderCallFailed("payment provider rejected the request") from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("stk_push_failed error=%s", exc)
            raise ProviderCallFailed("payment provider call failed") from exc
        return PushResult(correlation_key=raw.get("CheckoutRequestID") or None, raw=raw)

    async def query_transaction_status(self, payload: dict[str, Any], access_token: str) -> dict[str, Any]:
        """Query one transaction with a fixed timeout and linear backoff between attempts."""

        last_exc: Exception | None = None
        for attempt in range(1, self.status_max_retries + 1):
            try:
                with provider_span("transaction_status", attempt=attempt):
                    async with self._client(timeout=self.status_timeout_seconds) as client:
                        resp = await client.post(
                            self.TX_STATUS_PATH, json=payload, headers=self._bearer(access_token)
                        )
                    resp.raise_for_status()
                    return resp.json()
            except (httpx.HTTPError, ValueError) as exc:
                last_exc = exc
                logger.error("transaction_status_failed attempt=%s error=%s", attempt, exc)
                if attempt == self.status_max_retries:
                    break
                retries_total.labels(service=self.service_name, dependency="daraja").inc()
                await asyncio.sleep(self.status_retry_delay_seconds * attempt)
        raise ProviderCallFailed("transaction status query failed") from last_exc

    async def register_urls(self, payload: dict[str, Any], access_token: str) -> dict[str, Any]:
        """Register C2B confirmation/validation URLs for the short code."""

        try:
            with provider_span("register_urls"):
                async with self._client() as client:
                    resp = await client.post(self.REGISTER_URL_PATH, json=payload, headers=self._bearer(access_token))
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderCallFailed("C2B URL registration failed") from exc
