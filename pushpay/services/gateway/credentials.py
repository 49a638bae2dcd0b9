"""Process-wide access-token cache shared by every request path.

Sources are tried in order: process memory, the durable token record, then
remote issuance. A remote refresh is written back to the durable record so
other gateway processes reuse it. Concurrent refreshes are not coalesced;
the durable write is last-writer-wins.
"""

import time
from dataclasses import dataclass
from typing import Callable

import httpx

from pushpay.common.documents import DocumentStore, utc_now_iso
from pushpay.common.errors import TokenAcquisitionFailed
from pushpay.common.logging import logger
from pushpay.common.metrics import token_acquisitions_total
from pushpay.services.gateway.models import TOKENS

TOKEN_DOC_ID = "current"


@dataclass(frozen=True)
class Credential:
    token: str
    expires_at: float
    source: str

    def seconds_left(self, now: float) -> int:
        return max(0, int(self.expires_at - now))


class CredentialCache:
    """Hands out a bearer token that is valid at the time of the call."""

    def __init__(
        self,
        documents: DocumentStore,
        provider,
        basic_auth: str | None,
        clock: Callable[[], float] = time.time,
        service_name: str = "pushpay-gateway",
    ) -> None:
        self.documents = documents
        self.provider = provider
        self.basic_auth = basic_auth
        self.clock = clock
        self.service_name = service_name
        self._token: str | None = None
        self._expires_at: float | None = None

    def _usable(self, token: str | None, expires_at: float | None) -> bool:
        return bool(token) and expires_at is not None and self.clock() < expires_at

    def _hand_out(self, token: str, expires_at: float, source: str) -> Credential:
        token_acquisitions_total.labels(service=self.service_name, source=source).inc()
        return Credential(token=token, expires_at=expires_at, source=source)

    def is_expired(self) -> bool:
        return not self._usable(self._token, self._expires_at)

    async def get_valid_credential(self) -> Credential:
        if self._usable(self._token, self._expires_at):
            return self._hand_out(self._token, self._expires_at, "memory")

        stored = self.documents.get(TOKENS, TOKEN_DOC_ID)
        if stored and self._usable(stored.get("accessToken"), stored.get("expiresAt")):
            self._token = stored["accessToken"]
            self._expires_at = float(stored["expiresAt"])
            logger.info("access token loaded from durable store")
            return self._hand_out(self._token, self._expires_at, "durable")

        return await self.refresh()

    async def refresh(self) -> Credential:
        """Issue a new token remotely and write it through to memory and storage."""

        if not self.basic_auth:
            raise TokenAcquisitionFailed("provider consumer key/secret are not configured")
        logger.info("fetching new access token from provider")
        try:
            grant = await self.provider.issue_token(self.basic_auth)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("token issuance failed error=%s", exc)
            raise TokenAcquisitionFailed(f"failed to fetch access token: {exc}") from exc

        expires_at = self.clock() + grant.ttl_seconds
        self._token = grant.token
        self._expires_at = expires_at
        self.documents.set(
            TOKENS,
            TOKEN_DOC_ID,
            {"accessToken": grant.token, "expiresAt": expires_at, "updatedAt": utc_now_iso()},
            merge=True,
        )
        logger.info("access token refreshed expires_in=%s", int(grant.ttl_seconds))
        return self._hand_out(grant.token, expires_at, "remote")
