"""Credential cache: memory, durable record, then remote issuance."""

import httpx
import pytest

from pushpay.common.errors import TokenAcquisitionFailed
from pushpay.services.gateway.credentials import TOKEN_DOC_ID, CredentialCache
from pushpay.services.gateway.models import TOKENS


@pytest.mark.asyncio
async def test_remote_refresh_then_memory_hit(documents, provider, clock):
    cache = CredentialCache(documents, provider, "YmFzaWM=", clock=clock)

    first = await cache.get_valid_credential()
    second = await cache.get_valid_credential()

    assert first.source == "remote"
    assert second.source == "memory"
    assert second.token == first.token
    assert provider.token_calls == 1


@pytest.mark.asyncio
async def test_refresh_writes_through_to_durable_record(documents, provider, clock):
    cache = CredentialCache(documents, provider, "YmFzaWM=", clock=clock)

    credential = await cache.get_valid_credential()

    stored = documents.get(TOKENS, TOKEN_DOC_ID)
    assert stored["accessToken"] == credential.token
    assert stored["expiresAt"] == clock.now + 3599
    assert "updatedAt" in stored


@pytest.mark.asyncio
async def test_durable_record_used_when_memory_is_empty(documents, provider, clock):
    documents.set(TOKENS, TOKEN_DOC_ID, {"accessToken": "shared", "expiresAt": clock.now + 100})
    cache = CredentialCache(documents, provider, "YmFzaWM=", clock=clock)

    credential = await cache.get_valid_credential()

    assert credential.source == "durable"
    assert credential.token == "shared"
    assert provider.token_calls == 0


@pytest.mark.asyncio
async def test_expired_durable_record_triggers_refresh(documents, provider, clock):
    documents.set(TOKENS, TOKEN_DOC_ID, {"accessToken": "stale", "expiresAt": clock.now - 1})
    cache = CredentialCache(documents, provider, "YmFzaWM=", clock=clock)

    credential = await cache.get_valid_credential()

    assert credential.source == "remote"
    assert credential.token == "tok-1"


@pytest.mark.asyncio
async def test_memory_expiry_forces_new_token(documents, provider, clock):
    cache = CredentialCache(documents, provider, "YmFzaWM=", clock=clock)
    await cache.get_valid_credential()

    clock.advance(3600)
    assert cache.is_expired()
    credential = await cache.get_valid_credential()

    assert credential.source == "remote"
    assert credential.token == "tok-2"


@pytest.mark.asyncio
async def test_issuer_failure_raises_token_acquisition_failed(documents, provider, clock):
    provider.token_error = httpx.ConnectError("connection refused")
    cache = CredentialCache(documents, provider, "YmFzaWM=", clock=clock)

    with pytest.raises(TokenAcquisitionFailed) as excinfo:
        await cache.get_valid_credential()

    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)
    assert documents.get(TOKENS, TOKEN_DOC_ID) is None


@pytest.mark.asyncio
async def test_missing_consumer_credentials(documents, provider, clock):
    cache = CredentialCache(documents, provider, None, clock=clock)

    with pytest.raises(TokenAcquisitionFailed):
        await cache.get_valid_credential()
    assert provider.token_calls == 0
