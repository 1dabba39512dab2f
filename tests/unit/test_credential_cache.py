"""Unit tests for the process-wide credential cache."""

import asyncio
from urllib.parse import parse_qs

import pytest
import requests
import requests_mock

from teleport_uploader.auth.credential_cache import (
    CredentialCache,
    get_credential_cache,
    reset_credential_cache,
)
from teleport_uploader.exceptions import AuthError

TOKEN_JSON = {"access_token": "token-1", "token_type": "Bearer", "expires_in": 3600}


@pytest.fixture
def auth_endpoint(uploader_config):
    return uploader_config.auth_endpoint


@pytest.fixture
def cache(uploader_config, fake_clock):
    return CredentialCache(uploader_config, clock=fake_clock)


@pytest.mark.asyncio
async def test_acquire_exchanges_client_credentials(cache, auth_endpoint):
    with requests_mock.Mocker() as m:
        m.post(auth_endpoint, json=TOKEN_JSON)

        credential = await cache.acquire()

        body = parse_qs(m.last_request.text)

    assert credential.token == "token-1"
    assert credential.expires_at_epoch_ms == 1_000_000 + 3_600_000 - 60_000
    assert body["grant_type"] == ["client_credentials"]
    assert body["client_id"] == ["test-client"]
    assert body["client_secret"] == ["test-secret"]
    assert body["scope"] == ["openid profile email"]


@pytest.mark.asyncio
async def test_valid_credential_is_reused(cache, auth_endpoint):
    with requests_mock.Mocker() as m:
        m.post(auth_endpoint, json=TOKEN_JSON)

        first = await cache.acquire()
        second = await cache.acquire()
        headers = await cache.get_headers()

    assert first is second
    assert m.call_count == 1
    assert headers == {"Authorization": "Bearer token-1"}


@pytest.mark.asyncio
async def test_concurrent_acquires_share_one_exchange(cache, auth_endpoint):
    with requests_mock.Mocker() as m:
        m.post(auth_endpoint, json=TOKEN_JSON)

        credentials = await asyncio.gather(*(cache.acquire() for _ in range(10)))

    assert m.call_count == 1
    assert cache.exchange_count == 1
    assert all(credential is credentials[0] for credential in credentials)


@pytest.mark.asyncio
async def test_expiry_margin_boundary(cache, fake_clock, auth_endpoint):
    expiry_s = 1_000 + 3_600 - 60
    with requests_mock.Mocker() as m:
        m.post(
            auth_endpoint,
            [
                {"json": TOKEN_JSON},
                {"json": {**TOKEN_JSON, "access_token": "token-2"}},
            ],
        )
        await cache.acquire()

        fake_clock.now = expiry_s - 0.010
        before = await cache.acquire()
        assert m.call_count == 1

        fake_clock.now = expiry_s + 0.010
        after = await cache.acquire()

    assert before.token == "token-1"
    assert after.token == "token-2"
    assert m.call_count == 2


@pytest.mark.asyncio
async def test_rejected_exchange_fails_every_waiter(cache, auth_endpoint):
    with requests_mock.Mocker() as m:
        m.post(auth_endpoint, status_code=401, json={"error": "invalid_client"})

        results = await asyncio.gather(
            *(cache.acquire() for _ in range(3)), return_exceptions=True
        )

    assert m.call_count == 1
    assert all(isinstance(result, AuthError) for result in results)


@pytest.mark.asyncio
async def test_failed_exchange_is_retried_on_next_acquire(cache, auth_endpoint):
    with requests_mock.Mocker() as m:
        m.post(
            auth_endpoint,
            [
                {"exc": requests.exceptions.ConnectionError("unreachable")},
                {"json": TOKEN_JSON},
            ],
        )
        with pytest.raises(AuthError, match="failed"):
            await cache.acquire()

        credential = await cache.acquire()

    assert credential.token == "token-1"
    assert m.call_count == 2


@pytest.mark.asyncio
async def test_token_without_expiry_is_rejected(cache, auth_endpoint):
    with requests_mock.Mocker() as m:
        m.post(auth_endpoint, json={"access_token": "t", "token_type": "Bearer"})

        with pytest.raises(AuthError, match="Malformed"):
            await cache.acquire()


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_abort_shared_exchange(cache, auth_endpoint):
    with requests_mock.Mocker() as m:
        m.post(auth_endpoint, json=TOKEN_JSON)

        cancelled = asyncio.create_task(cache.acquire())
        waiting = asyncio.create_task(cache.acquire())
        await asyncio.sleep(0)
        cancelled.cancel()

        credential = await waiting

    assert credential.token == "token-1"
    assert cancelled.cancelled()
    assert m.call_count == 1


@pytest.mark.asyncio
async def test_invalidate_only_drops_the_rejected_credential(cache, auth_endpoint):
    with requests_mock.Mocker() as m:
        m.post(
            auth_endpoint,
            [
                {"json": TOKEN_JSON},
                {"json": {**TOKEN_JSON, "access_token": "token-2"}},
            ],
        )
        stale = await cache.acquire()
        cache.invalidate(stale)
        fresh = await cache.acquire()

        cache.invalidate(stale)
        kept = await cache.acquire()

    assert fresh.token == "token-2"
    assert kept is fresh
    assert m.call_count == 2


def test_get_credential_cache_is_process_wide(uploader_config):
    first = get_credential_cache(uploader_config)

    assert get_credential_cache() is first

    reset_credential_cache()
    assert get_credential_cache(uploader_config) is not first


def test_get_credential_cache_warns_about_ignored_config(uploader_config, caplog):
    first = get_credential_cache(uploader_config)
    other = uploader_config.model_copy(update={"client_id": "other-client"})

    assert get_credential_cache(other) is first
    assert "other-client" in caplog.text

    caplog.clear()
    get_credential_cache(uploader_config)
    assert caplog.text == ""
