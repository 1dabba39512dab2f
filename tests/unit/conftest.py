"""Shared fixtures for uploader unit tests."""

from __future__ import annotations

import asyncio
import json
import math
from collections.abc import Awaitable, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import urlparse

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from teleport_uploader.auth.credential_cache import (
    CredentialCache,
    reset_credential_cache,
)
from teleport_uploader.config.uploader_config import UploaderConfig
from teleport_uploader.models import Credential

API_BASE = "https://api.teleport.test/api/v1"
AUTH_ENDPOINT = "https://signin.teleport.test/oauth2/token"
STORAGE_BASE = "https://storage.teleport.test"


class FakeResponse:
    """Minimal stand-in for an aiohttp response used as a context manager."""

    def __init__(
        self,
        status: int,
        body: bytes | str | dict[str, Any] = "",
        headers: dict[str, str] | None = None,
    ) -> None:
        self.status = status
        self.headers = headers or {}
        if isinstance(body, dict):
            body = json.dumps(body)
        self._body = body.encode() if isinstance(body, str) else body

    async def text(self, encoding: str = "utf-8", errors: str = "strict") -> str:
        return self._body.decode(encoding, errors)


class _RequestContext:
    def __init__(self, handler: Awaitable[FakeResponse]) -> None:
        self._handler = handler

    async def __aenter__(self) -> FakeResponse:
        return await self._handler

    async def __aexit__(self, *exc_info: Any) -> None:
        return None


Hook = Callable[..., Awaitable[FakeResponse | None]]


class FakeCaptureBackend:
    """In-memory capture API plus presigned part storage.

    Exposes ``post`` and ``put`` with the aiohttp.ClientSession call shape.
    Hooks may return a FakeResponse to override the default behaviour, raise
    (e.g. aiohttp.ClientConnectionError), or block.
    """

    def __init__(self, api_base: str = API_BASE, chunk_size: int = 1_000_000):
        self.api_base = api_base.rstrip("/")
        self.chunk_size = chunk_size
        self.capture_count = 0
        self.create_requests: list[dict[str, Any]] = []
        self.upload_url_requests: list[int] = []
        self.upload_url_bodies: list[dict[str, Any]] = []
        self.put_attempts: dict[int, int] = {}
        self.stored_parts: dict[int, bytes] = {}
        self.completed: list[dict[str, Any]] = []
        self.authorization_headers: list[str] = []
        self.etags: dict[int, str] = {}
        self.on_create: Hook | None = None
        self.on_upload_url: Hook | None = None
        self.on_put: Hook | None = None
        self.on_complete: Hook | None = None

    async def __aenter__(self) -> "FakeCaptureBackend":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None

    def post(
        self,
        url: str,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        **_: Any,
    ) -> _RequestContext:
        return _RequestContext(self._handle_post(url, json or {}, headers or {}))

    def put(
        self,
        url: str,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
        **_: Any,
    ) -> _RequestContext:
        return _RequestContext(self._handle_put(url, data or b""))

    async def _handle_post(
        self, url: str, body: dict[str, Any], headers: dict[str, str]
    ) -> FakeResponse:
        self.authorization_headers.append(headers.get("Authorization", ""))
        assert url.startswith(self.api_base), url
        segments = url[len(self.api_base) :].strip("/").split("/")

        if segments == ["captures"]:
            self.create_requests.append(body)
            if self.on_create:
                override = await self.on_create(body)
                if override is not None:
                    return override
            self.capture_count += 1
            num_parts = max(1, math.ceil(body["bytesize"] / self.chunk_size))
            return FakeResponse(
                200,
                {
                    "eid": f"cap-{self.capture_count}",
                    "num_parts": num_parts,
                    "chunk_size": self.chunk_size,
                },
            )

        if len(segments) == 4 and segments[2] == "create-upload-url":
            eid, part_number = segments[1], int(segments[3])
            self.upload_url_requests.append(part_number)
            self.upload_url_bodies.append(body)
            if self.on_upload_url:
                override = await self.on_upload_url(part_number)
                if override is not None:
                    return override
            return FakeResponse(
                200, {"upload_url": f"{STORAGE_BASE}/{eid}/part/{part_number}"}
            )

        if len(segments) == 3 and segments[2] == "uploaded":
            if self.on_complete:
                override = await self.on_complete(body)
                if override is not None:
                    return override
            self.completed.append(body)
            return FakeResponse(200, {"status": "uploaded"})

        return FakeResponse(404, "not found")

    async def _handle_put(self, url: str, data: bytes) -> FakeResponse:
        part_number = int(urlparse(url).path.rsplit("/", 1)[-1])
        attempt = self.put_attempts.get(part_number, 0) + 1
        self.put_attempts[part_number] = attempt
        if self.on_put:
            override = await self.on_put(part_number, attempt)
            if override is not None:
                return override
        self.stored_parts[part_number] = data
        etag = self.etags.get(part_number, f"etag-{part_number}")
        return FakeResponse(200, headers={"ETag": f'"{etag}"'})


class FakeClock:
    """Settable epoch-seconds clock."""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture(autouse=True)
def reset_global_credential_cache():
    """Make sure no test leaks the process-wide credential cache."""
    reset_credential_cache()
    yield
    reset_credential_cache()


@pytest.fixture
def uploader_config() -> UploaderConfig:
    return UploaderConfig(
        client_id="test-client",
        client_secret="test-secret",
        api_base=API_BASE,
        auth_endpoint=AUTH_ENDPOINT,
        backoff_base_seconds=0,
        observer_drain_timeout_seconds=1,
    )


@pytest.fixture
def backend() -> FakeCaptureBackend:
    return FakeCaptureBackend()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_credentials():
    """Credential cache that always hands out the same bearer token."""
    credentials = MagicMock(spec=CredentialCache)
    credentials.acquire = AsyncMock(
        return_value=Credential(token="test-token", expires_at_epoch_ms=2**62)
    )
    return credentials


async def never() -> None:
    """Block until cancelled."""
    await asyncio.Event().wait()


@pytest.fixture
def make_response():
    """Factory for canned backend responses."""
    return FakeResponse


UNDECODABLE_BODY = b"\xff\xfe\x80 busy"


@pytest_asyncio.fixture
async def undecodable_error_server():
    """Real HTTP server answering every request with a non-UTF-8 error body."""

    async def reject(request: web.Request) -> web.Response:
        await request.read()
        status = 503 if request.method == "PUT" else 500
        return web.Response(status=status, body=UNDECODABLE_BODY)

    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", reject)
    server = TestServer(app)
    await server.start_server()
    yield server
    await server.close()
