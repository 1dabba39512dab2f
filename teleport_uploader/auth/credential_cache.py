"""Process-wide bearer credential for the capture API.

This module provides the CredentialCache class that performs the OAuth2
client-credentials grant against the authorization server and keeps the
resulting token until shortly before it expires. Concurrent callers that find
the cache empty or expired share a single token exchange.
"""

import asyncio
import logging
import time
from collections.abc import Callable

import requests
from oauthlib.oauth2 import BackendApplicationClient
from oauthlib.oauth2.rfc6749.errors import OAuth2Error
from pydantic import ValidationError
from requests_oauthlib import OAuth2Session

from teleport_uploader.config.loader import load_config
from teleport_uploader.config.uploader_config import UploaderConfig
from teleport_uploader.exceptions import AuthError
from teleport_uploader.models import Credential, TokenResponse

logger = logging.getLogger(__name__)


class CredentialCache:
    """Single-slot cache for the capture API bearer token.

    The slot and the in-flight exchange are the only mutable state, and both
    are changed exclusively through :meth:`acquire` and :meth:`invalidate`.
    """

    def __init__(
        self,
        config: UploaderConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the credential cache.

        Args:
            config: Uploader configuration with client id, secret, scope and
                authorization endpoint.
            clock: Returns the current time in epoch seconds.
        """
        self._config = config
        self._clock = clock
        self._credential: Credential | None = None
        self._inflight: asyncio.Task[Credential] | None = None
        self.exchange_count = 0

    @property
    def config(self) -> UploaderConfig:
        """Configuration the cache exchanges tokens with."""
        return self._config

    @property
    def margin_ms(self) -> int:
        """Milliseconds subtracted from the advertised token lifetime."""
        return int(self._config.token_expiry_margin_seconds * 1000)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def acquire(self) -> Credential:
        """Return a valid credential, exchanging for a new one if needed.

        Returns:
            The cached credential while it is valid, otherwise a fresh one.

        Raises:
            AuthError: If the token exchange is rejected or fails.
        """
        credential = self._credential
        if credential is not None and credential.is_valid(self._now_ms()):
            return credential

        if self._inflight is None:
            loop = asyncio.get_running_loop()
            self._inflight = loop.create_task(self._refresh())
            self._inflight.add_done_callback(self._on_refresh_done)
        else:
            logger.debug("Joining in-flight token exchange")

        # A cancelled caller must not cancel the exchange other callers share.
        return await asyncio.shield(self._inflight)

    async def get_headers(self) -> dict[str, str]:
        """Get the authorization headers for a capture API request."""
        credential = await self.acquire()
        return {"Authorization": f"Bearer {credential.token}"}

    def invalidate(self, credential: Credential | None = None) -> None:
        """Drop the cached credential so the next acquire exchanges again.

        Args:
            credential: The credential the API rejected. When given, the slot
                is only cleared if it still holds that credential, so a token
                refreshed by another caller in the meantime is kept.
        """
        if self._credential is None:
            return
        if credential is not None and credential is not self._credential:
            return
        logger.info("Invalidating cached access token")
        self._credential = None

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        self._inflight = None
        if not task.cancelled():
            # Mark the exception retrieved; awaiting callers re-raise it.
            task.exception()

    async def _refresh(self) -> Credential:
        loop = asyncio.get_running_loop()
        issued_at_ms = self._now_ms()
        token = await loop.run_in_executor(None, self._exchange)
        credential = Credential(
            token=token.access_token,
            expires_at_epoch_ms=issued_at_ms + token.expires_in * 1000 - self.margin_ms,
        )
        self._credential = credential
        logger.info(
            "Obtained access token valid for %ds (margin %dms)",
            token.expires_in,
            self.margin_ms,
        )
        return credential

    def _exchange(self) -> TokenResponse:
        """Perform the client-credentials grant.

        Runs in an executor thread; exactly one call is outstanding at a time.

        Returns:
            Parsed token response.

        Raises:
            AuthError: If the exchange is rejected, fails on the network, or
                returns a malformed token.
        """
        config = self._config
        self.exchange_count += 1
        client = BackendApplicationClient(client_id=config.client_id)
        logger.info("Requesting access token from %s", config.auth_endpoint)
        try:
            with OAuth2Session(client=client) as oauth:
                token = oauth.fetch_token(
                    token_url=config.auth_endpoint,
                    client_secret=config.client_secret,
                    include_client_id=True,
                    scope=config.scope,
                    timeout=config.request_timeout_seconds,
                )
        except OAuth2Error as e:
            logger.error(f"Token exchange rejected: {e.error}")
            raise AuthError(
                f"Token exchange rejected: {e.description or e.error}"
            ) from e
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Token exchange failed: {e}")
            raise AuthError(f"Token exchange failed: {e}") from e

        try:
            return TokenResponse.model_validate(dict(token))
        except ValidationError as e:
            raise AuthError(f"Malformed token response: {e}") from e


_credential_cache: CredentialCache | None = None


def get_credential_cache(config: UploaderConfig | None = None) -> CredentialCache:
    """Return the process-wide credential cache, creating it on first use.

    Args:
        config: Configuration used only when the cache is created. Defaults to
            :func:`load_config`.
    """
    global _credential_cache
    if _credential_cache is None:
        _credential_cache = CredentialCache(config or load_config())
    elif config is not None and config != _credential_cache.config:
        logger.warning(
            "Credential cache already exists for client %r; ignoring config "
            "for client %r. Pass a CredentialCache explicitly to use it.",
            _credential_cache.config.client_id,
            config.client_id,
        )
    return _credential_cache


def reset_credential_cache() -> None:
    """Discard the process-wide credential cache."""
    global _credential_cache
    _credential_cache = None
