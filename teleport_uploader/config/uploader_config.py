"""Pydantic model for Teleport uploader configuration."""

from pydantic import BaseModel, Field

from teleport_uploader.const import (
    API_URL,
    AUTH_ENDPOINT,
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_OBSERVER_DRAIN_TIMEOUT_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_SCOPE,
    DEFAULT_TOKEN_EXPIRY_MARGIN_SECONDS,
    DEFAULT_TRANSFER_TIMEOUT_SECONDS,
)


class UploaderConfig(BaseModel):
    """Configuration options for a capture upload.

    Attributes:
        client_id: OAuth2 client id used for the client-credentials grant.
        client_secret: OAuth2 client secret.
        scope: Space separated OAuth2 scopes requested with the token.
        auth_endpoint: Token endpoint of the authorization server.
        api_base: Base URL of the capture API, without trailing slash.
        concurrency: Maximum number of parts transferred at the same time.
        max_retries: Additional transfer attempts per part after a failure.
        backoff_base_seconds: Delay before the first retry; doubles per retry.
        backoff_jitter_seconds: Upper bound of random delay added to a backoff.
        token_expiry_margin_seconds: Subtracted from the advertised token expiry.
        request_timeout_seconds: Timeout for token and capture API calls.
        transfer_timeout_seconds: Timeout for a single part PUT.
        observer_drain_timeout_seconds: How long to wait for async observer
            callbacks when an upload finishes.
    """

    client_id: str = ""
    client_secret: str = ""
    scope: str = DEFAULT_SCOPE
    auth_endpoint: str = AUTH_ENDPOINT
    api_base: str = API_URL
    concurrency: int = Field(default=DEFAULT_CONCURRENCY, ge=1)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    backoff_base_seconds: float = Field(default=DEFAULT_BACKOFF_BASE_SECONDS, ge=0)
    backoff_jitter_seconds: float = Field(default=0.0, ge=0)
    token_expiry_margin_seconds: float = Field(
        default=DEFAULT_TOKEN_EXPIRY_MARGIN_SECONDS, ge=0
    )
    request_timeout_seconds: float = Field(
        default=DEFAULT_REQUEST_TIMEOUT_SECONDS, gt=0
    )
    transfer_timeout_seconds: float = Field(
        default=DEFAULT_TRANSFER_TIMEOUT_SECONDS, gt=0
    )
    observer_drain_timeout_seconds: float = Field(
        default=DEFAULT_OBSERVER_DRAIN_TIMEOUT_SECONDS, ge=0
    )

    @property
    def api_root(self) -> str:
        """Return the API base URL without a trailing slash."""
        return self.api_base.rstrip("/")
