"""Transfer of a single part to its presigned URL with exponential backoff."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

import aiohttp

from teleport_uploader.config.uploader_config import UploaderConfig
from teleport_uploader.const import (
    BACKOFF_MULTIPLIER,
    ETAG_HEADER,
    SUCCESS_STATUS_CODES,
)
from teleport_uploader.exceptions import TransferError
from teleport_uploader.utils.http_errors import truncate_url

logger = logging.getLogger(__name__)


def backoff_delay(
    attempt: int, base_delay: float, multiplier: float = BACKOFF_MULTIPLIER
) -> float:
    """Return the delay before retry number ``attempt + 1``.

    Retry ``k`` (1-based) waits ``base_delay * multiplier ** (k - 1)``, so the
    delays run ``base, 2*base, 4*base, ...``.

    Args:
        attempt: Zero-based retry index.
        base_delay: Delay before the first retry, in seconds.
        multiplier: Growth factor between consecutive retries.
    """
    if attempt < 0:
        raise ValueError(f"attempt must be non-negative, got {attempt}")
    return base_delay * multiplier**attempt


def normalize_etag(raw: str) -> str:
    """Strip whitespace and surrounding quotes from an ETag header value."""
    return raw.strip().strip('"')


class _AttemptFailed(Exception):
    """A single transfer attempt failed in a retryable way."""


class PartTransferer:
    """PUT part bytes to a presigned URL, retrying transient failures.

    Any non-success status, transport error, timeout, or a success response
    without an ETag counts as a failed attempt. Cancellation is never retried.
    """

    def __init__(
        self,
        client_session: aiohttp.ClientSession,
        max_retries: int,
        base_delay: float,
        timeout_seconds: float,
        jitter: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the transferer.

        Args:
            client_session: aiohttp ClientSession for HTTP requests.
            max_retries: Additional attempts after the first failure.
            base_delay: Backoff before the first retry, in seconds.
            timeout_seconds: Timeout for a single PUT.
            jitter: Upper bound of a random delay added to every backoff.
            sleep: Coroutine used to wait between attempts.
        """
        self._session = client_session
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._timeout_seconds = timeout_seconds
        self._jitter = jitter
        self._sleep = sleep

    @classmethod
    def from_config(
        cls, client_session: aiohttp.ClientSession, config: UploaderConfig
    ) -> "PartTransferer":
        """Build a transferer from uploader configuration."""
        return cls(
            client_session,
            max_retries=config.max_retries,
            base_delay=config.backoff_base_seconds,
            timeout_seconds=config.transfer_timeout_seconds,
            jitter=config.backoff_jitter_seconds,
        )

    def retry_delay(self, attempt: int) -> float:
        """Delay before retry ``attempt + 1``, including jitter."""
        delay = backoff_delay(attempt, self.base_delay)
        if self._jitter:
            delay += random.uniform(0, self._jitter)
        return delay

    async def transfer(
        self, upload_url: str, data: bytes, part_number: int | None = None
    ) -> str:
        """Upload ``data`` and return the integrity token.

        Args:
            upload_url: Presigned URL; reused for every attempt.
            data: Part bytes.
            part_number: Part number, for logging and errors.

        Returns:
            The ETag of the stored part with quotes stripped.

        Raises:
            TransferError: After ``max_retries + 1`` failed attempts.
            asyncio.CancelledError: If the transfer is cancelled.
        """
        total_attempts = self.max_retries + 1
        last_error = "no attempt made"

        for attempt in range(total_attempts):
            if attempt > 0:
                await self._sleep(self.retry_delay(attempt - 1))
            try:
                etag = await self._put(upload_url, data)
            except _AttemptFailed as e:
                last_error = str(e)
            except aiohttp.ClientError as e:
                last_error = f"Network error: {e!r}"
            except asyncio.TimeoutError:
                last_error = "Upload timed out"
            else:
                logger.debug(f"Part {part_number} stored with ETag {etag}")
                return etag

            logger.warning(
                f"Part {part_number} upload failed "
                f"(attempt {attempt + 1}/{total_attempts}): {last_error}"
            )

        logger.error(
            "Part %s failed after %d attempts to %s",
            part_number,
            total_attempts,
            truncate_url(upload_url),
        )
        raise TransferError(part_number, total_attempts, last_error)

    async def _put(self, upload_url: str, data: bytes) -> str:
        timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
        async with self._session.put(
            upload_url,
            data=data,
            headers={"Content-Length": str(len(data))},
            timeout=timeout,
        ) as response:
            if response.status not in SUCCESS_STATUS_CODES:
                body = await response.text(errors="replace")
                raise _AttemptFailed(f"HTTP {response.status}: {body[:200]}")
            raw_etag = response.headers.get(ETAG_HEADER)
            if not raw_etag or not normalize_etag(raw_etag):
                raise _AttemptFailed(f"Missing {ETAG_HEADER} header in response")
            return normalize_etag(raw_etag)
