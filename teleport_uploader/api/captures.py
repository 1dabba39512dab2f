"""Capture API client.

Shapes the three bearer-authenticated requests of the upload protocol:
creating a capture session, creating a presigned URL for one part, and
completing the session with the collected part integrity tokens.
"""

import asyncio
import json
import logging
from typing import Any
from urllib.parse import quote

import aiohttp
from pydantic import ValidationError

from teleport_uploader.auth.credential_cache import CredentialCache
from teleport_uploader.config.uploader_config import UploaderConfig
from teleport_uploader.const import SUCCESS_STATUS_CODES
from teleport_uploader.exceptions import (
    FinalizationError,
    NegotiationError,
    ProtocolError,
)
from teleport_uploader.models import (
    CaptureFormat,
    CompletedPart,
    CompleteUploadRequest,
    CreateCaptureRequest,
    CreateCaptureResponse,
    PartResult,
    UploadSession,
    UploadUrlRequest,
    UploadUrlResponse,
)
from teleport_uploader.utils.http_errors import extract_error_detail, truncate_url

logger = logging.getLogger(__name__)

_BackendErrorType = type[NegotiationError] | type[FinalizationError]


class CaptureClient:
    """Client for the capture endpoints of the Teleport API."""

    def __init__(
        self,
        client_session: aiohttp.ClientSession,
        credential_cache: CredentialCache,
        config: UploaderConfig,
    ) -> None:
        """Initialize the capture client.

        Args:
            client_session: Shared aiohttp session for HTTP requests.
            credential_cache: Source of bearer credentials.
            config: Uploader configuration (API base URL and timeouts).
        """
        self.client_session = client_session
        self._credentials = credential_cache
        self._config = config

    def _captures_url(self, *segments: str) -> str:
        path = "/".join(quote(str(segment), safe="") for segment in segments)
        base = f"{self._config.api_root}/captures"
        return f"{base}/{path}" if path else base

    async def _send(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str],
        error_type: _BackendErrorType,
    ) -> tuple[int, str]:
        """POST a JSON payload and return the status and body text."""
        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_seconds)
        try:
            async with self.client_session.post(
                url,
                json=payload,
                headers=headers,
                timeout=timeout,
            ) as response:
                return response.status, await response.text(errors="replace")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Request to {url} failed: {e!r}")
            raise error_type(None, str(e) or type(e).__name__) from e

    async def _post_json(
        self,
        url: str,
        payload: dict[str, Any],
        error_type: _BackendErrorType,
    ) -> dict[str, Any]:
        """POST with bearer auth, refreshing the token once on HTTP 401.

        Args:
            url: Endpoint URL.
            payload: JSON body.
            error_type: Error raised for non-success statuses and network
                failures.

        Returns:
            Decoded JSON object, or an empty dict for an empty body.

        Raises:
            AuthError: If no credential can be obtained.
            NegotiationError | FinalizationError: As given by ``error_type``.
            ProtocolError: If a success response is not a JSON object.
        """
        credential = await self._credentials.acquire()
        headers = {"Authorization": f"Bearer {credential.token}"}
        status, text = await self._send(url, payload, headers, error_type)

        if status == 401:
            logger.info("Access token rejected, refreshing token")
            self._credentials.invalidate(credential)
            credential = await self._credentials.acquire()
            headers = {"Authorization": f"Bearer {credential.token}"}
            status, text = await self._send(url, payload, headers, error_type)

        if status not in SUCCESS_STATUS_CODES:
            detail = extract_error_detail(text)
            logger.warning(f"Request to {url} failed: HTTP {status}: {detail}")
            raise error_type(status, detail)

        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except ValueError as e:
            raise ProtocolError(
                f"Response from {url} is not JSON: {text[:200]}"
            ) from e
        if not isinstance(data, dict):
            raise ProtocolError(f"Response from {url} is not a JSON object")
        return data

    async def create_session(
        self,
        name: str,
        total_bytes: int,
        capture_format: CaptureFormat,
        num_frames: int | None = None,
        guided_mode: bool | None = None,
    ) -> UploadSession:
        """Open a capture and its multi-part upload session.

        Args:
            name: Capture name, usually the file name.
            total_bytes: Size of the file to upload.
            capture_format: Declared input data format.
            num_frames: Optional number of frames to extract.
            guided_mode: Optional guided capture flag.

        Returns:
            The negotiated upload session.

        Raises:
            NegotiationError: If the backend rejects the capture.
            ProtocolError: If the response lacks a session id, a positive part
                count and chunk size, or the part count does not cover the file.
        """
        request = CreateCaptureRequest(
            name=name,
            bytesize=total_bytes,
            input_data_format=capture_format,
            num_frames=num_frames,
            guided_mode=guided_mode,
        )
        logger.info(
            "Creating capture %r: bytesize=%d format=%s",
            name,
            total_bytes,
            capture_format.value,
        )
        data = await self._post_json(
            self._captures_url(),
            request.model_dump(mode="json", exclude_none=True),
            NegotiationError,
        )

        try:
            response = CreateCaptureResponse.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(f"Malformed create capture response: {e}") from e

        # An empty file is still uploaded as one zero-length part.
        expected_parts = max(1, -(-total_bytes // response.chunk_size))
        if response.num_parts != expected_parts:
            raise ProtocolError(
                f"Capture {response.eid} advertises {response.num_parts} parts "
                f"but {total_bytes} bytes in chunks of {response.chunk_size} "
                f"need {expected_parts}"
            )

        logger.info(
            "Created capture %s: num_parts=%d chunk_size=%d",
            response.eid,
            response.num_parts,
            response.chunk_size,
        )
        return UploadSession(
            session_id=response.eid,
            total_parts=response.num_parts,
            chunk_size_bytes=response.chunk_size,
            total_bytes=total_bytes,
        )

    async def create_upload_url(self, session: UploadSession, part_number: int) -> str:
        """Create a one-time presigned URL for a single part.

        Raises:
            NegotiationError: If the backend rejects the request.
            ProtocolError: If the response has no upload URL.
        """
        request = UploadUrlRequest(eid=session.session_id, bytesize=session.total_bytes)
        data = await self._post_json(
            self._captures_url(
                session.session_id, "create-upload-url", str(part_number)
            ),
            request.model_dump(mode="json"),
            NegotiationError,
        )
        try:
            response = UploadUrlResponse.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(
                f"Malformed upload URL response for part {part_number}: {e}"
            ) from e
        logger.debug(
            "Upload URL for %s part %d: %s",
            session.session_id,
            part_number,
            truncate_url(response.upload_url),
        )
        return response.upload_url

    async def complete(
        self, session: UploadSession, results: list[PartResult]
    ) -> dict[str, Any]:
        """Close the upload session with the ordered part integrity tokens.

        Args:
            session: Session being completed.
            results: One result per part, sorted ascending by part number.

        Returns:
            The backend's completion payload.

        Raises:
            ValueError: If ``results`` is not exactly parts ``1..total_parts``
                in ascending order.
            FinalizationError: If the backend rejects the completion.
        """
        part_numbers = [result.part_number for result in results]
        if part_numbers != list(range(1, session.total_parts + 1)):
            raise ValueError(
                f"Completion for {session.session_id} needs parts "
                f"1..{session.total_parts} in order, got {part_numbers}"
            )

        request = CompleteUploadRequest(
            eid=session.session_id,
            parts=[CompletedPart(**result.to_payload()) for result in results],
        )
        logger.info(
            "Completing capture %s with %d parts", session.session_id, len(results)
        )
        return await self._post_json(
            self._captures_url(session.session_id, "uploaded"),
            request.model_dump(mode="json"),
            FinalizationError,
        )
