"""Client for uploading captures to the Teleport capture-processing API."""

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .auth.credential_cache import CredentialCache, get_credential_cache
from .config import UploaderConfig, load_config
from .exceptions import (
    AuthError,
    FinalizationError,
    NegotiationError,
    ProtocolError,
    TransferError,
    UploadCancelledError,
    UploadError,
)
from .models import CaptureFormat, UploadPhase
from .upload.observers import CallbackObserver, TqdmProgressObserver, UploadObserver
from .upload.orchestrator import UploadOrchestrator
from .upload.source import BytesSource, FileSource, UploadSource

__version__ = "0.1.0"

__all__ = [
    "AuthError",
    "BytesSource",
    "CallbackObserver",
    "CaptureFormat",
    "CredentialCache",
    "FileSource",
    "FinalizationError",
    "NegotiationError",
    "ProtocolError",
    "TqdmProgressObserver",
    "TransferError",
    "UploadCancelledError",
    "UploadError",
    "UploadObserver",
    "UploadOrchestrator",
    "UploadPhase",
    "UploadSource",
    "UploaderConfig",
    "load_config",
    "upload_capture",
]


async def upload_capture(
    source: UploadSource | bytes | Path | str,
    *,
    name: str | None = None,
    config: UploaderConfig | None = None,
    credential_cache: CredentialCache | None = None,
    concurrency: int | None = None,
    cancel_event: asyncio.Event | None = None,
    observer: UploadObserver | None = None,
    on_phase: Callable[[UploadPhase], Any] | None = None,
    on_part_progress: Callable[[int, int], Any] | None = None,
    num_frames: int | None = None,
    guided_mode: bool | None = None,
) -> str:
    """Upload a zip of images or a video file as a new capture.

    Args:
        source: Upload source, raw bytes, or a file path.
        name: Capture name; required for raw bytes.
        config: Uploader configuration, defaults to :func:`load_config`.
        credential_cache: Defaults to the process-wide credential cache.
        concurrency: Maximum parts in flight.
        cancel_event: Setting this event aborts the upload.
        observer: Receives phase and part progress notifications.
        on_phase: Shortcut for an observer that only tracks phases.
        on_part_progress: Shortcut for an observer that only tracks parts.
        num_frames: Optional number of frames passed to capture creation.
        guided_mode: Optional guided mode flag passed to capture creation.

    Returns:
        The capture id.
    """
    if config is None:
        config = load_config()
    if observer is None and (on_phase is not None or on_part_progress is not None):
        observer = CallbackObserver(
            on_phase=on_phase, on_part_progress=on_part_progress
        )

    orchestrator = UploadOrchestrator(
        config, credential_cache=credential_cache or get_credential_cache(config)
    )
    return await orchestrator.upload(
        source,
        name=name,
        concurrency=concurrency,
        cancel_event=cancel_event,
        observer=observer,
        num_frames=num_frames,
        guided_mode=guided_mode,
    )
