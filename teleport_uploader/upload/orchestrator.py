"""Upload orchestrator for a single capture.

This module provides the UploadOrchestrator class that sequences the upload
protocol: create the capture session, upload all parts with bounded
concurrency, and complete the session with the ordered part integrity tokens.
Phase changes and part progress are reported to an optional observer.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import aiohttp

from teleport_uploader.api.captures import CaptureClient
from teleport_uploader.auth.credential_cache import (
    CredentialCache,
    get_credential_cache,
)
from teleport_uploader.config.uploader_config import UploaderConfig
from teleport_uploader.models import UploadPhase, UploadState
from teleport_uploader.upload.cancellation import run_cancellable
from teleport_uploader.upload.observers import UploadObserver
from teleport_uploader.upload.part_scheduler import PartUploadScheduler
from teleport_uploader.upload.retry import PartTransferer
from teleport_uploader.upload.source import UploadSource, as_upload_source

logger = logging.getLogger(__name__)


class UploadOrchestrator:
    """Drives one capture upload at a time through its phases.

    ``IDLE -> CREATING -> UPLOADING -> COMPLETING -> DONE``, or ``FAILED`` from
    any non-terminal phase. A failed upload is abandoned as is; the backend
    garbage-collects incomplete sessions.
    """

    def __init__(
        self,
        config: UploaderConfig,
        credential_cache: CredentialCache | None = None,
        client_session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Uploader configuration.
            credential_cache: Credential cache; defaults to the process-wide
                cache.
            client_session: aiohttp session to reuse. When omitted a session
                is created for every upload.
        """
        self._config = config
        self._credentials = credential_cache or get_credential_cache(config)
        self._client_session = client_session
        self._state = UploadState()
        self._observer: UploadObserver | None = None
        self._observer_tasks: set[asyncio.Task] = set()
        self._running = False

    @property
    def state(self) -> UploadState:
        """Phase and part progress of the current or last upload."""
        return self._state

    async def upload(
        self,
        source: UploadSource | bytes | Path | str,
        *,
        name: str | None = None,
        concurrency: int | None = None,
        cancel_event: asyncio.Event | None = None,
        observer: UploadObserver | None = None,
        num_frames: int | None = None,
        guided_mode: bool | None = None,
    ) -> str:
        """Upload ``source`` as a new capture.

        Args:
            source: Upload source, raw bytes, or a file path.
            name: Capture name; required for raw bytes, defaults to the file
                name otherwise.
            concurrency: Maximum parts in flight, defaults to the config value.
            cancel_event: Setting this event aborts the upload.
            observer: Receives phase and part progress notifications.
            num_frames: Optional number of frames passed to capture creation.
            guided_mode: Optional guided mode flag passed to capture creation.

        Returns:
            The capture (session) id.

        Raises:
            AuthError: If no credential can be obtained.
            NegotiationError: If capture or upload URL creation is rejected.
            ProtocolError: If the backend violates the response contract.
            TransferError: If a part cannot be transferred.
            FinalizationError: If the completion request is rejected.
            UploadCancelledError: If ``cancel_event`` is set.
            ValueError: If ``concurrency`` is below 1, or raw bytes are given
                without a name.
            RuntimeError: If this orchestrator is already uploading.
        """
        if self._running:
            raise RuntimeError("An upload is already in progress")
        upload_source = as_upload_source(source, name=name)
        if concurrency is None:
            concurrency = self._config.concurrency
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        self._running = True
        self._state = UploadState()
        self._observer = observer
        try:
            if self._client_session is not None:
                return await run_cancellable(
                    self._run(
                        self._client_session,
                        upload_source,
                        concurrency,
                        num_frames,
                        guided_mode,
                    ),
                    cancel_event,
                )
            async with aiohttp.ClientSession() as client_session:
                return await run_cancellable(
                    self._run(
                        client_session,
                        upload_source,
                        concurrency,
                        num_frames,
                        guided_mode,
                    ),
                    cancel_event,
                )
        except (Exception, asyncio.CancelledError) as e:
            self._fail(e)
            raise
        finally:
            self._running = False
            await self._drain_observers()

    async def _run(
        self,
        client_session: aiohttp.ClientSession,
        source: UploadSource,
        concurrency: int,
        num_frames: int | None,
        guided_mode: bool | None,
    ) -> str:
        captures = CaptureClient(client_session, self._credentials, self._config)
        transferer = PartTransferer.from_config(client_session, self._config)
        scheduler = PartUploadScheduler(captures, transferer)

        self._transition(UploadPhase.CREATING)
        session = await captures.create_session(
            source.name,
            source.size,
            source.capture_format,
            num_frames=num_frames,
            guided_mode=guided_mode,
        )
        self._state.parts_total = session.total_parts
        self._dispatch("on_part_progress", 0, session.total_parts)

        self._transition(UploadPhase.UPLOADING)
        results = await scheduler.run_all(
            session,
            source,
            concurrency,
            progress_callback=self._on_part_done,
        )

        # The backend assembles the object in part order.
        results = sorted(results, key=lambda result: result.part_number)

        self._transition(UploadPhase.COMPLETING)
        await captures.complete(session, results)

        self._transition(UploadPhase.DONE)
        logger.info(f"Upload of capture {session.session_id} complete")
        return session.session_id

    def _transition(self, phase: UploadPhase) -> None:
        self._state.transition(phase)
        logger.info("Upload phase: %s", phase.value)
        self._dispatch("on_phase", phase)

    def _on_part_done(self, done: int, total: int) -> None:
        self._state.record_part_done()
        self._dispatch("on_part_progress", self._state.parts_done, total)

    def _fail(self, error: BaseException) -> None:
        if self._state.phase.is_terminal:
            return
        logger.error(
            f"Upload failed during {self._state.phase.value}: "
            f"{type(error).__name__}: {error}"
        )
        self._transition(UploadPhase.FAILED)

    def _dispatch(self, method_name: str, *args: Any) -> None:
        """Schedule an observer call without running it inline."""
        if self._observer is None:
            return
        callback = getattr(self._observer, method_name, None)
        if callback is None:
            return
        asyncio.get_running_loop().call_soon(self._invoke_observer, callback, args)

    def _invoke_observer(self, callback: Callable[..., Any], args: tuple) -> None:
        try:
            result = callback(*args)
        except Exception:
            logger.exception("Upload observer %r failed", callback)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._observer_tasks.add(task)
            task.add_done_callback(self._on_observer_task_done)

    def _on_observer_task_done(self, task: asyncio.Task) -> None:
        self._observer_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Upload observer failed", exc_info=task.exception())

    async def _drain_observers(self) -> None:
        """Let scheduled observer calls run, waiting a bounded time for tasks."""
        await asyncio.sleep(0)
        if not self._observer_tasks:
            return
        _, pending = await asyncio.wait(
            set(self._observer_tasks),
            timeout=self._config.observer_drain_timeout_seconds,
        )
        for task in pending:
            logger.warning("Upload observer did not finish in time; cancelling")
            task.cancel()
