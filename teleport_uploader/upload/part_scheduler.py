"""Bounded-concurrency upload of all parts of a session.

This module provides the PartUploadScheduler class that runs a fixed pool of
worker tasks over a shared queue of parts. Every part gets its own presigned
URL and a retried transfer; the first part that fails for good stops the whole
pool.
"""

import asyncio
import logging
from collections.abc import Callable

from teleport_uploader.api.captures import CaptureClient
from teleport_uploader.models import PartResult, PartTask, UploadSession, plan_parts
from teleport_uploader.upload.retry import PartTransferer
from teleport_uploader.upload.source import UploadSource

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class PartUploadScheduler:
    """Uploads the parts of one session with at most N transfers in flight."""

    def __init__(self, capture_client: CaptureClient, transferer: PartTransferer):
        """Initialize the scheduler.

        Args:
            capture_client: Client used to create the per-part upload URLs.
            transferer: Retrying PUT of part bytes.
        """
        self._captures = capture_client
        self._transferer = transferer

    async def run_all(
        self,
        session: UploadSession,
        source: UploadSource,
        concurrency: int,
        progress_callback: ProgressCallback | None = None,
    ) -> list[PartResult]:
        """Upload every part of ``session`` from ``source``.

        Args:
            session: Negotiated upload session.
            source: Bytes to upload; its size must match the session.
            concurrency: Maximum number of parts in flight.
            progress_callback: Called with ``(parts_done, parts_total)`` after
                every finished part.

        Returns:
            One result per part, sorted by part number.

        Raises:
            ValueError: If ``concurrency`` is below 1 or the source size does
                not match the session.
            TransferError | NegotiationError | ProtocolError | AuthError: The
                first terminal part failure. Remaining parts are cancelled.
            asyncio.CancelledError: If the caller cancels the upload.
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        if source.size != session.total_bytes:
            raise ValueError(
                f"Source {source.name!r} has {source.size} bytes but session "
                f"{session.session_id} expects {session.total_bytes}"
            )

        queue: asyncio.Queue[PartTask] = asyncio.Queue()
        for task in plan_parts(session):
            queue.put_nowait(task)

        results: dict[int, PartResult] = {}
        failures: list[Exception] = []

        async def worker() -> None:
            # Stop pulling parts as soon as any worker has failed.
            while not failures:
                try:
                    task = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    result = await self._upload_part(session, source, task)
                except Exception as e:
                    failures.append(e)
                    raise
                results[task.part_number] = result
                if progress_callback:
                    progress_callback(len(results), session.total_parts)

        num_workers = min(concurrency, session.total_parts)
        logger.info(
            "Uploading %d parts of %s with %d workers",
            session.total_parts,
            session.session_id,
            num_workers,
        )
        workers = [
            asyncio.create_task(worker(), name=f"{session.session_id}-worker-{i}")
            for i in range(num_workers)
        ]
        try:
            await asyncio.wait(workers, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            for task in workers:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        if failures:
            logger.error(
                f"Upload of {session.session_id} aborted after "
                f"{len(results)}/{session.total_parts} parts: {failures[0]}"
            )
            raise failures[0]

        if len(results) != session.total_parts:
            raise RuntimeError(
                f"Expected {session.total_parts} part results, got {len(results)}"
            )
        return [results[part_number] for part_number in sorted(results)]

    async def _upload_part(
        self, session: UploadSession, source: UploadSource, task: PartTask
    ) -> PartResult:
        """Fetch a presigned URL for one part and transfer its bytes."""
        upload_url = await self._captures.create_upload_url(session, task.part_number)

        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(None, source.read_range, task.start, task.end)

        etag = await self._transferer.transfer(
            upload_url, data, part_number=task.part_number
        )
        logger.debug(
            f"Uploaded part {task.part_number}/{session.total_parts} "
            f"({task.size} bytes)"
        )
        return PartResult(part_number=task.part_number, etag=etag)
