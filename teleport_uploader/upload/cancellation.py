"""Run upload work that a caller can abort through an asyncio.Event."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from teleport_uploader.exceptions import UploadCancelledError

T = TypeVar("T")


async def run_cancellable(
    awaitable: Awaitable[T], cancel_event: asyncio.Event | None
) -> T:
    """Await ``awaitable`` unless ``cancel_event`` is set first.

    When the event is set, the work is cancelled (aborting in-flight requests
    and backoff sleeps) and awaited until it has unwound.

    Args:
        awaitable: Work to run.
        cancel_event: Cancellation signal, or None for uncancellable work.

    Returns:
        The result of ``awaitable``.

    Raises:
        UploadCancelledError: If the event was set before the work finished.
    """
    if cancel_event is None:
        return await awaitable

    if cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise UploadCancelledError("Upload cancelled before it started")

    work = asyncio.ensure_future(awaitable)
    cancelled = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({work, cancelled}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        cancelled.cancel()
        await asyncio.gather(work, cancelled, return_exceptions=True)
        raise

    if work.done():
        cancelled.cancel()
        await asyncio.gather(cancelled, return_exceptions=True)
        return work.result()

    work.cancel()
    await asyncio.gather(work, return_exceptions=True)
    raise UploadCancelledError("Upload cancelled")
