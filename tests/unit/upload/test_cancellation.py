import asyncio

import pytest

from teleport_uploader.exceptions import UploadCancelledError
from teleport_uploader.upload.cancellation import run_cancellable


@pytest.mark.asyncio
async def test_without_event_returns_result():
    async def work():
        return 42

    assert await run_cancellable(work(), None) == 42


@pytest.mark.asyncio
async def test_unset_event_returns_result():
    async def work():
        await asyncio.sleep(0)
        return "done"

    assert await run_cancellable(work(), asyncio.Event()) == "done"


@pytest.mark.asyncio
async def test_work_errors_propagate():
    async def work():
        raise KeyError("boom")

    with pytest.raises(KeyError):
        await run_cancellable(work(), asyncio.Event())


@pytest.mark.asyncio
async def test_setting_event_cancels_work():
    cancel_event = asyncio.Event()
    work_cancelled = asyncio.Event()

    async def work():
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            work_cancelled.set()
            raise

    asyncio.get_running_loop().call_later(0.01, cancel_event.set)

    with pytest.raises(UploadCancelledError):
        await run_cancellable(work(), cancel_event)

    assert work_cancelled.is_set()


@pytest.mark.asyncio
async def test_preset_event_never_starts_work():
    cancel_event = asyncio.Event()
    cancel_event.set()
    started = False

    async def work():
        nonlocal started
        started = True

    with pytest.raises(UploadCancelledError):
        await run_cancellable(work(), cancel_event)

    assert not started
