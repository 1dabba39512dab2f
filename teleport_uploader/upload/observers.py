"""Observers for upload phase and part progress."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

from tqdm import tqdm

from teleport_uploader.models import UploadPhase

logger = logging.getLogger(__name__)


class UploadObserver(Protocol):
    """Receives upload notifications.

    Methods may be plain functions or coroutines. They are dispatched without
    blocking the upload, and exceptions they raise are logged and ignored.
    """

    def on_phase(self, phase: UploadPhase) -> Any:
        """Called after every phase transition."""
        ...

    def on_part_progress(self, done: int, total: int) -> Any:
        """Called once the part count is known and after every finished part."""
        ...


class CallbackObserver:
    """Adapts optional ``on_phase`` / ``on_part_progress`` callables."""

    def __init__(
        self,
        on_phase: Callable[[UploadPhase], Any] | None = None,
        on_part_progress: Callable[[int, int], Any] | None = None,
    ) -> None:
        self._on_phase = on_phase
        self._on_part_progress = on_part_progress

    def on_phase(self, phase: UploadPhase) -> Any:
        if self._on_phase is not None:
            return self._on_phase(phase)
        return None

    def on_part_progress(self, done: int, total: int) -> Any:
        if self._on_part_progress is not None:
            return self._on_part_progress(done, total)
        return None


class TqdmProgressObserver:
    """Shows part progress as a tqdm progress bar."""

    def __init__(self, desc: str = "Uploading capture", disable: bool = False):
        """Initialize the progress bar observer.

        Args:
            desc: Progress bar description.
            disable: Hide the progress bar (e.g. when not attached to a tty).
        """
        self._pbar = tqdm(total=None, desc=desc, unit="part", disable=disable)

    def on_phase(self, phase: UploadPhase) -> None:
        self._pbar.set_postfix_str(phase.value)
        if phase.is_terminal:
            self._pbar.close()

    def on_part_progress(self, done: int, total: int) -> None:
        if self._pbar.total != total:
            self._pbar.total = total
        self._pbar.update(done - self._pbar.n)
