"""Chunked capture upload: scheduling, retries and orchestration."""

from .observers import CallbackObserver, TqdmProgressObserver, UploadObserver
from .orchestrator import UploadOrchestrator
from .source import BytesSource, FileSource, UploadSource

__all__ = [
    "BytesSource",
    "CallbackObserver",
    "FileSource",
    "TqdmProgressObserver",
    "UploadObserver",
    "UploadOrchestrator",
    "UploadSource",
]
