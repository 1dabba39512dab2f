"""Byte sources that can be uploaded as a capture."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from teleport_uploader.models import CaptureFormat


class UploadSource(ABC):
    """A named, sized blob whose byte ranges can be read independently."""

    name: str
    size: int

    @property
    def capture_format(self) -> CaptureFormat:
        """Capture format inferred from the source name."""
        return CaptureFormat.from_filename(self.name)

    @abstractmethod
    def read_range(self, start: int, end: int) -> bytes:
        """Return the bytes in ``[start, end)``."""
        ...


class BytesSource(UploadSource):
    """In-memory upload source."""

    def __init__(self, data: bytes, name: str) -> None:
        self._data = memoryview(data)
        self.name = name
        self.size = len(data)

    def read_range(self, start: int, end: int) -> bytes:
        return self._data[start:end].tobytes()


class FileSource(UploadSource):
    """Upload source backed by a file on disk.

    The file is opened for every range read, so no handle is held between
    parts and ranges can be read from several executor threads at once.
    """

    def __init__(self, path: Path | str, name: str | None = None) -> None:
        """Initialize the file source.

        Args:
            path: Local file path.
            name: Capture name, defaults to the file name.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        self.path = Path(path)
        if not self.path.is_file():
            raise FileNotFoundError(f"File not found: {self.path}")
        self.name = name or self.path.name
        self.size = self.path.stat().st_size

    def read_range(self, start: int, end: int) -> bytes:
        with open(self.path, "rb") as f:
            f.seek(start)
            data = f.read(end - start)
        if len(data) != end - start:
            raise OSError(
                f"Short read from {self.path}: expected {end - start} bytes "
                f"at offset {start}, got {len(data)}"
            )
        return data


def as_upload_source(
    source: UploadSource | bytes | Path | str, name: str | None = None
) -> UploadSource:
    """Wrap bytes or a path in an UploadSource.

    Args:
        source: An existing source, raw bytes, or a file path.
        name: Capture name. Required for raw bytes.

    Raises:
        ValueError: If raw bytes are given without a name.
        FileNotFoundError: If a path does not exist.
    """
    if isinstance(source, UploadSource):
        return source
    if isinstance(source, (bytes, bytearray)):
        if not name:
            raise ValueError("A name is required when uploading raw bytes")
        return BytesSource(bytes(source), name)
    return FileSource(source, name=name)
