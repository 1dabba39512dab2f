"""Models used by the capture uploader."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class CaptureFormat(str, Enum):
    """Input data format declared when creating a capture."""

    BULK_IMAGES = "bulk-images"
    VIDEO = "video"

    @classmethod
    def from_filename(cls, name: str) -> CaptureFormat:
        """Infer the capture format from a file name.

        Zip archives are uploaded as bulk images, everything else as video.
        """
        if name.lower().endswith(".zip"):
            return cls.BULK_IMAGES
        return cls.VIDEO


class UploadPhase(str, Enum):
    """Lifecycle phases of a single capture upload.

    State transitions:
    - IDLE -> CREATING -> UPLOADING -> COMPLETING -> DONE
    - Any non-terminal phase -> FAILED
    """

    IDLE = "idle"
    CREATING = "creating"
    UPLOADING = "uploading"
    COMPLETING = "completing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions are allowed."""
        return self in (UploadPhase.DONE, UploadPhase.FAILED)


_NEXT_PHASE = {
    UploadPhase.IDLE: UploadPhase.CREATING,
    UploadPhase.CREATING: UploadPhase.UPLOADING,
    UploadPhase.UPLOADING: UploadPhase.COMPLETING,
    UploadPhase.COMPLETING: UploadPhase.DONE,
}


@dataclass
class UploadState:
    """Phase and part progress of an upload."""

    phase: UploadPhase = UploadPhase.IDLE
    parts_done: int = 0
    parts_total: int = 0

    def transition(self, phase: UploadPhase) -> None:
        """Move to ``phase``.

        Raises:
            RuntimeError: If the transition skips a phase, goes backwards or
                leaves a terminal phase.
        """
        if self.phase.is_terminal:
            raise RuntimeError(f"Upload already {self.phase.value}")
        if phase is not UploadPhase.FAILED and _NEXT_PHASE[self.phase] is not phase:
            raise RuntimeError(
                f"Invalid upload transition {self.phase.value} -> {phase.value}"
            )
        self.phase = phase

    def record_part_done(self) -> None:
        """Count one more finished part."""
        if self.parts_done >= self.parts_total:
            raise RuntimeError("More parts finished than the session contains")
        self.parts_done += 1


@dataclass(frozen=True)
class Credential:
    """Bearer token with its (margin-adjusted) expiry."""

    token: str
    expires_at_epoch_ms: int

    def is_valid(self, now_ms: int) -> bool:
        """Whether the token may still be used at ``now_ms``."""
        return now_ms < self.expires_at_epoch_ms


@dataclass(frozen=True)
class UploadSession:
    """Multi-part upload session negotiated with the capture API."""

    session_id: str
    total_parts: int
    chunk_size_bytes: int
    total_bytes: int


@dataclass(frozen=True)
class PartTask:
    """Byte range ``[start, end)`` uploaded as one part."""

    part_number: int
    start: int
    end: int

    @property
    def size(self) -> int:
        """Number of bytes in the part."""
        return self.end - self.start


@dataclass(frozen=True)
class PartResult:
    """Integrity token returned for a transferred part."""

    part_number: int
    etag: str

    def to_payload(self) -> dict[str, Any]:
        """Return the part entry sent with the completion request."""
        return {"number": self.part_number, "etag": self.etag}


def plan_parts(session: UploadSession) -> list[PartTask]:
    """Split a session into its part byte ranges.

    Part ``n`` covers ``[(n-1)*chunk, min(n*chunk, total_bytes))``.

    Args:
        session: Negotiated upload session.

    Returns:
        One PartTask per part number, ordered ``1..total_parts``.
    """
    chunk = session.chunk_size_bytes
    tasks = []
    for part_number in range(1, session.total_parts + 1):
        start = (part_number - 1) * chunk
        end = min(start + chunk, session.total_bytes)
        tasks.append(PartTask(part_number=part_number, start=start, end=end))
    return tasks


class TokenResponse(BaseModel):
    """Token endpoint response for the client-credentials grant."""

    access_token: str = Field(min_length=1)
    expires_in: int = Field(ge=0)


class CreateCaptureRequest(BaseModel):
    """Body of ``POST /captures``."""

    name: str
    bytesize: int
    input_data_format: CaptureFormat
    num_frames: int | None = None
    guided_mode: bool | None = None


class CreateCaptureResponse(BaseModel):
    """Response of ``POST /captures``."""

    eid: str = Field(min_length=1)
    num_parts: int = Field(ge=1)
    chunk_size: int = Field(gt=0)


class UploadUrlRequest(BaseModel):
    """Body of ``POST /captures/{eid}/create-upload-url/{part_no}``."""

    eid: str
    bytesize: int


class UploadUrlResponse(BaseModel):
    """Response of ``POST /captures/{eid}/create-upload-url/{part_no}``."""

    upload_url: str = Field(min_length=1)


class CompletedPart(BaseModel):
    """One entry of the completion part list."""

    number: int
    etag: str


class CompleteUploadRequest(BaseModel):
    """Body of ``POST /captures/{eid}/uploaded``."""

    eid: str
    parts: list[CompletedPart]
