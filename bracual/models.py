"""Task and transcript data structures."""

import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_MIME_TYPE = "application/octet-stream"


class TaskStatus(str, Enum):
    """Lifecycle states of a submitted file."""

    PENDING = "Pending"
    COMPRESSING = "Compressing"
    UPLOADING = "Uploading"
    TRANSCRIBING = "Transcribing"
    SUCCESS = "Success"
    ERROR = "Error"

    @property
    def is_active(self) -> bool:
        return self in _ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCESS, TaskStatus.ERROR)


_ACTIVE_STATUSES = frozenset(
    {TaskStatus.COMPRESSING, TaskStatus.UPLOADING, TaskStatus.TRANSCRIBING}
)


class TranscriptSegment(BaseModel):
    """One chronologically ordered piece of a transcript."""

    model_config = ConfigDict(frozen=True)

    speaker: str = Field(description="Speaker label.")
    timestamp: str = Field(description="Start offset formatted as MM:SS.")
    text: str = Field(description="Trimmed transcript fragment.")


class TranscriptionResult(BaseModel):
    """Transcript segments plus an optional summary."""

    model_config = ConfigDict(frozen=True)

    segments: Tuple[TranscriptSegment, ...] = ()
    summary: Optional[str] = None


@dataclass(frozen=True)
class AudioFile:
    """An input file's bytes and declared mime type."""

    name: str
    data: bytes = field(repr=False)
    mime_type: str = DEFAULT_MIME_TYPE

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: Path) -> "AudioFile":
        """Read a file from disk, guessing its mime type from the extension."""
        path = Path(path)
        mime_type, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            data=path.read_bytes(),
            mime_type=mime_type or DEFAULT_MIME_TYPE,
        )


@dataclass(frozen=True)
class Task:
    """Processing record for one submitted file.

    Instances are never mutated; the queue swaps in updated copies.
    """

    id: str
    file: AudioFile
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    result: Optional[TranscriptionResult] = None
    error: Optional[str] = None
