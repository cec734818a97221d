import enum
import io
import mimetypes
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import BinaryIO


class SessionStatus(str, enum.Enum):
    idle = "idle"
    uploading = "uploading"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.completed, SessionStatus.failed)


class SubmitOutcome(str, enum.Enum):
    accepted = "accepted"
    no_files = "no-files"
    too_many_files = "too-many-files"
    file_too_large = "file-too-large"
    no_job_selected = "no-job-selected"
    unauthenticated = "unauthenticated"


class AttemptOutcome(str, enum.Enum):
    succeeded = "succeeded"
    failed = "failed"


@dataclass(frozen=True)
class FileItem:
    """Reference to one file of a batch.

    Only the name, size and an ``opener`` are held. Contents are read when the
    transport opens the file for the chunk that carries it.
    """

    name: str
    size: int
    opener: Callable[[], BinaryIO] = field(repr=False, compare=False)
    last_modified: float | None = None
    content_type: str = "application/octet-stream"

    def open(self) -> BinaryIO:
        return self.opener()

    @classmethod
    def from_path(cls, path: str | os.PathLike, content_type: str | None = None) -> "FileItem":
        file_path = Path(path)
        stat = file_path.stat()
        guessed, _ = mimetypes.guess_type(file_path.name)
        return cls(
            name=file_path.name,
            size=stat.st_size,
            opener=partial(file_path.open, "rb"),
            last_modified=stat.st_mtime,
            content_type=content_type or guessed or "application/octet-stream",
        )

    @classmethod
    def from_bytes(cls, name: str, data: bytes, content_type: str = "application/octet-stream") -> "FileItem":
        return cls(name=name, size=len(data), opener=partial(io.BytesIO, data), content_type=content_type)


@dataclass(frozen=True)
class Chunk:
    index: int
    job_id: str
    files: tuple[FileItem, ...]

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def size_bytes(self) -> int:
        return sum(item.size for item in self.files)


@dataclass(frozen=True)
class TransferAttempt:
    chunk_index: int
    attempt: int
    outcome: AttemptOutcome
    latency_ms: float
    error: str | None = None


@dataclass(frozen=True)
class ChunkOutcome:
    chunk: Chunk
    succeeded: bool
    attempts: tuple[TransferAttempt, ...]
    error: str | None = None
