"""Models shared by the upload client and server."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tracklift.const import AUDIO_CONTENT_TYPE


def utc_now() -> datetime:
    """Return the current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UploadStatus(str, Enum):
    """Lifecycle states for a queue item.

    State transitions:
    - PENDING -> UPLOADING -> COMPLETED
    - PENDING | UPLOADING -> CANCELLED
    - UPLOADING -> ERROR -> PENDING (explicit retry only)
    """

    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether no automatic transition leaves this state."""
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        """Whether the item still waits for or holds a transfer slot."""
        return self in (UploadStatus.PENDING, UploadStatus.UPLOADING)


TERMINAL_STATUSES = frozenset(
    {UploadStatus.COMPLETED, UploadStatus.ERROR, UploadStatus.CANCELLED}
)


class TransferPhase(str, Enum):
    """Phases a transfer worker moves through for one file."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    UPLOADING_CHUNK = "uploading_chunk"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


class UploadMode(str, Enum):
    """How a file reaches object storage."""

    CHUNKED = "chunked"
    DIRECT = "direct"


@dataclass(frozen=True)
class FileDescriptor:
    """Read-only description of a local source file."""

    name: str
    size: int
    content_type: str
    last_modified: datetime
    path: str

    @classmethod
    def from_path(
        cls, path: str | Path, content_type: str = AUDIO_CONTENT_TYPE
    ) -> "FileDescriptor":
        """Describe a file on disk.

        Raises:
            FileNotFoundError: If the path does not exist.
        """
        file_path = Path(path).expanduser().resolve()
        stat = file_path.stat()
        return cls(
            name=file_path.name,
            size=stat.st_size,
            content_type=content_type,
            last_modified=datetime.fromtimestamp(stat.st_mtime, timezone.utc).replace(
                tzinfo=None
            ),
            path=str(file_path),
        )


@dataclass
class UploadItem:
    """Client-side record of one file's transfer lifecycle."""

    id: str
    file: FileDescriptor
    status: UploadStatus = UploadStatus.PENDING
    progress: float = 0.0
    status_text: str = ""
    error: str | None = None
    added_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def snapshot(self) -> "UploadItem":
        """Return a detached copy safe to hand to observers."""
        return replace(self)

    def to_row(self) -> dict[str, Any]:
        """Flatten into a state store row, excluding file content."""
        return {
            "item_id": self.id,
            "status": self.status,
            "progress": float(self.progress),
            "status_text": self.status_text,
            "error": self.error,
            "file_name": self.file.name,
            "file_size": self.file.size,
            "content_type": self.file.content_type,
            "last_modified": self.file.last_modified,
            "file_path": self.file.path,
            "added_at": self.added_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "UploadItem":
        """Build an UploadItem from a SQLAlchemy mapping row."""
        status_raw = row["status"]
        status = (
            status_raw
            if isinstance(status_raw, UploadStatus)
            else UploadStatus(str(status_raw))
        )
        return cls(
            id=str(row["item_id"]),
            file=FileDescriptor(
                name=str(row["file_name"]),
                size=int(row["file_size"]),
                content_type=str(row["content_type"]),
                last_modified=row["last_modified"],
                path=str(row["file_path"]),
            ),
            status=status,
            progress=float(row.get("progress") or 0.0),
            status_text=row.get("status_text") or "",
            error=row.get("error"),
            added_at=row["added_at"],
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
        )


@dataclass(frozen=True)
class ObjectInfo:
    """A stored object as reported by the storage collaborator."""

    name: str
    size: int


@dataclass(frozen=True)
class FinalizedObject:
    """Result of committing an upload to object storage."""

    path: str
    name: str
    size: int


# Events posted by transfer workers to the queue manager. The manager
# handles every variant; nothing else is ever put on the channel.


@dataclass(frozen=True)
class Started:
    """A worker began transferring an item."""

    item_id: str
    text: str = "Initializing upload..."


@dataclass(frozen=True)
class Progress:
    """A worker advanced an item."""

    item_id: str
    percent: float
    text: str


@dataclass(frozen=True)
class Completed:
    """An item was durably stored."""

    item_id: str
    path: str
    size: int


@dataclass(frozen=True)
class Failed:
    """An item failed and needs an explicit retry."""

    item_id: str
    reason: str


@dataclass(frozen=True)
class Cancelled:
    """A worker observed its cancel flag between chunks."""

    item_id: str


TransferEvent = Started | Progress | Completed | Failed | Cancelled


class _WireModel(BaseModel):
    """Base for JSON bodies using the camelCase field names of the protocol."""

    model_config = ConfigDict(populate_by_name=True)


class InitUploadRequest(_WireModel):
    """Body of ``POST init-upload``."""

    file_name: str = Field(alias="fileName", min_length=1)
    file_size: int = Field(alias="fileSize", ge=0)
    total_chunks: int = Field(alias="totalChunks", gt=0)


class FinalizeUploadRequest(_WireModel):
    """Body of ``POST finalize-upload``."""

    upload_id: str = Field(alias="uploadId", min_length=1)
    file_name: str | None = Field(default=None, alias="fileName")
    total_chunks: int | None = Field(default=None, alias="totalChunks")


class UploadUrlRequest(_WireModel):
    """Body of ``POST get-upload-url``."""

    file_name: str = Field(alias="fileName", min_length=1)
