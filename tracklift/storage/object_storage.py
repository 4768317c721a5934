"""Protocol for the object storage collaborator."""

from __future__ import annotations

from types import TracebackType
from typing import Protocol

from tracklift.models import ObjectInfo


class WriteStream(Protocol):
    """One outbound stream into a single destination object.

    Nothing becomes visible at the destination until ``close`` succeeds; a
    stream that is aborted or fails leaves no object behind.
    """

    async def write(self, data: bytes) -> None:
        """Append bytes to the object."""
        ...

    async def close(self) -> int:
        """Commit the object and return its size in bytes."""
        ...

    async def abort(self) -> None:
        """Discard everything written so far."""
        ...

    async def __aenter__(self) -> "WriteStream":
        """Enter the stream context."""
        ...

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Commit on success, abort on error."""
        ...


class ObjectStorage(Protocol):
    """Capabilities consumed from the storage service."""

    def open_write_stream(self, object_path: str, content_type: str) -> WriteStream:
        """Open a write stream for ``object_path``."""
        ...

    async def exists(self, object_path: str) -> bool:
        """Return whether an object exists."""
        ...

    async def list(self, prefix: str) -> list[ObjectInfo]:
        """List objects whose path starts with ``prefix``."""
        ...

    async def delete(self, object_path: str) -> None:
        """Delete an object.

        Raises:
            ObjectNotFound: If the object does not exist.
        """
        ...

    def sign_write_url(self, object_path: str, ttl: int) -> str:
        """Return a short-lived URL that accepts one PUT of ``object_path``."""
        ...
