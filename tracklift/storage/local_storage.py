"""Filesystem-backed object storage for non-production deployments."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import os
import time
import uuid
from pathlib import Path, PurePosixPath
from types import TracebackType
from typing import BinaryIO
from urllib.parse import quote, urlencode

from tracklift.const import API_PREFIX, DIRECT_UPLOAD_ENDPOINT
from tracklift.exceptions import InvalidRequest, ObjectNotFound, StorageWriteError
from tracklift.models import ObjectInfo

logger = logging.getLogger(__name__)

PART_SUFFIX = ".part"


def normalize_object_path(object_path: str) -> str:
    """Return a clean relative POSIX object path.

    Raises:
        InvalidRequest: If the path is empty, absolute or escapes the root.
    """
    raw = (object_path or "").replace("\\", "/").strip("/")
    parts = PurePosixPath(raw).parts
    if not parts or any(part in {"", ".", ".."} for part in parts):
        raise InvalidRequest(f"Invalid object path: {object_path!r}")
    return "/".join(parts)


class LocalWriteStream:
    """Write stream that stages into a part file and renames on close."""

    def __init__(self, destination: Path, content_type: str) -> None:
        """Initialize the stream.

        Args:
            destination: Final path of the object.
            content_type: MIME type recorded for the object.
        """
        self._destination = destination
        self._content_type = content_type
        self._part_path = destination.with_name(
            f".{destination.name}.{uuid.uuid4().hex}{PART_SUFFIX}"
        )
        self._file: BinaryIO | None = None
        self._size = 0

    async def _ensure_open(self) -> BinaryIO:
        if self._file is None:
            self._destination.parent.mkdir(parents=True, exist_ok=True)
            self._file = await asyncio.to_thread(open, self._part_path, "wb")
        return self._file

    async def write(self, data: bytes) -> None:
        """Append bytes to the staged object."""
        try:
            f = await self._ensure_open()
            await asyncio.to_thread(f.write, data)
        except OSError as e:
            raise StorageWriteError(
                f"Failed writing {self._destination.name}: {e}"
            ) from e
        self._size += len(data)

    async def close(self) -> int:
        """Flush the staged file and move it into place."""
        try:
            f = await self._ensure_open()
            await asyncio.to_thread(self._flush_and_close, f)
            self._file = None
            os.replace(self._part_path, self._destination)
        except OSError as e:
            await self.abort()
            raise StorageWriteError(
                f"Failed committing {self._destination.name}: {e}"
            ) from e
        logger.info(
            "Stored %s (%d bytes, %s)",
            self._destination,
            self._size,
            self._content_type,
        )
        return self._size

    async def abort(self) -> None:
        """Drop the staged file."""
        if self._file is not None:
            self._file.close()
            self._file = None
        self._part_path.unlink(missing_ok=True)

    @staticmethod
    def _flush_and_close(f: BinaryIO) -> None:
        f.flush()
        os.fsync(f.fileno())
        f.close()

    async def __aenter__(self) -> "LocalWriteStream":
        """Enter the stream context."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Commit on success, abort on error."""
        if exc_type is None:
            await self.close()
        else:
            await self.abort()


class LocalObjectStorage:
    """Stores objects as files under a root directory.

    Signed write URLs point at the server's own direct-upload route and are
    authenticated with an HMAC over the object path and expiry.
    """

    def __init__(self, root: str | Path, public_url: str, signing_key: str) -> None:
        """Initialize the storage.

        Args:
            root: Directory that holds the objects.
            public_url: Externally reachable base URL of the server.
            signing_key: Secret used to sign direct-upload URLs.
        """
        self._root = Path(root).expanduser().resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._public_url = public_url.rstrip("/")
        self._signing_key = signing_key.encode("utf-8")

    @property
    def root(self) -> Path:
        """Directory that holds the objects."""
        return self._root

    def _resolve(self, object_path: str) -> Path:
        return self._root / normalize_object_path(object_path)

    def open_write_stream(
        self, object_path: str, content_type: str
    ) -> LocalWriteStream:
        """Open a write stream for ``object_path``."""
        return LocalWriteStream(self._resolve(object_path), content_type)

    async def exists(self, object_path: str) -> bool:
        """Return whether an object exists."""
        return self._resolve(object_path).is_file()

    async def list(self, prefix: str) -> list[ObjectInfo]:
        """List committed objects under ``prefix``."""
        base = self._resolve(prefix) if prefix.strip("/") else self._root
        if not base.is_dir():
            return []
        items = []
        for path in sorted(base.rglob("*")):
            if not path.is_file() or path.name.endswith(PART_SUFFIX):
                continue
            items.append(
                ObjectInfo(
                    name=path.relative_to(self._root).as_posix(),
                    size=path.stat().st_size,
                )
            )
        return items

    async def delete(self, object_path: str) -> None:
        """Delete an object.

        Raises:
            ObjectNotFound: If the object does not exist.
        """
        path = self._resolve(object_path)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise ObjectNotFound(f"Object not found: {object_path}") from e
        logger.info("Deleted %s", path)

    def _signature(self, object_path: str, expires: int) -> str:
        message = f"{object_path}:{expires}".encode("utf-8")
        return hmac.new(self._signing_key, message, hashlib.sha256).hexdigest()

    def sign_write_url(self, object_path: str, ttl: int) -> str:
        """Return a URL that accepts one PUT of ``object_path`` for ``ttl`` seconds."""
        object_path = normalize_object_path(object_path)
        expires = int(time.time()) + int(ttl)
        query = urlencode(
            {"expires": expires, "signature": self._signature(object_path, expires)}
        )
        return (
            f"{self._public_url}{API_PREFIX}{DIRECT_UPLOAD_ENDPOINT}/"
            f"{quote(object_path)}?{query}"
        )

    def verify_write_signature(
        self,
        object_path: str,
        expires: str | int,
        signature: str,
        now: float | None = None,
    ) -> bool:
        """Check a signature issued by ``sign_write_url``."""
        try:
            object_path = normalize_object_path(object_path)
            expires_at = int(expires)
        except (InvalidRequest, TypeError, ValueError):
            return False
        if expires_at < (time.time() if now is None else now):
            return False
        expected = self._signature(object_path, expires_at)
        return hmac.compare_digest(expected, signature or "")
