"""Chunk receiver and finalizer for the chunked upload protocol.

Chunks may arrive in any order and more than once; each position is written
to its own file in the session's temp area and counted once. Finalize reads
the positions back strictly in ascending order into a single storage write
stream, so arrival order never affects the stored bytes.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from collections.abc import AsyncIterator
from pathlib import PurePosixPath

from tracklift.const import (
    ALLOWED_EXTENSIONS,
    AUDIO_CONTENT_TYPE,
    CHUNK_SIZE,
    DEFAULT_SIGNED_URL_TTL_SECONDS,
    DEFAULT_TARGET_PREFIX,
)
from tracklift.exceptions import (
    IncompleteUpload,
    InvalidRequest,
    MissingPayload,
    StorageWriteError,
    UploadError,
    ValidationError,
)
from tracklift.models import FinalizedObject, ObjectInfo
from tracklift.storage.object_storage import ObjectStorage

from .session_store import SessionStore, UploadSession

logger = logging.getLogger(__name__)


def validate_file_name(
    file_name: str | None, allowed_extensions: tuple[str, ...] = ALLOWED_EXTENSIONS
) -> str:
    """Return ``file_name`` if it is a plain file name with an allowed extension.

    Raises:
        InvalidRequest: If the name is missing or contains path components.
        ValidationError: If the extension is not allowed.
    """
    if not file_name or not file_name.strip():
        raise InvalidRequest("fileName is required")
    if "/" in file_name or "\\" in file_name or file_name in {".", ".."}:
        raise InvalidRequest(f"fileName must not contain path separators: {file_name}")
    suffix = PurePosixPath(file_name).suffix.lower()
    if allowed_extensions and suffix not in allowed_extensions:
        allowed = ", ".join(allowed_extensions)
        raise ValidationError(f"Only {allowed} files are allowed: {file_name}")
    return file_name


def _write_chunk_file(session: UploadSession, chunk_index: int, data: bytes) -> None:
    target = session.chunk_path(chunk_index)
    staging = target.with_name(f"{target.name}.{uuid.uuid4().hex}.tmp")
    with open(staging, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.replace(staging, target)


class ChunkedUploadService:
    """Server side of init, chunk, finalize and the direct-mode helpers."""

    def __init__(
        self,
        store: SessionStore,
        storage: ObjectStorage,
        target_prefix: str = DEFAULT_TARGET_PREFIX,
        content_type: str = AUDIO_CONTENT_TYPE,
        allowed_extensions: tuple[str, ...] = ALLOWED_EXTENSIONS,
        signed_url_ttl: int = DEFAULT_SIGNED_URL_TTL_SECONDS,
        max_chunk_bytes: int = CHUNK_SIZE,
    ) -> None:
        """Initialize the service.

        Args:
            store: Registry of live upload sessions.
            storage: Destination object storage.
            target_prefix: Object path prefix for completed tracks.
            content_type: MIME type given to every stored object.
            allowed_extensions: Accepted file name extensions.
            signed_url_ttl: Lifetime of direct-upload URLs in seconds.
            max_chunk_bytes: Largest accepted chunk payload.
        """
        self._store = store
        self._storage = storage
        self._target_prefix = target_prefix.strip("/")
        self._content_type = content_type
        self._allowed_extensions = allowed_extensions
        self._signed_url_ttl = signed_url_ttl
        self._max_chunk_bytes = max_chunk_bytes

    @property
    def store(self) -> SessionStore:
        """Registry of live upload sessions."""
        return self._store

    @property
    def storage(self) -> ObjectStorage:
        """Destination object storage."""
        return self._storage

    @property
    def allowed_extensions(self) -> tuple[str, ...]:
        """File name extensions accepted for upload."""
        return self._allowed_extensions

    @property
    def target_prefix(self) -> str:
        """Object path prefix for completed tracks."""
        return self._target_prefix

    def object_path_for(self, file_name: str) -> str:
        """Return the destination object path of a track."""
        if not self._target_prefix:
            return file_name
        return f"{self._target_prefix}/{file_name}"

    def init_upload(self, file_name: str, file_size: int, total_chunks: int) -> str:
        """Create an upload session and return its id.

        Raises:
            InvalidRequest: If a field is missing or out of range.
            ValidationError: If the file type is not allowed.
        """
        validate_file_name(file_name, self._allowed_extensions)
        if file_size is None or file_size < 0:
            raise InvalidRequest(f"fileSize must be non-negative, got {file_size}")
        if total_chunks is None or total_chunks <= 0:
            raise InvalidRequest(f"totalChunks must be positive, got {total_chunks}")
        return self._store.create(file_name, file_size, total_chunks).upload_id

    async def receive_chunk(
        self, upload_id: str, chunk_index: int, data: bytes | None
    ) -> tuple[int, int]:
        """Persist one chunk at its position.

        Writing the same position twice overwrites the stored chunk and
        leaves the received count unchanged.

        Returns:
            Tuple of (received_chunks, total_chunks).

        Raises:
            SessionNotFound: If the upload id is unknown.
            MissingPayload: If no chunk bytes were attached.
            InvalidRequest: If the index is outside the session's range.
        """
        session = self._store.get(upload_id)
        if data is None:
            raise MissingPayload("No chunk uploaded")
        if len(data) > self._max_chunk_bytes:
            raise InvalidRequest(
                f"Chunk of {len(data)} bytes exceeds the {self._max_chunk_bytes} "
                "byte limit"
            )
        if not 0 <= chunk_index < session.total_chunks:
            raise InvalidRequest(
                f"chunkIndex must be between 0 and {session.total_chunks - 1}, "
                f"got {chunk_index}"
            )

        async with session.lock:
            # Re-check after waiting: a finalize may have consumed the session.
            session = self._store.get(upload_id)
            await asyncio.to_thread(_write_chunk_file, session, chunk_index, data)
            session.received.add(chunk_index)
            session.touch()
            received, total = session.received_chunks, session.total_chunks

        logger.debug(
            "Stored chunk %d (%d bytes) for %s: %d/%d",
            chunk_index,
            len(data),
            upload_id,
            received,
            total,
        )
        return received, total

    async def finalize(
        self,
        upload_id: str,
        file_name: str | None = None,
        total_chunks: int | None = None,
    ) -> FinalizedObject:
        """Reassemble a session into its destination object.

        On success the temp area and session are destroyed. When the storage
        stream fails, the partial object is discarded and the session is kept
        so that finalize can simply be called again.

        Raises:
            SessionNotFound: If the upload id is unknown.
            InvalidRequest: If ``file_name`` or ``total_chunks`` disagree with
                the session.
            IncompleteUpload: If some chunk positions are still missing.
            StorageWriteError: If writing the destination object failed.
        """
        session = self._store.get(upload_id)
        async with session.lock:
            session = self._store.get(upload_id)
            if file_name is not None and file_name != session.file_name:
                raise InvalidRequest(
                    f"fileName {file_name!r} does not match session "
                    f"{session.file_name!r}"
                )
            if total_chunks is not None and total_chunks != session.total_chunks:
                raise InvalidRequest(
                    f"totalChunks {total_chunks} does not match session "
                    f"{session.total_chunks}"
                )

            lost = [i for i in session.received if not session.chunk_path(i).is_file()]
            session.received.difference_update(lost)
            if not session.is_complete:
                missing = session.missing_chunks()
                raise IncompleteUpload(
                    f"Received {session.received_chunks} of {session.total_chunks} "
                    f"chunks, missing {missing[:10]}"
                )

            object_path = self.object_path_for(session.file_name)
            logger.info(
                "Finalizing %s into %s (%d chunks)",
                upload_id,
                object_path,
                session.total_chunks,
            )
            size = await self._write_object(object_path, self._iter_chunks(session))
            session.touch()

        self._store.destroy(upload_id)
        logger.info("Finalized %s: %s (%d bytes)", upload_id, object_path, size)
        return FinalizedObject(path=object_path, name=session.file_name, size=size)

    async def _iter_chunks(self, session: UploadSession) -> AsyncIterator[bytes]:
        for chunk_index in range(session.total_chunks):
            yield await asyncio.to_thread(session.chunk_path(chunk_index).read_bytes)

    async def _write_object(
        self, object_path: str, chunks: AsyncIterator[bytes]
    ) -> int:
        """Stream ``chunks`` in order into a new object and return its size."""
        stream = self._storage.open_write_stream(object_path, self._content_type)
        try:
            async for data in chunks:
                await stream.write(data)
            return await stream.close()
        except BaseException as e:
            await stream.abort()
            if isinstance(e, StorageWriteError):
                logger.warning("Storage write failed for %s: %s", object_path, e)
                raise
            if isinstance(e, (OSError, UploadError)):
                logger.warning("Storage write failed for %s: %s", object_path, e)
                raise StorageWriteError(f"Failed to store {object_path}: {e}") from e
            raise

    def abort(self, upload_id: str) -> None:
        """Discard a session and its temp area.

        Raises:
            SessionNotFound: If the upload id is unknown.
        """
        session = self._store.get(upload_id)
        if session.lock.locked():
            raise InvalidRequest(f"Upload session {upload_id} is busy")
        self._store.destroy(upload_id)

    def issue_upload_url(self, file_name: str) -> str:
        """Return a signed URL for a one-shot direct upload of a track."""
        validate_file_name(file_name, self._allowed_extensions)
        object_path = self.object_path_for(file_name)
        logger.info("Issued direct upload URL for %s", object_path)
        return self._storage.sign_write_url(object_path, self._signed_url_ttl)

    async def store_stream(
        self, object_path: str, chunks: AsyncIterator[bytes]
    ) -> FinalizedObject:
        """Write a whole object from a byte stream, bypassing sessions."""
        size = await self._write_object(object_path, chunks)
        return FinalizedObject(
            path=object_path, name=PurePosixPath(object_path).name, size=size
        )

    async def list_tracks(self) -> list[ObjectInfo]:
        """List completed objects under the target prefix."""
        return await self._storage.list(self._target_prefix)

    async def delete_object(self, object_path: str) -> None:
        """Delete a stored object.

        Raises:
            ObjectNotFound: If the object does not exist.
        """
        await self._storage.delete(object_path)
