"""Client transports that move one file to object storage.

``ChunkedUploadStrategy`` drives the init, chunk and finalize protocol of the
upload server. ``DirectUploadStrategy`` asks the server for a signed URL and
streams the whole file to it in one request. Workers obtain one of them per
transfer through ``get_upload_strategy``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import unquote, urlsplit

import aiohttp

from tracklift.chunking import ChunkRange, plan_chunks, read_chunk
from tracklift.config_manager.settings import ClientConfig
from tracklift.const import (
    API_PREFIX,
    DIRECT_UPLOAD_ENDPOINT,
    FINALIZE_UPLOAD_ENDPOINT,
    GET_UPLOAD_URL_ENDPOINT,
    INIT_UPLOAD_ENDPOINT,
    STREAM_READ_SIZE,
    UPLOAD_CHUNK_ENDPOINT,
)
from tracklift.exceptions import TransportError, UploadError, error_from_code
from tracklift.models import FileDescriptor, FinalizedObject, UploadMode

logger = logging.getLogger(__name__)


async def _read_json(response: aiohttp.ClientResponse) -> dict[str, Any]:
    try:
        body = await response.json(content_type=None)
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _finalized_from_body(body: dict[str, Any], file: FileDescriptor) -> FinalizedObject:
    info = body.get("file") or {}
    return FinalizedObject(
        path=str(info.get("path") or info.get("name") or file.name),
        name=str(info.get("name") or file.name),
        size=int(info.get("size", file.size)),
    )


class UploadStrategy(ABC):
    """One transfer of one file; instances are not reused across files."""

    def __init__(self, config: ClientConfig, session: aiohttp.ClientSession) -> None:
        """Initialize the strategy.

        Args:
            config: Client configuration.
            session: Shared aiohttp session for HTTP requests.
        """
        self._config = config
        self._session = session
        self._base_url = config.api_url.rstrip("/") + API_PREFIX
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        """Send one request and return its JSON body.

        Raises:
            TransportError: On connection failures and timeouts.
            UploadError: The error class matching the server's error code.
        """
        try:
            async with self._session.request(
                method, url, timeout=self._timeout, **kwargs
            ) as response:
                body = await _read_json(response)
                if response.status >= 400:
                    message = body.get("error") or f"HTTP {response.status}"
                    raise error_from_code(body.get("code"), str(message))
                return body
        except aiohttp.ClientError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransportError(f"{method} {url} timed out") from e

    @abstractmethod
    def plan(self, file: FileDescriptor) -> list[ChunkRange]:
        """Return the ranges that ``upload_chunk`` will be called with."""

    @abstractmethod
    async def start(self, file: FileDescriptor, total_chunks: int) -> None:
        """Open the transfer on the server."""

    @abstractmethod
    async def upload_chunk(
        self, file: FileDescriptor, chunk: ChunkRange, total_chunks: int
    ) -> None:
        """Send one planned range."""

    @abstractmethod
    async def finish(self, file: FileDescriptor) -> FinalizedObject:
        """Commit the transfer and return the stored object."""


class ChunkedUploadStrategy(UploadStrategy):
    """Sends a file as ordered, position-tagged chunks through the server."""

    def __init__(self, config: ClientConfig, session: aiohttp.ClientSession) -> None:
        """Initialize the strategy."""
        super().__init__(config, session)
        self._upload_id: str | None = None
        self._total_chunks = 0

    @property
    def upload_id(self) -> str | None:
        """Server session id once ``start`` succeeded."""
        return self._upload_id

    def plan(self, file: FileDescriptor) -> list[ChunkRange]:
        """Split the file into ``config.chunk_size`` ranges."""
        return plan_chunks(file.size, self._config.chunk_size)

    async def start(self, file: FileDescriptor, total_chunks: int) -> None:
        """Create an upload session for the file."""
        body = await self._request(
            "POST",
            self._base_url + INIT_UPLOAD_ENDPOINT,
            json={
                "fileName": file.name,
                "fileSize": file.size,
                "totalChunks": total_chunks,
            },
        )
        upload_id = body.get("uploadId")
        if not upload_id:
            raise UploadError("init-upload response did not include an uploadId")
        self._upload_id = str(upload_id)
        self._total_chunks = total_chunks
        logger.info(
            "Opened upload session %s for %s (%d chunks)",
            self._upload_id,
            file.name,
            total_chunks,
        )

    async def upload_chunk(
        self, file: FileDescriptor, chunk: ChunkRange, total_chunks: int
    ) -> None:
        """Send one range as a multipart request tagged with its position."""
        if self._upload_id is None:
            raise UploadError("upload_chunk called before start")
        data = await asyncio.to_thread(read_chunk, file.path, chunk)

        form = aiohttp.FormData()
        form.add_field("uploadId", self._upload_id)
        form.add_field("chunkIndex", str(chunk.index))
        form.add_field("totalChunks", str(total_chunks))
        form.add_field(
            "chunk",
            data,
            filename=file.name,
            content_type="application/octet-stream",
        )
        await self._request("POST", self._base_url + UPLOAD_CHUNK_ENDPOINT, data=form)
        logger.debug(
            "Sent chunk %d/%d of %s (%d bytes)",
            chunk.index + 1,
            total_chunks,
            file.name,
            chunk.length,
        )

    async def finish(self, file: FileDescriptor) -> FinalizedObject:
        """Ask the server to reassemble the session."""
        if self._upload_id is None:
            raise UploadError("finish called before start")
        body = await self._request(
            "POST",
            self._base_url + FINALIZE_UPLOAD_ENDPOINT,
            json={
                "uploadId": self._upload_id,
                "fileName": file.name,
                "totalChunks": self._total_chunks,
            },
        )
        return _finalized_from_body(body, file)


class DirectUploadStrategy(UploadStrategy):
    """Streams the whole file in one PUT to a signed storage URL."""

    def __init__(self, config: ClientConfig, session: aiohttp.ClientSession) -> None:
        """Initialize the strategy."""
        super().__init__(config, session)
        self._signed_url: str | None = None
        self._result: FinalizedObject | None = None

    def plan(self, file: FileDescriptor) -> list[ChunkRange]:
        """A single range covering the file."""
        return [ChunkRange(index=0, start=0, end=file.size)]

    async def start(self, file: FileDescriptor, total_chunks: int) -> None:
        """Obtain a signed upload URL for the file."""
        body = await self._request(
            "POST",
            self._base_url + GET_UPLOAD_URL_ENDPOINT,
            json={"fileName": file.name},
        )
        signed_url = body.get("signedUrl")
        if not signed_url:
            raise UploadError("get-upload-url response did not include a signedUrl")
        self._signed_url = str(signed_url)

    async def _iter_file(self, file: FileDescriptor) -> AsyncIterator[bytes]:
        with open(file.path, "rb") as f:
            while True:
                data = await asyncio.to_thread(f.read, STREAM_READ_SIZE)
                if not data:
                    return
                yield data

    async def upload_chunk(
        self, file: FileDescriptor, chunk: ChunkRange, total_chunks: int
    ) -> None:
        """Stream the file body to the signed URL."""
        if self._signed_url is None:
            raise UploadError("upload_chunk called before start")
        body = await self._request(
            "PUT",
            self._signed_url,
            data=self._iter_file(file),
            headers={
                "Content-Type": file.content_type,
                "Content-Length": str(file.size),
            },
        )
        if body.get("file"):
            self._result = _finalized_from_body(body, file)
        else:
            # Plain storage endpoints answer with an empty body.
            path = unquote(urlsplit(self._signed_url).path)
            marker = API_PREFIX + DIRECT_UPLOAD_ENDPOINT + "/"
            object_path = path.split(marker, 1)[-1].lstrip("/")
            self._result = FinalizedObject(
                path=object_path,
                name=PurePosixPath(object_path).name or file.name,
                size=file.size,
            )

    async def finish(self, file: FileDescriptor) -> FinalizedObject:
        """Return the object written by the PUT; storage commits on receipt."""
        if self._result is None:
            raise UploadError("finish called before the file was sent")
        return self._result


def get_upload_strategy(
    config: ClientConfig, session: aiohttp.ClientSession
) -> UploadStrategy:
    """Return a fresh strategy for ``config.upload_mode``."""
    if config.upload_mode == UploadMode.DIRECT:
        return DirectUploadStrategy(config, session)
    return ChunkedUploadStrategy(config, session)
