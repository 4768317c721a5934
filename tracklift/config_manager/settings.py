"""Pydantic models for tracklift client and server configuration."""

from __future__ import annotations

import secrets

from pydantic import BaseModel, Field, field_validator

from tracklift.const import (
    ALLOWED_EXTENSIONS,
    API_URL,
    AUDIO_CONTENT_TYPE,
    CHUNK_SIZE,
    CONFIG_DIR,
    DEFAULT_COMPLETED_RETENTION_SECONDS,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_SESSION_TTL_SECONDS,
    DEFAULT_SIGNED_URL_TTL_SECONDS,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    DEFAULT_TARGET_PREFIX,
    MAX_CONCURRENT_UPLOADS,
    QUEUE_DB_FILE,
)
from tracklift.config_manager.helpers import parse_bytes
from tracklift.models import UploadMode


def _normalize_extensions(value: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(
        ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in value
    )


class ClientConfig(BaseModel):
    """Configuration options for the upload queue and its transfers.

    Attributes:
        api_url: Base URL of the upload server.
        chunk_size: Maximum bytes sent in one chunk request.
        max_concurrent_uploads: Number of files transferred at once.
        upload_mode: ``chunked`` through the server or ``direct`` to storage.
        queue_db_path: SQLite file holding the durable queue snapshot.
        request_timeout: Total timeout of one HTTP request, in seconds.
        completed_retention_seconds: Delay before completed items leave the
            queue; ``None`` keeps them.
        allowed_extensions: File name extensions accepted by the queue.
    """

    api_url: str = API_URL
    chunk_size: int = Field(default=CHUNK_SIZE, gt=0)
    max_concurrent_uploads: int = Field(default=MAX_CONCURRENT_UPLOADS, gt=0)
    upload_mode: UploadMode = UploadMode.CHUNKED
    queue_db_path: str = str(CONFIG_DIR / QUEUE_DB_FILE)
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT_SECONDS, gt=0)
    completed_retention_seconds: float | None = DEFAULT_COMPLETED_RETENTION_SECONDS
    allowed_extensions: tuple[str, ...] = ALLOWED_EXTENSIONS

    @field_validator("allowed_extensions")
    @classmethod
    def normalize_extensions(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        """Lower-case extensions and ensure the leading dot."""
        return _normalize_extensions(value)

    @field_validator("chunk_size", mode="before")
    @classmethod
    def parse_size(cls, value: int | str) -> int:
        """Accept unit-suffixed sizes such as ``25m``."""
        return parse_bytes(value)


class ServerConfig(BaseModel):
    """Configuration options for the upload server.

    Attributes:
        host: Interface to bind.
        port: Port to bind.
        temp_dir: Directory for per-session chunk temp areas.
        storage_root: Directory of the local object storage.
        target_prefix: Object path prefix for completed tracks.
        public_url: Externally reachable base URL, used in signed URLs.
        signing_key: Secret for direct-upload URL signatures.
        signed_url_ttl: Lifetime of direct-upload URLs, in seconds.
        session_ttl: Idle seconds before a session is swept.
        sweep_interval: Seconds between sweeps.
        max_chunk_bytes: Largest accepted chunk.
        content_type: MIME type of stored objects.
        allowed_extensions: File name extensions accepted for upload.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    temp_dir: str = str(CONFIG_DIR / "server" / "temp")
    storage_root: str = str(CONFIG_DIR / "server" / "objects")
    target_prefix: str = DEFAULT_TARGET_PREFIX
    public_url: str = f"http://localhost:{DEFAULT_PORT}"
    signing_key: str = Field(default_factory=lambda: secrets.token_hex(32))
    signed_url_ttl: int = Field(default=DEFAULT_SIGNED_URL_TTL_SECONDS, gt=0)
    session_ttl: float = Field(default=DEFAULT_SESSION_TTL_SECONDS, gt=0)
    sweep_interval: float = Field(default=DEFAULT_SWEEP_INTERVAL_SECONDS, gt=0)
    max_chunk_bytes: int = Field(default=CHUNK_SIZE, gt=0)
    content_type: str = AUDIO_CONTENT_TYPE
    allowed_extensions: tuple[str, ...] = ALLOWED_EXTENSIONS

    @field_validator("allowed_extensions")
    @classmethod
    def normalize_extensions(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        """Lower-case extensions and ensure the leading dot."""
        return _normalize_extensions(value)

    @field_validator("max_chunk_bytes", mode="before")
    @classmethod
    def parse_size(cls, value: int | str) -> int:
        """Accept unit-suffixed sizes such as ``25m``."""
        return parse_bytes(value)
