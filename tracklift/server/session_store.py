"""In-memory registry of chunked upload sessions.

Sessions live only as long as the server process. Each session owns a temp
directory holding one file per chunk position; the directory is removed
whenever the session is destroyed, and a periodic sweep removes sessions that
were abandoned as well as directories left behind by a previous process.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from tracklift.const import DEFAULT_SESSION_TTL_SECONDS
from tracklift.exceptions import SessionNotFound

logger = logging.getLogger(__name__)


@dataclass
class UploadSession:
    """Server-side record correlating the chunks of one file transfer."""

    upload_id: str
    file_name: str
    file_size: int
    total_chunks: int
    temp_area: Path
    received: set[int] = field(default_factory=set)
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def received_chunks(self) -> int:
        """Number of distinct chunk positions persisted so far."""
        return len(self.received)

    @property
    def is_complete(self) -> bool:
        """Whether every chunk position has been persisted."""
        return self.received_chunks == self.total_chunks

    def missing_chunks(self) -> list[int]:
        """Return the chunk positions not yet received, ascending."""
        return sorted(set(range(self.total_chunks)) - self.received)

    def chunk_path(self, chunk_index: int) -> Path:
        """Location of a chunk inside the temp area."""
        return self.temp_area / f"chunk_{chunk_index:06d}"

    def touch(self) -> None:
        """Record activity so the sweep leaves the session alone."""
        self.last_activity = time.time()


class SessionStore:
    """Owns every live ``UploadSession`` and its temp area."""

    def __init__(
        self,
        temp_dir: str | Path,
        session_ttl: float = DEFAULT_SESSION_TTL_SECONDS,
    ) -> None:
        """Initialize the store.

        Args:
            temp_dir: Directory under which per-session temp areas are created.
            session_ttl: Seconds of inactivity after which a session is swept.
        """
        self._temp_dir = Path(temp_dir).expanduser().resolve()
        self._temp_dir.mkdir(parents=True, exist_ok=True)
        self._session_ttl = session_ttl
        self._sessions: dict[str, UploadSession] = {}

    @property
    def temp_dir(self) -> Path:
        """Directory holding the per-session temp areas."""
        return self._temp_dir

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, upload_id: object) -> bool:
        return upload_id in self._sessions

    def create(
        self, file_name: str, file_size: int, total_chunks: int
    ) -> UploadSession:
        """Allocate a session and its temp area."""
        upload_id = uuid.uuid4().hex
        while upload_id in self._sessions:
            upload_id = uuid.uuid4().hex

        temp_area = self._temp_dir / upload_id
        temp_area.mkdir(parents=True, exist_ok=False)

        session = UploadSession(
            upload_id=upload_id,
            file_name=file_name,
            file_size=file_size,
            total_chunks=total_chunks,
            temp_area=temp_area,
        )
        self._sessions[upload_id] = session
        logger.info(
            "Created upload session %s for %s (%d bytes, %d chunks)",
            upload_id,
            file_name,
            file_size,
            total_chunks,
        )
        return session

    def get(self, upload_id: str) -> UploadSession:
        """Return a live session.

        Raises:
            SessionNotFound: If the id is unknown or the session was destroyed.
        """
        session = self._sessions.get(upload_id)
        if session is None:
            raise SessionNotFound(f"Upload session not found: {upload_id}")
        return session

    def destroy(self, upload_id: str) -> bool:
        """Remove a session and its temp area.

        Returns:
            True if a session was removed, False if it was already gone.
        """
        session = self._sessions.pop(upload_id, None)
        if session is None:
            return False
        shutil.rmtree(session.temp_area, ignore_errors=True)
        logger.info("Destroyed upload session %s", upload_id)
        return True

    def sweep(self, now: float | None = None) -> int:
        """Destroy idle sessions and orphaned temp areas.

        Sessions whose lock is held are in the middle of a request and are
        skipped.

        Args:
            now: Current wall clock time, defaults to ``time.time()``.

        Returns:
            Number of sessions and orphaned directories removed.
        """
        now = time.time() if now is None else now
        cutoff = now - self._session_ttl
        removed = 0

        expired = [
            upload_id
            for upload_id, session in self._sessions.items()
            if session.last_activity < cutoff and not session.lock.locked()
        ]
        for upload_id in expired:
            logger.warning("Sweeping abandoned upload session %s", upload_id)
            if self.destroy(upload_id):
                removed += 1

        for entry in self._temp_dir.iterdir():
            if not entry.is_dir() or entry.name in self._sessions:
                continue
            try:
                modified = entry.stat().st_mtime
            except FileNotFoundError:
                continue
            if modified < cutoff:
                logger.warning("Removing orphaned temp area %s", entry)
                shutil.rmtree(entry, ignore_errors=True)
                removed += 1

        return removed
