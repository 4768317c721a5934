"""Transfer worker: moves one queue item through its upload phases.

A worker never touches queue state. It reports through tagged events put on
the manager's channel and observes a cancel flag between chunks. Once the
worker is finalizing, a cancel can no longer stop the object from being
created; the manager has already marked the item cancelled and ignores the
worker's late ``Completed`` event.
"""

from __future__ import annotations

import asyncio
import logging

from tracklift.const import CHUNK_PROGRESS_CEILING, FINALIZING_PROGRESS
from tracklift.exceptions import UploadCancelled, UploadError
from tracklift.models import (
    Cancelled,
    Completed,
    Failed,
    FileDescriptor,
    Progress,
    Started,
    TransferEvent,
    TransferPhase,
)

from .upload_strategy import UploadStrategy

logger = logging.getLogger(__name__)


def chunk_progress(sent_chunks: int, total_chunks: int) -> float:
    """Percent reported after ``sent_chunks`` of ``total_chunks`` were sent."""
    if total_chunks <= 0:
        return 0.0
    percent = sent_chunks / total_chunks * CHUNK_PROGRESS_CEILING
    return min(CHUNK_PROGRESS_CEILING, percent)


class TransferWorker:
    """Uploads one file and posts its lifecycle events."""

    def __init__(
        self,
        item_id: str,
        file: FileDescriptor,
        strategy: UploadStrategy,
        events: asyncio.Queue[TransferEvent],
    ) -> None:
        """Initialize the worker.

        Args:
            item_id: Queue item the events are tagged with.
            file: Local file to upload.
            strategy: Transport for this transfer.
            events: Channel owned by the upload manager.
        """
        self.item_id = item_id
        self._file = file
        self._strategy = strategy
        self._events = events
        self._cancel_requested = asyncio.Event()
        self.phase = TransferPhase.IDLE

    @property
    def cancel_requested(self) -> bool:
        """Whether ``cancel`` has been called."""
        return self._cancel_requested.is_set()

    def cancel(self) -> None:
        """Ask the worker to stop before its next chunk."""
        self._cancel_requested.set()

    def _post(self, event: TransferEvent) -> None:
        self._events.put_nowait(event)

    def _check_cancelled(self) -> None:
        if self._cancel_requested.is_set():
            raise UploadCancelled(f"Upload of {self._file.name} was cancelled")

    async def run(self) -> None:
        """Run the transfer to a terminal phase.

        Failures are reported as ``Failed`` events rather than raised; task
        cancellation propagates without an event.
        """
        try:
            await self._transfer()
        except UploadCancelled:
            self.phase = TransferPhase.CANCELLED
            logger.info("Upload of %s cancelled", self._file.name)
            self._post(Cancelled(self.item_id))
        except UploadError as e:
            self._fail(str(e))
        except FileNotFoundError as e:
            self._fail(f"File not found: {e.filename or self._file.path}")
        except OSError as e:
            self._fail(f"Could not read {self._file.name}: {e}")
        except asyncio.CancelledError:
            logger.info("Transfer task for %s stopped", self._file.name)
            raise
        except Exception as e:
            logger.error(
                "Unexpected error uploading %s: %s", self._file.name, e, exc_info=True
            )
            self._fail(f"Upload error: {e}")

    def _fail(self, reason: str) -> None:
        logger.warning(
            "Upload of %s failed during %s: %s",
            self._file.name,
            self.phase.value,
            reason,
        )
        self.phase = TransferPhase.ERROR
        self._post(Failed(self.item_id, reason))

    async def _transfer(self) -> None:
        chunks = self._strategy.plan(self._file)
        total = len(chunks)

        self.phase = TransferPhase.INITIALIZING
        self._post(Started(self.item_id))
        await self._strategy.start(self._file, total)

        for sent, chunk in enumerate(chunks):
            self._check_cancelled()
            self.phase = TransferPhase.UPLOADING_CHUNK
            text = f"Uploading chunk {chunk.index + 1} of {total}"
            self._post(Progress(self.item_id, chunk_progress(sent, total), text))
            await self._strategy.upload_chunk(self._file, chunk, total)
            self._post(Progress(self.item_id, chunk_progress(sent + 1, total), text))

        self._check_cancelled()
        self.phase = TransferPhase.FINALIZING
        self._post(Progress(self.item_id, FINALIZING_PROGRESS, "Finalizing upload..."))
        result = await self._strategy.finish(self._file)

        self.phase = TransferPhase.COMPLETED
        logger.info(
            "Uploaded %s to %s (%d bytes)", self._file.name, result.path, result.size
        )
        self._post(Completed(self.item_id, result.path, result.size))
