"""Upload manager for the client-side upload queue.

This module provides the UploadManager class that owns every queue item,
admits at most ``max_concurrent_uploads`` transfers at a time and applies the
events its transfer workers post to its channel. Observers are notified
through a per-manager ``Emitter``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

import aiohttp
from sqlalchemy.exc import SQLAlchemyError

from tracklift.config_manager.settings import ClientConfig
from tracklift.event_emitter import Emitter
from tracklift.exceptions import FileRejectedError
from tracklift.models import (
    Cancelled,
    Completed,
    Failed,
    FileDescriptor,
    Progress,
    Started,
    TransferEvent,
    UploadItem,
    UploadStatus,
    utc_now,
)
from tracklift.state_management.queue_store import QueueStore

from .transfer_worker import TransferWorker
from .upload_strategy import get_upload_strategy

logger = logging.getLogger(__name__)

Listener = Callable[[str, Any], None]


class UploadManager:
    """Manages the upload queue.

    All item state is mutated here, either from the public methods or from
    the event consumer task, on a single event loop. Every mutation is
    persisted to the queue store before observers are notified.
    """

    def __init__(
        self,
        config: ClientConfig,
        client_session: aiohttp.ClientSession,
        store: QueueStore | None = None,
    ) -> None:
        """Initialize the upload manager.

        Args:
            config: Client configuration.
            client_session: Shared aiohttp session used by every transfer.
            store: Durable queue snapshot; ``None`` keeps the queue in memory.
        """
        self._config = config
        self._client_session = client_session
        self._store = store
        self._emitter = Emitter()

        self._items: dict[str, UploadItem] = {}
        self._workers: dict[str, TransferWorker] = {}
        self._worker_tasks: set[asyncio.Task] = set()
        self._retention_tasks: set[asyncio.Task] = set()
        self._events: asyncio.Queue[TransferEvent] = asyncio.Queue()
        self._consumer: asyncio.Task | None = None
        self._store_lock = asyncio.Lock()
        self._idle = asyncio.Event()
        self._idle.set()

        logger.info(
            "UploadManager initialized (mode=%s, max_concurrent=%d)",
            config.upload_mode.value,
            config.max_concurrent_uploads,
        )

    async def start(self, requeue_failed: bool = False) -> None:
        """Restore the persisted queue and begin processing.

        ``pending`` items come back as ``pending`` and interrupted
        ``uploading`` items come back as ``pending`` from progress 0.
        Completed, cancelled and failed items are purged from the store.

        Args:
            requeue_failed: Restore failed items as ``pending`` instead of
                purging them.
        """
        self._ensure_consumer()
        if self._store is not None:
            restored = 0
            for item in await self._store.list_items():
                if item.id in self._items:
                    continue
                if item.status == UploadStatus.ERROR and requeue_failed:
                    self._reset_to_pending(item)
                elif item.status == UploadStatus.UPLOADING:
                    self._reset_to_pending(item)
                elif item.status != UploadStatus.PENDING:
                    await self._store.delete_item(item.id)
                    continue
                self._items[item.id] = item
                await self._persist(item)
                restored += 1
            if restored:
                logger.info("Restored %d queued uploads", restored)
        self._emit_queue_updated()
        await self.process_queue()

    def _ensure_consumer(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(
                self._consume_events(), name="upload-events"
            )

    @staticmethod
    def _reset_to_pending(item: UploadItem) -> None:
        item.status = UploadStatus.PENDING
        item.progress = 0.0
        item.error = None
        item.status_text = ""

    async def shutdown(self, wait: bool = False) -> None:
        """Stop the manager.

        Args:
            wait: If True, let in-flight transfers finish and apply their
                events first; otherwise they are cancelled and come back as
                ``pending`` on the next ``start``.
        """
        logger.info("Shutting down UploadManager...")
        if wait and self._worker_tasks:
            logger.info("Waiting for %d uploads to finish...", len(self._worker_tasks))
            await asyncio.gather(*self._worker_tasks, return_exceptions=True)
            await self._events.join()
        else:
            for task in self._worker_tasks:
                task.cancel()
            if self._worker_tasks:
                await asyncio.gather(*self._worker_tasks, return_exceptions=True)

        for task in self._retention_tasks:
            task.cancel()
        if self._retention_tasks:
            await asyncio.gather(*self._retention_tasks, return_exceptions=True)

        if self._consumer is not None:
            self._consumer.cancel()
            await asyncio.gather(self._consumer, return_exceptions=True)
            self._consumer = None
        logger.info("UploadManager shutdown complete")

    def add_listener(self, callback: Listener) -> Callable[[], None]:
        """Register ``callback(event, payload)`` for queue notifications.

        ``QUEUE_UPDATED`` carries the full item list, ``UPLOAD_PROGRESS`` a
        single item. Both payloads are snapshots.

        Returns:
            A function that removes the listener again.
        """

        def on_queue_updated(items: list[UploadItem]) -> None:
            callback(Emitter.QUEUE_UPDATED, items)

        def on_progress(item: UploadItem) -> None:
            callback(Emitter.UPLOAD_PROGRESS, item)

        self._emitter.on(Emitter.QUEUE_UPDATED, on_queue_updated)
        self._emitter.on(Emitter.UPLOAD_PROGRESS, on_progress)
        subscribed = True

        def unsubscribe() -> None:
            nonlocal subscribed
            if not subscribed:
                return
            subscribed = False
            self._emitter.remove_listener(Emitter.QUEUE_UPDATED, on_queue_updated)
            self._emitter.remove_listener(Emitter.UPLOAD_PROGRESS, on_progress)

        return unsubscribe

    def get_queue(self) -> list[UploadItem]:
        """Return snapshots of every item ordered by ``added_at``."""
        return [item.snapshot() for item in self._ordered_items()]

    def get_item(self, item_id: str) -> UploadItem | None:
        """Return a snapshot of one item, if it is queued."""
        item = self._items.get(item_id)
        return item.snapshot() if item else None

    def _ordered_items(self) -> list[UploadItem]:
        return sorted(self._items.values(), key=lambda item: item.added_at)

    async def wait_until_idle(self) -> None:
        """Wait until no item is ``pending`` or ``uploading``."""
        await self._idle.wait()

    def _describe(self, file: FileDescriptor | str | Path) -> FileDescriptor:
        if isinstance(file, FileDescriptor):
            return file
        return FileDescriptor.from_path(file)

    async def add_files(
        self, files: Iterable[FileDescriptor | str | Path]
    ) -> list[str]:
        """Queue files for upload.

        Each accepted file becomes a ``pending`` item. A file is rejected when
        its extension is not allowed, when it cannot be found, or when an
        active item already has the same name.

        Returns:
            Ids of the queued items, in input order.

        Raises:
            FileRejectedError: After queueing the accepted files, if any file
                was rejected.
        """
        active_names = {
            item.file.name for item in self._items.values() if item.status.is_active
        }
        allowed = self._config.allowed_extensions
        accepted: list[UploadItem] = []
        rejections: dict[str, str] = {}

        for raw in files:
            try:
                file = self._describe(raw)
            except FileNotFoundError:
                rejections[str(raw)] = "File not found"
                continue
            if allowed and Path(file.name).suffix.lower() not in allowed:
                rejections[file.name] = f"Only {', '.join(allowed)} files are allowed"
                continue
            if file.name in active_names:
                rejections[file.name] = "A file with this name is already queued"
                continue
            active_names.add(file.name)
            item = UploadItem(id=uuid.uuid4().hex, file=file, status_text="Queued")
            self._items[item.id] = item
            accepted.append(item)

        for item in accepted:
            await self._persist(item)
        if accepted:
            logger.info("Queued %d files", len(accepted))
            self._emit_queue_updated()
            await self.process_queue()

        accepted_ids = [item.id for item in accepted]
        if rejections:
            logger.warning("Rejected %d files: %s", len(rejections), rejections)
            raise FileRejectedError(rejections, accepted_ids)
        return accepted_ids

    async def process_queue(self) -> None:
        """Admit pending items while fewer than the ceiling are uploading."""
        self._ensure_consumer()
        uploading = sum(
            1 for item in self._items.values() if item.status == UploadStatus.UPLOADING
        )
        pending = [
            item
            for item in self._ordered_items()
            if item.status == UploadStatus.PENDING
        ]
        promoted: list[UploadItem] = []
        for item in pending:
            if uploading >= self._config.max_concurrent_uploads:
                break
            item.status = UploadStatus.UPLOADING
            item.progress = 0.0
            item.error = None
            item.status_text = "Initializing upload..."
            if item.started_at is None:
                item.started_at = utc_now()
            self._dispatch(item)
            promoted.append(item)
            uploading += 1

        if promoted:
            for item in promoted:
                await self._persist(item)
            self._emit_queue_updated()

    def _dispatch(self, item: UploadItem) -> None:
        strategy = get_upload_strategy(self._config, self._client_session)
        worker = TransferWorker(item.id, item.file, strategy, self._events)
        self._workers[item.id] = worker
        task = asyncio.create_task(worker.run(), name=f"upload-{item.id}")
        self._worker_tasks.add(task)

        def on_done(done: asyncio.Task) -> None:
            self._worker_tasks.discard(done)
            if self._workers.get(item.id) is worker:
                del self._workers[item.id]

        task.add_done_callback(on_done)
        logger.info("Started upload of %s (%s)", item.file.name, item.id)

    async def cancel_upload(self, item_id: str) -> bool:
        """Cancel a pending or uploading item.

        A pending item is cancelled without any network I/O. An uploading
        item is marked cancelled at once and its worker stops before the next
        chunk; if it is already finalizing, the object may still be created.

        Returns:
            True if the item was cancelled, False if it was not active.
        """
        item = self._items.get(item_id)
        if item is None or not item.status.is_active:
            return False

        was_uploading = item.status == UploadStatus.UPLOADING
        worker = self._workers.get(item_id)
        if worker is not None:
            worker.cancel()
        item.status = UploadStatus.CANCELLED
        item.status_text = "Cancelled"
        await self._persist(item)
        logger.info("Cancelled upload of %s (%s)", item.file.name, item_id)
        self._emit_queue_updated()
        if was_uploading:
            await self.process_queue()
        return True

    async def cancel_all_active(self) -> int:
        """Cancel every pending and uploading item.

        Returns:
            Number of items cancelled.
        """
        # Pending items first so the scheduler does not promote them.
        targets = sorted(
            (item for item in self._ordered_items() if item.status.is_active),
            key=lambda item: item.status != UploadStatus.PENDING,
        )
        cancelled = 0
        for item in targets:
            if await self.cancel_upload(item.id):
                cancelled += 1
        return cancelled

    async def retry_failed_uploads(self) -> int:
        """Move every failed item back to pending and drain the queue.

        Returns:
            Number of items re-queued.
        """
        failed = [
            item for item in self._ordered_items() if item.status == UploadStatus.ERROR
        ]
        for item in failed:
            self._reset_to_pending(item)
            await self._persist(item)
        if failed:
            logger.info("Retrying %d failed uploads", len(failed))
            self._emit_queue_updated()
            await self.process_queue()
        return len(failed)

    async def _consume_events(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self._apply(event)
            except Exception:
                logger.error("Failed to apply %r", event, exc_info=True)
            finally:
                self._events.task_done()

    async def _apply(self, event: TransferEvent) -> None:
        item = self._items.get(event.item_id)
        if item is None or item.status != UploadStatus.UPLOADING:
            logger.debug("Ignoring %r for an item that is no longer uploading", event)
            return

        if isinstance(event, Started):
            item.status_text = event.text
            await self._persist(item)
            self._emit_progress(item)
        elif isinstance(event, Progress):
            item.progress = max(item.progress, min(100.0, event.percent))
            item.status_text = event.text
            await self._persist(item)
            self._emit_progress(item)
        elif isinstance(event, Completed):
            item.status = UploadStatus.COMPLETED
            item.progress = 100.0
            item.status_text = "Upload complete!"
            item.completed_at = utc_now()
            await self._persist(item)
            self._emit_queue_updated()
            self._schedule_removal(item.id)
            await self.process_queue()
        elif isinstance(event, Failed):
            item.status = UploadStatus.ERROR
            item.error = event.reason
            item.status_text = "Upload failed"
            await self._persist(item)
            self._emit_queue_updated()
            await self.process_queue()
        elif isinstance(event, Cancelled):
            item.status = UploadStatus.CANCELLED
            item.status_text = "Cancelled"
            await self._persist(item)
            self._emit_queue_updated()
            await self.process_queue()

    def _schedule_removal(self, item_id: str) -> None:
        delay = self._config.completed_retention_seconds
        if delay is None:
            return
        task = asyncio.create_task(self._remove_after(item_id, delay))
        self._retention_tasks.add(task)
        task.add_done_callback(self._retention_tasks.discard)

    async def _remove_after(self, item_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        item = self._items.get(item_id)
        if item is None or item.status != UploadStatus.COMPLETED:
            return
        del self._items[item_id]
        if self._store is not None:
            async with self._store_lock:
                try:
                    await self._store.delete_item(item_id)
                except SQLAlchemyError:
                    logger.error("Failed to delete %s from queue store", item_id)
        self._emit_queue_updated()

    async def _persist(self, item: UploadItem) -> None:
        if self._store is None:
            return
        snapshot = item.snapshot()
        async with self._store_lock:
            try:
                await self._store.upsert_item(snapshot)
            except SQLAlchemyError:
                logger.error("Failed to persist %s", item.id, exc_info=True)

    def _refresh_idle(self) -> None:
        if any(item.status.is_active for item in self._items.values()):
            self._idle.clear()
        else:
            self._idle.set()

    def _emit_queue_updated(self) -> None:
        self._refresh_idle()
        self._emitter.emit(Emitter.QUEUE_UPDATED, self.get_queue())

    def _emit_progress(self, item: UploadItem) -> None:
        self._emitter.emit(Emitter.UPLOAD_PROGRESS, item.snapshot())
