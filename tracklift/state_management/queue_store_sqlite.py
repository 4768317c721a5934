"""SQLite-backed upload queue store."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import delete, select, text
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from tracklift.models import UploadItem

from .queue_store import QueueStore
from .tables import metadata, upload_items

logger = logging.getLogger(__name__)


class SqliteQueueStore(QueueStore):
    """SQLite QueueStore for client queue items."""

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the SQLite engine; call ``init_async_store`` before use."""
        db_path = Path(db_path).expanduser()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = db_path

        self._engine: AsyncEngine = create_async_engine(
            f"sqlite+aiosqlite:///{db_path}",
            future=True,
        )

    async def init_async_store(self) -> None:
        """Apply pragmas and ensure schema."""
        await self._apply_pragmas()
        await self._ensure_schema()
        logger.info("Queue store ready at %s", self._db_path)

    async def _apply_pragmas(self) -> None:
        """Switch the database to WAL with NORMAL synchronous writes."""
        async with self._engine.begin() as conn:
            await conn.execute(text("PRAGMA journal_mode=WAL;"))
            await conn.execute(text("PRAGMA synchronous=NORMAL;"))

    async def _ensure_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def upsert_item(self, item: UploadItem) -> None:
        """Insert an item or overwrite its stored state.

        Args:
            item: The queue item to persist.
        """
        row = item.to_row()
        stmt = insert(upload_items).values(**row)
        stmt = stmt.on_conflict_do_update(
            index_elements=[upload_items.c.item_id],
            set_={key: stmt.excluded[key] for key in row if key != "item_id"},
        )
        async with self._engine.begin() as conn:
            await conn.execute(stmt)

    async def delete_item(self, item_id: str) -> None:
        """Delete an item; unknown ids are ignored."""
        async with self._engine.begin() as conn:
            await conn.execute(
                delete(upload_items).where(upload_items.c.item_id == item_id)
            )

    async def list_items(self) -> list[UploadItem]:
        """Return every stored item ordered by ``added_at``."""
        async with self._engine.begin() as conn:
            rows = (
                (
                    await conn.execute(
                        select(upload_items).order_by(
                            upload_items.c.added_at.asc(), upload_items.c.item_id
                        )
                    )
                )
                .mappings()
                .all()
            )
        return [UploadItem.from_row(dict(row)) for row in rows]

    async def close(self) -> None:
        """Dispose of the engine."""
        await self._engine.dispose()
