"""Protocol for upload queue persistence."""

from __future__ import annotations

from typing import Protocol

from tracklift.models import UploadItem


class QueueStore(Protocol):
    """Persistence interface for queue items.

    Only file metadata and item state are stored, never file contents.
    """

    async def init_async_store(self) -> None:
        """Prepare the store for use."""
        ...

    async def upsert_item(self, item: UploadItem) -> None:
        """Insert an item or overwrite its stored state."""
        ...

    async def delete_item(self, item_id: str) -> None:
        """Delete an item; unknown ids are ignored."""
        ...

    async def list_items(self) -> list[UploadItem]:
        """Return every stored item ordered by ``added_at``."""
        ...

    async def close(self) -> None:
        """Release the underlying connections."""
        ...
