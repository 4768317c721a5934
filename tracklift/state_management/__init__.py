"""Durable snapshot of the client upload queue."""

from .queue_store import QueueStore
from .queue_store_sqlite import SqliteQueueStore

__all__ = ["QueueStore", "SqliteQueueStore"]
