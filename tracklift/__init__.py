"""Chunked, resumable audio uploads to object storage."""

from .chunking import ChunkRange, plan_chunks
from .models import FileDescriptor, UploadItem, UploadStatus

__version__ = "0.3.0"

__all__ = ["ChunkRange", "FileDescriptor", "UploadItem", "UploadStatus", "plan_chunks"]
