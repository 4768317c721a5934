"""Object storage collaborators."""

from .local_storage import LocalObjectStorage
from .object_storage import ObjectStorage, WriteStream

__all__ = ["LocalObjectStorage", "ObjectStorage", "WriteStream"]
