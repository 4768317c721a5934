"""Client-side upload queue, transfer workers and transports."""

from .transfer_worker import TransferWorker
from .upload_manager import UploadManager
from .upload_strategy import (
    ChunkedUploadStrategy,
    DirectUploadStrategy,
    UploadStrategy,
    get_upload_strategy,
)

__all__ = [
    "ChunkedUploadStrategy",
    "DirectUploadStrategy",
    "TransferWorker",
    "UploadManager",
    "UploadStrategy",
    "get_upload_strategy",
]
