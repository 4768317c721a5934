"""HTTP upload server: session registry, reassembly service and routes."""

from .app import create_app, run_server
from .session_store import SessionStore, UploadSession
from .upload_service import ChunkedUploadService

__all__ = [
    "ChunkedUploadService",
    "SessionStore",
    "UploadSession",
    "create_app",
    "run_server",
]
