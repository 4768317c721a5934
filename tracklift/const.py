"""Constants shared by the upload client and server."""

import os
from pathlib import Path

BYTES_PER_MIB = 1024 * 1024

# Stays under the per-request body ceiling of the fronting proxy.
CHUNK_SIZE = 25 * BYTES_PER_MIB
MAX_CONCURRENT_UPLOADS = 3

# Progress reserved for finalization so 100 is only reported once stored.
CHUNK_PROGRESS_CEILING = 90.0
FINALIZING_PROGRESS = 95.0

AUDIO_CONTENT_TYPE = "audio/mpeg"
ALLOWED_EXTENSIONS = (".mp3",)

API_URL = os.getenv("TRACKLIFT_API_URL", "http://localhost:8082")
API_PREFIX = "/api/files"
INIT_UPLOAD_ENDPOINT = "/init-upload"
UPLOAD_CHUNK_ENDPOINT = "/upload-chunk"
FINALIZE_UPLOAD_ENDPOINT = "/finalize-upload"
LIST_TRACKS_ENDPOINT = "/list-tracks"
GET_UPLOAD_URL_ENDPOINT = "/get-upload-url"
DIRECT_UPLOAD_ENDPOINT = "/direct-upload"
SINGLE_UPLOAD_ENDPOINT = "/upload"
UPLOAD_SESSION_ENDPOINT = "/upload-session"
PUBLIC_OBJECTS_PREFIX = "/uploads"

DEFAULT_TARGET_PREFIX = "tracks"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8082

# Multipart framing and form fields on top of a full chunk.
REQUEST_OVERHEAD_BYTES = BYTES_PER_MIB

DEFAULT_SESSION_TTL_SECONDS = 6 * 60 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 10 * 60
DEFAULT_SIGNED_URL_TTL_SECONDS = 15 * 60
DEFAULT_REQUEST_TIMEOUT_SECONDS = 300
DEFAULT_COMPLETED_RETENTION_SECONDS = 5.0

STREAM_READ_SIZE = 1024 * 1024

CONFIG_DIR = Path.home() / ".tracklift"
QUEUE_DB_FILE = "queue.db"
CONFIG_ENCODING = "utf-8"
