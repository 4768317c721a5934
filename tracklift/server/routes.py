"""HTTP handlers for the upload protocol."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from aiohttp import BodyPartReader, web
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from tracklift.const import (
    API_PREFIX,
    DIRECT_UPLOAD_ENDPOINT,
    FINALIZE_UPLOAD_ENDPOINT,
    GET_UPLOAD_URL_ENDPOINT,
    INIT_UPLOAD_ENDPOINT,
    LIST_TRACKS_ENDPOINT,
    SINGLE_UPLOAD_ENDPOINT,
    STREAM_READ_SIZE,
    UPLOAD_CHUNK_ENDPOINT,
    UPLOAD_SESSION_ENDPOINT,
)
from tracklift.exceptions import InvalidRequest, MissingPayload, UploadError
from tracklift.models import (
    FinalizedObject,
    FinalizeUploadRequest,
    InitUploadRequest,
    UploadUrlRequest,
)
from tracklift.storage.local_storage import LocalObjectStorage

from .upload_service import ChunkedUploadService, validate_file_name

logger = logging.getLogger(__name__)

SERVICE_KEY: web.AppKey[ChunkedUploadService] = web.AppKey(
    "upload_service", ChunkedUploadService
)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _error_response(status: int, message: str, code: str) -> web.Response:
    return web.json_response({"error": message, "code": code}, status=status)


@web.middleware
async def error_middleware(
    request: web.Request, handler: Handler
) -> web.StreamResponse:
    """Translate upload errors into JSON error bodies."""
    try:
        return await handler(request)
    except UploadError as e:
        if e.http_status >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, e)
        else:
            logger.info("%s %s rejected: %s", request.method, request.path, e)
        return _error_response(e.http_status, str(e), e.code)
    except web.HTTPRequestEntityTooLarge as e:
        logger.info("%s %s rejected: %s", request.method, request.path, e.text)
        return _error_response(
            e.status,
            f"Request body exceeds the {request.client_max_size} byte limit",
            InvalidRequest.code,
        )
    except web.HTTPException:
        raise
    except Exception:
        logger.error(
            "Unexpected error handling %s %s",
            request.method,
            request.path,
            exc_info=True,
        )
        return _error_response(500, "Internal server error", "internal_error")


async def _parse_json(request: web.Request, model: type[BaseModel]) -> BaseModel:
    try:
        payload = await request.json()
    except ValueError as e:
        raise InvalidRequest("Request body must be JSON") from e
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidRequest(details) from e


def _parse_int_field(fields: dict[str, str], name: str) -> int:
    raw = fields.get(name)
    if raw is None or raw == "":
        raise InvalidRequest(f"{name} is required")
    try:
        return int(raw)
    except ValueError as e:
        raise InvalidRequest(f"{name} must be an integer, got {raw!r}") from e


def _finalized_body(result: FinalizedObject, message: str) -> dict:
    return {
        "message": message,
        "file": {"name": result.name, "size": result.size, "path": result.path},
    }


async def init_upload(request: web.Request) -> web.Response:
    """``POST init-upload``: create a session."""
    service = request.app[SERVICE_KEY]
    body = await _parse_json(request, InitUploadRequest)
    upload_id = service.init_upload(body.file_name, body.file_size, body.total_chunks)
    return web.json_response({"uploadId": upload_id})


async def upload_chunk(request: web.Request) -> web.Response:
    """``POST upload-chunk``: persist one multipart chunk."""
    service = request.app[SERVICE_KEY]
    if not request.content_type.startswith("multipart/"):
        raise InvalidRequest("upload-chunk expects a multipart/form-data body")

    fields: dict[str, str] = {}
    data: bytes | None = None
    reader = await request.multipart()
    while True:
        part = await reader.next()
        if part is None:
            break
        if not isinstance(part, BodyPartReader):
            continue
        if part.name == "chunk":
            data = bytes(await part.read())
        elif part.name:
            fields[part.name] = await part.text()

    upload_id = fields.get("uploadId")
    if not upload_id:
        raise InvalidRequest("uploadId is required")
    chunk_index = _parse_int_field(fields, "chunkIndex")
    if data is None:
        raise MissingPayload("No chunk uploaded")

    received, total = await service.receive_chunk(upload_id, chunk_index, data)
    return web.json_response({"progress": {"received": received, "total": total}})


async def finalize_upload(request: web.Request) -> web.Response:
    """``POST finalize-upload``: reassemble a complete session."""
    service = request.app[SERVICE_KEY]
    body = await _parse_json(request, FinalizeUploadRequest)
    result = await service.finalize(body.upload_id, body.file_name, body.total_chunks)
    return web.json_response(_finalized_body(result, "File uploaded successfully"))


async def abort_upload(request: web.Request) -> web.Response:
    """``DELETE upload-session/{uploadId}``: discard a session."""
    service = request.app[SERVICE_KEY]
    upload_id = request.match_info["upload_id"]
    service.abort(upload_id)
    return web.json_response({"message": "Upload session discarded"})


async def list_tracks(request: web.Request) -> web.Response:
    """``GET list-tracks``: list completed objects."""
    service = request.app[SERVICE_KEY]
    items = await service.list_tracks()
    # name is the full object path, which is what DELETE takes.
    return web.json_response(
        {"items": [{"name": item.name, "size": item.size} for item in items]}
    )


async def delete_object(request: web.Request) -> web.Response:
    """``DELETE {objectPath}``: delete a stored object."""
    service = request.app[SERVICE_KEY]
    await service.delete_object(request.match_info["object_path"])
    return web.json_response({"message": "File deleted successfully"})


async def get_upload_url(request: web.Request) -> web.Response:
    """``POST get-upload-url``: issue a signed direct-upload URL."""
    service = request.app[SERVICE_KEY]
    body = await _parse_json(request, UploadUrlRequest)
    return web.json_response({"signedUrl": service.issue_upload_url(body.file_name)})


async def _iter_body(request: web.Request) -> AsyncIterator[bytes]:
    async for data in request.content.iter_chunked(STREAM_READ_SIZE):
        yield data


async def direct_upload(request: web.Request) -> web.Response:
    """``PUT direct-upload/{objectPath}``: accept a signed one-shot upload."""
    service = request.app[SERVICE_KEY]
    storage = service.storage
    object_path = request.match_info["object_path"]
    signed = isinstance(storage, LocalObjectStorage) and storage.verify_write_signature(
        object_path,
        request.query.get("expires", ""),
        request.query.get("signature", ""),
    )
    if not signed:
        return _error_response(403, "Invalid or expired upload URL", "forbidden")

    result = await service.store_stream(object_path, _iter_body(request))
    return web.json_response(_finalized_body(result, "File uploaded successfully"))


async def single_upload(request: web.Request) -> web.Response:
    """``POST upload``: store a small file sent as one multipart field."""
    service = request.app[SERVICE_KEY]
    if not request.content_type.startswith("multipart/"):
        raise InvalidRequest("upload expects a multipart/form-data body")

    reader = await request.multipart()
    while True:
        part = await reader.next()
        if part is None:
            raise MissingPayload("No file uploaded")
        if isinstance(part, BodyPartReader) and part.name == "file":
            break

    file_name = validate_file_name(part.filename, service.allowed_extensions)

    async def iter_part() -> AsyncIterator[bytes]:
        while True:
            data = await part.read_chunk(STREAM_READ_SIZE)
            if not data:
                return
            yield bytes(data)

    result = await service.store_stream(
        service.object_path_for(file_name), iter_part()
    )
    return web.json_response(_finalized_body(result, "File uploaded successfully"))


def setup_routes(app: web.Application) -> None:
    """Register the upload protocol routes under ``/api/files``."""
    app.router.add_post(API_PREFIX + INIT_UPLOAD_ENDPOINT, init_upload)
    app.router.add_post(API_PREFIX + UPLOAD_CHUNK_ENDPOINT, upload_chunk)
    app.router.add_post(API_PREFIX + FINALIZE_UPLOAD_ENDPOINT, finalize_upload)
    app.router.add_get(API_PREFIX + LIST_TRACKS_ENDPOINT, list_tracks)
    app.router.add_post(API_PREFIX + GET_UPLOAD_URL_ENDPOINT, get_upload_url)
    app.router.add_post(API_PREFIX + SINGLE_UPLOAD_ENDPOINT, single_upload)
    app.router.add_delete(
        API_PREFIX + UPLOAD_SESSION_ENDPOINT + "/{upload_id}", abort_upload
    )
    app.router.add_put(
        API_PREFIX + DIRECT_UPLOAD_ENDPOINT + "/{object_path:.+}", direct_upload
    )
    app.router.add_delete(API_PREFIX + "/{object_path:.+}", delete_object)
