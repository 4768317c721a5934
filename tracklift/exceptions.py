"""Exception classes for the upload pipeline.

Every error carries a stable ``code`` which the server puts on the wire and
the client maps back to the same class.
"""

from __future__ import annotations


class UploadError(Exception):
    """Base error for the upload pipeline."""

    code = "upload_error"
    http_status = 500


class ValidationError(UploadError):
    """Raised when a request or file is rejected before any I/O."""

    code = "validation_error"
    http_status = 400


class InvalidRequest(ValidationError):
    """Raised when required fields are missing or out of range."""

    code = "invalid_request"


class MissingPayload(ValidationError):
    """Raised when a chunk request carries no bytes."""

    code = "missing_payload"


class FileRejectedError(ValidationError):
    """Raised by the queue when some of the offered files were not accepted."""

    code = "file_rejected"

    def __init__(self, rejections: dict[str, str], accepted_ids: list[str]):
        """Initialize FileRejectedError.

        Args:
            rejections: Mapping of rejected file name to the rejection reason.
            accepted_ids: Ids of the files that were queued anyway.
        """
        message = "; ".join(f"{name}: {reason}" for name, reason in rejections.items())
        super().__init__(message)
        self.rejections = rejections
        self.accepted_ids = accepted_ids


class SessionNotFound(UploadError):
    """Raised when an upload id is unknown or has expired."""

    code = "session_not_found"
    http_status = 404


class ObjectNotFound(UploadError):
    """Raised when a stored object does not exist."""

    code = "object_not_found"
    http_status = 404


class IncompleteUpload(UploadError):
    """Raised when finalize is called before every chunk arrived."""

    code = "incomplete_upload"
    http_status = 409


class TransportError(UploadError):
    """Raised for network failures and timeouts on any leg."""

    code = "transport_error"
    http_status = 502


class StorageWriteError(UploadError):
    """Raised when the destination write stream fails."""

    code = "storage_write_error"
    http_status = 500


class UploadCancelled(UploadError):
    """Raised inside a transfer once its cancel flag is observed."""

    code = "cancelled"


_ERRORS_BY_CODE: dict[str, type[UploadError]] = {
    cls.code: cls
    for cls in (
        ValidationError,
        InvalidRequest,
        MissingPayload,
        SessionNotFound,
        ObjectNotFound,
        IncompleteUpload,
        TransportError,
        StorageWriteError,
    )
}


def error_from_code(code: str | None, message: str) -> UploadError:
    """Rebuild the exception for a wire error code.

    Unknown codes become a plain ``UploadError``.
    """
    cls = _ERRORS_BY_CODE.get(code or "", UploadError)
    return cls(message)
