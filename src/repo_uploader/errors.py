"""Custom exceptions and error classification for repo-uploader.

Every failure the upload engine can see is funnelled through
``classify_error``, which maps raw transport signals (typed remote errors,
``requests`` exceptions, socket errors, message markers) onto the closed
``ErrorKind`` set. ``RetryPolicy`` only ever looks at the kind.
"""

import errno
import socket
from enum import Enum
from typing import Optional

import requests


class UploaderError(RuntimeError):
    """Base class for all uploader errors."""
    pass


# Remote Errors
class RemoteError(UploaderError):
    """Base class for errors reported by the hosting service."""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        self.status = status
        self.code = code
        super().__init__(message)


class NetworkError(RemoteError):
    """Network connectivity issue (connection reset, DNS failure)."""
    pass


class NetworkTimeoutError(NetworkError):
    """Connection or read timed out."""
    pass


class RateLimitError(RemoteError):
    """Request rejected by the service rate limiter (429)."""
    pass


class ServerError(RemoteError):
    """Service-side failure (5xx)."""
    pass


class AuthError(RemoteError):
    """Authentication or authorization failed (401/403)."""
    pass


class NotFoundError(RemoteError):
    """Resource not found on the remote (404)."""
    pass


class ValidationError(RemoteError):
    """Request or input rejected as invalid (409/422, empty folder, bad name)."""
    pass


# Local Errors
class CheckpointError(UploaderError):
    """Checkpoint could not be written."""
    pass


class UploadInProgressError(UploaderError):
    """Another upload holds the checkpoint lock for this repository."""

    def __init__(self, repo: str):
        self.repo = repo
        super().__init__(
            f"Another upload to '{repo}' is already running with the same checkpoint directory."
        )


class UploadCancelledError(UploaderError):
    """Upload was cancelled between two units of work."""
    pass


class ConfigError(UploaderError):
    """Invalid configuration file or environment override."""
    pass


# ============= Classification =============

class ErrorKind(str, Enum):
    """Closed set of failure kinds the retry policy understands."""
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    AUTHENTICATION = "authentication"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    FATAL = "fatal"


# Gateway statuses worth another attempt
RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})

_TRANSIENT_ERRNOS = frozenset({errno.ECONNRESET, errno.ETIMEDOUT})
_TRANSIENT_MARKERS = ("timeout", "network")


def _has_transient_marker(exc: BaseException) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception to its ErrorKind.

    Args:
        exc: Exception raised by a remote call

    Returns:
        ErrorKind for the failure
    """
    if isinstance(exc, RateLimitError):
        return ErrorKind.RATE_LIMITED
    if isinstance(exc, NetworkError):
        return ErrorKind.TRANSIENT
    if isinstance(exc, AuthError):
        return ErrorKind.AUTHENTICATION
    if isinstance(exc, NotFoundError):
        return ErrorKind.NOT_FOUND
    if isinstance(exc, ValidationError):
        return ErrorKind.VALIDATION
    if isinstance(exc, RemoteError):
        # Status only: the message carries request paths and repository names
        if exc.status == 429:
            return ErrorKind.RATE_LIMITED
        if exc.status in RETRYABLE_STATUSES:
            return ErrorKind.TRANSIENT
        return ErrorKind.FATAL

    # Raw transport errors that escaped the client mapping
    if isinstance(exc, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, (socket.gaierror, socket.timeout)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, (ConnectionResetError, ConnectionAbortedError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, OSError) and exc.errno in _TRANSIENT_ERRNOS:
        return ErrorKind.TRANSIENT
    if isinstance(exc, UploaderError):
        return ErrorKind.FATAL

    return ErrorKind.TRANSIENT if _has_transient_marker(exc) else ErrorKind.FATAL


def is_retryable(kind: ErrorKind) -> bool:
    """True for kinds the retry policy absorbs."""
    return kind in (ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT)


def error_category(exc: BaseException) -> str:
    """User-facing category for a failed run.

    Returns one of: rate_limited, network_timeout, authentication,
    validation, cancelled, generic.
    """
    if isinstance(exc, UploadCancelledError):
        return "cancelled"
    kind = classify_error(exc)
    if kind == ErrorKind.RATE_LIMITED:
        return "rate_limited"
    if kind == ErrorKind.AUTHENTICATION:
        return "authentication"
    if kind == ErrorKind.VALIDATION:
        return "validation"
    if kind == ErrorKind.TRANSIENT and not isinstance(exc, ServerError):
        return "network_timeout"
    return "generic"


CATEGORY_MESSAGES = {
    "rate_limited": "Too many requests, the service is rate limiting. Try again later.",
    "network_timeout": "Network connection timed out. Check your connection and retry.",
    "authentication": "Authentication failed. Check that the token is valid and has repo scope.",
    "validation": "The request was rejected as invalid.",
    "cancelled": "Upload cancelled.",
    "generic": "Upload failed.",
}
