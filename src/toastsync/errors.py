"""Error types and classification for remote store operations.

Raw SDK errors are only ever inspected here. Everything else asks
``classify_error`` (or one of the narrower predicates) what kind of
failure it is looking at.
"""

from __future__ import annotations

import enum
import re

# gRPC status codes
DEADLINE_EXCEEDED = 4
RESOURCE_EXHAUSTED = 8
ABORTED = 10
INTERNAL = 13
UNAVAILABLE = 14
PERMISSION_DENIED = 7
UNAUTHENTICATED = 16

RETRYABLE_GRPC_CODES = frozenset(
    {DEADLINE_EXCEEDED, UNAVAILABLE, INTERNAL, ABORTED, RESOURCE_EXHAUSTED}
)

AUTH_ERROR_CODES = ("UNAUTHENTICATED", "PERMISSION_DENIED", "INVALID_ARGUMENT")
AUTH_NUMERIC_CODES = frozenset({PERMISSION_DENIED, UNAUTHENTICATED})

AUTH_MESSAGE_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"authentication",
        r"credential",
        r"permission denied",
        r"unauthenticated",
        r"unauthorized",
        r"access denied",
        r"invalid.*token",
        r"could not load the default credentials",
        r"application default credentials",
        r"invalid_grant",
    )
]


class ToastSyncError(Exception):
    """Base class for toastsync errors."""


class StorageOperationError(ToastSyncError):
    """A storage operation failed in a way the caller has to handle."""

    def __init__(
        self,
        message: str,
        operation: str,
        provider: str = "firestore",
        retryable: bool = False,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.provider = provider
        self.retryable = retryable
        self.cause = cause


class RootBatchFailedError(StorageOperationError):
    """The root snapshot document could not be written, so nothing else was."""

    def __init__(self, snapshot_id: str, retry_attempts: int, error: str | None):
        super().__init__(
            f"Failed to write snapshot {snapshot_id}: Root document batch failed after "
            f"{retry_attempts} retries (batch 0, phase: root) - {error}",
            operation="writeSnapshot",
            provider="firestore",
            retryable=False,
        )
        self.snapshot_id = snapshot_id
        self.retry_attempts = retry_attempts


class BatchTimeoutError(ToastSyncError):
    """A batch commit did not finish within its time box."""

    code = DEADLINE_EXCEEDED

    def __init__(self, batch_index: int, timeout_ms: int):
        super().__init__(f"Batch {batch_index} timed out after {timeout_ms}ms")
        self.batch_index = batch_index
        self.timeout_ms = timeout_ms


class PreflightError(ToastSyncError):
    """The destination bucket could not be reached before uploading."""

    def __init__(self, message: str, auth_error: bool = False):
        super().__init__(message)
        self.auth_error = auth_error


class ErrorKind(enum.Enum):
    """How a failure should be handled."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    AUTH = "auth"
    LOCAL_IO = "local_io"


def error_code(error: object) -> int | str | None:
    """
    Extract the status code carried by an error, if any.

    google.api_core exceptions carry an HTTP ``code`` plus a ``grpc_status_code``
    enum; the gRPC number wins so both SDK flavours map to the same codes.
    """
    status = getattr(error, "grpc_status_code", None)
    if status is not None:
        value = getattr(status, "value", None)
        if isinstance(value, tuple) and value and isinstance(value[0], int):
            return value[0]
    code = getattr(error, "code", None)
    if isinstance(code, (int, str)) and not isinstance(code, bool):
        return code
    return None


def is_retryable_write_error(error: object) -> bool:
    """True iff the error carries a numeric transient gRPC code."""
    code = error_code(error)
    return isinstance(code, int) and code in RETRYABLE_GRPC_CODES


def is_auth_error(error: object) -> bool:
    """Code based detection of authentication and authorization failures."""
    if not isinstance(error, BaseException):
        return False
    code = error_code(error)
    if not code:
        return False
    if isinstance(code, int):
        return code in AUTH_NUMERIC_CODES
    code_str = code.upper()
    return any(auth_code in code_str for auth_code in AUTH_ERROR_CODES)


def matches_auth_message(error: object) -> bool:
    """True if the error message looks like a credentials problem."""
    if not isinstance(error, BaseException):
        return False
    message = str(error)
    return any(pattern.search(message) for pattern in AUTH_MESSAGE_PATTERNS)


def classify_error(error: object) -> ErrorKind:
    """Map a raw error onto the handling taxonomy."""
    if is_auth_error(error):
        return ErrorKind.AUTH
    if is_retryable_write_error(error):
        return ErrorKind.TRANSIENT
    if isinstance(error, OSError):
        return ErrorKind.LOCAL_IO
    return ErrorKind.PERMANENT


def describe_error(error: object) -> str:
    """Human readable message for an error of any shape."""
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return "Unknown error"
