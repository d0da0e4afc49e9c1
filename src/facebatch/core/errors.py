"""
Structured error types for facebatch.

Every failure that crosses the boundary between a call site and the remote
face-recognition service is expressed as a typed error carrying enough
metadata to decide, deterministically, whether the call should be retried,
re-queued, or abandoned.

Manifesto:
    - **Codes, not types, drive retries:** The remote service reports a
      machine-readable ``code`` ("RateLimitExceeded", ...). Retry decisions
      look at that code, never at timing or attempt counts.
    - **Unaltered payloads:** ``code`` and ``message`` are kept exactly as the
      service sent them so the logging layer can show them verbatim.
    - **Serialization-ready:** ``to_dict()`` on every error for structured logs.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────┐
        │                     FaceBatchError                        │
        │          (category, retryable, to_dict())                │
        ├──────────────────────────────────────────────────────────┤
        │                                                           │
        │  RemoteError                   OperationCancelled         │
        │  (code, message, http_status)  (CANCELLED)                │
        │       │                                                   │
        │  UnprocessableInputError                                  │
        │  (INPUT, never retried)                                   │
        └──────────────────────────────────────────────────────────┘

Examples:
    >>> err = RemoteError(ErrorCode.RATE_LIMIT_EXCEEDED, "Rate limit is exceeded.")
    >>> err.code
    'RateLimitExceeded'
    >>> err.to_dict()["category"]
    'REMOTE'

Tags:
    error-handling, exception-hierarchy, retry-logic, facebatch
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Coarse classification used for log routing."""

    REMOTE = "REMOTE"             # Error reported by the face service
    INPUT = "INPUT"               # Input the service can never process
    CANCELLED = "CANCELLED"       # Caller asked us to stop
    CONFIG = "CONFIG"             # Missing endpoint / key
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


class ErrorCode(str, Enum):
    """Error codes observed from the face-recognition service.

    The service may send codes that are not listed here; ``RemoteError.code``
    is a plain string so unknown codes pass through untouched.
    """

    RATE_LIMIT_EXCEEDED = "RateLimitExceeded"
    CONCURRENT_OPERATION_CONFLICT = "ConcurrentOperationConflict"
    LARGE_PERSON_GROUP_NOT_FOUND = "LargePersonGroupNotFound"
    LARGE_PERSON_GROUP_NOT_TRAINED = "LargePersonGroupNotTrained"
    PERSON_NOT_FOUND = "PersonNotFound"
    INVALID_IMAGE = "InvalidImage"
    UNKNOWN = "Unknown"


# Substring the service puts in the message when an image holds several faces
# but exactly one was required.
MULTIPLE_FACES_MARKER = "more than 1 face in the image"


class FaceBatchError(Exception):
    """Base exception for all facebatch errors.

    Subclasses set ``default_category`` and ``default_retryable``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


class RemoteError(FaceBatchError):
    """Failure reported by the face-recognition service.

    ``retryable`` stays ``False``; whether a code is transient depends on
    the endpoint and is decided by a
    :class:`~facebatch.execution.retry.RetryPolicy`.

    Attributes:
        code: Machine-readable error code from the service
        message: Human-readable message from the service
        http_status: HTTP status of the failed response, if any
    """

    default_category = ErrorCategory.REMOTE

    def __init__(
        self,
        code: str | ErrorCode,
        message: str = "",
        *,
        http_status: int | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause=cause)
        self.code = code.value if isinstance(code, ErrorCode) else str(code)
        self.http_status = http_status

    def __str__(self) -> str:
        if self.message:
            return f"{self.code}: {self.message}"
        return self.code

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["code"] = self.code
        if self.http_status is not None:
            result["http_status"] = self.http_status
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class UnprocessableInputError(RemoteError):
    """The input itself can never be processed (e.g. more than one face)."""

    default_category = ErrorCategory.INPUT

    def __init__(
        self,
        message: str = "Input cannot be processed",
        *,
        code: str | ErrorCode = ErrorCode.INVALID_IMAGE,
        http_status: int | None = None,
    ):
        super().__init__(code, message, http_status=http_status)


class OperationCancelled(FaceBatchError):
    """Raised when a cancellation token fires during a retry loop."""

    default_category = ErrorCategory.CANCELLED

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message)


class ConfigError(FaceBatchError):
    """Missing or invalid configuration (endpoint, subscription key)."""

    default_category = ErrorCategory.CONFIG


def error_code(error: BaseException) -> str | None:
    """Return the service error code carried by ``error``, if any."""
    return getattr(error, "code", None) if isinstance(error, RemoteError) else None


def is_unprocessable(error: BaseException) -> bool:
    """True when ``error`` says the input can never be processed."""
    if isinstance(error, UnprocessableInputError):
        return True
    if isinstance(error, RemoteError):
        return MULTIPLE_FACES_MARKER in error.message
    return False


__all__ = [
    "ErrorCategory",
    "ErrorCode",
    "MULTIPLE_FACES_MARKER",
    "FaceBatchError",
    "RemoteError",
    "UnprocessableInputError",
    "OperationCancelled",
    "ConfigError",
    "error_code",
    "is_unprocessable",
]
