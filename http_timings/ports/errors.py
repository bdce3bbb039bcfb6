"""Error taxonomy shared by the core and the transport adapters."""

from __future__ import annotations

from enum import Enum

__all__ = [
    "ErrorKind",
    "RequestError",
    "RequestValidationError",
    "RequestTimeoutError",
    "TransportError",
    "InternalError",
    "TimingConsistencyError",
]


class ErrorKind(str, Enum):
    """Machine-readable category of a failed request."""

    VALIDATION = "validation"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    INTERNAL = "internal"


class RequestError(Exception):
    """Base class for every failure reported by a timed request.

    Attributes:
        kind: Category callers can branch on.
        code: Optional errno-style code (e.g. ``ECONNREFUSED``).
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class RequestValidationError(RequestError, ValueError):
    """Malformed request descriptor, raised before any I/O."""

    kind = ErrorKind.VALIDATION


class RequestTimeoutError(RequestError):
    """No activity within the idle window; the request was aborted."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str = "ETIMEDOUT", *, code: str | None = "ETIMEDOUT") -> None:
        super().__init__(message, code=code)


class TransportError(RequestError):
    """DNS failure, refused or reset connection, protocol error."""

    kind = ErrorKind.TRANSPORT


class InternalError(RequestError):
    """Lifecycle notifications broke an invariant of the executor."""

    kind = ErrorKind.INTERNAL


class TimingConsistencyError(InternalError):
    """Recorded milestones are missing or out of order."""
