"""HTTP port definitions (DTOs and transport interfaces)."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Protocol
from urllib.parse import urlsplit

from http_timings.ports.errors import RequestError, RequestValidationError
from http_timings.ports.timings import TimingReport

__all__ = [
    "SUPPORTED_SCHEMES",
    "Headers",
    "RequestDescriptor",
    "ResponseBundle",
    "CompletionCallback",
    "LifecycleObserver",
    "TransportPort",
]

SUPPORTED_SCHEMES = ("http", "https")

Headers = dict[str, str | list[str]]


@dataclass(frozen=True)
class RequestDescriptor:
    """One HTTP request to be timed.

    Attributes:
        scheme: ``"http"`` or ``"https"``.
        host: Host name or literal IP address.
        port: Target port; None selects the scheme default.
        path: Request target, optionally with a ``?query`` suffix.
        method: HTTP method.
        headers: Request headers.
        body: Optional payload written before the request is ended.
    """

    scheme: str
    host: str
    port: int | None = None
    path: str = "/"
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str | bytes | None = None

    @property
    def is_secure(self) -> bool:
        return self.scheme == "https"

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: str | bytes | None = None,
    ) -> RequestDescriptor:
        """Build a descriptor from an absolute URL.

        Args:
            url: Absolute http(s) URL.
            method: HTTP method.
            headers: Request headers.
            body: Optional payload.

        Returns:
            Descriptor targeting the URL's host, port and path.

        Raises:
            RequestValidationError: If the port is not a valid number.
        """
        parts = urlsplit(url)
        try:
            port = parts.port
        except ValueError as e:
            raise RequestValidationError(f"Invalid port in URL {url!r}: {e}") from e

        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"

        return cls(
            scheme=parts.scheme,
            host=parts.hostname or "",
            port=port,
            path=path,
            method=method,
            headers=dict(headers or {}),
            body=body,
        )


@dataclass(frozen=True)
class ResponseBundle:
    """Outcome of a completed timed request.

    Attributes:
        status: HTTP status code.
        headers: Lower-cased header names; repeated headers become lists.
        body: Fully buffered response body.
        timings: Phase durations of the request.
    """

    status: int
    headers: Headers
    body: bytes
    timings: TimingReport


CompletionCallback = Callable[[RequestError | None, ResponseBundle | None], None]


class LifecycleObserver(Protocol):
    """Receiver of one request's lifecycle notifications.

    Transports call these in the order the events happen on the wire and
    never call the same connection event twice.
    """

    def on_dns_resolved(self) -> None: ...

    def on_connected(self) -> None: ...

    def on_secure_connected(self) -> None: ...

    def on_request_chunk_sent(self) -> None:
        """A piece of the request body was written; not a milestone."""
        ...

    def on_response(self, status: int, headers: Headers) -> None: ...

    def on_data(self, chunk: bytes) -> None: ...

    def on_end(self) -> None: ...


class TransportPort(Protocol):
    """Capability set of a transport: dispatch one request, abort it."""

    async def dispatch(self, request: RequestDescriptor, observer: LifecycleObserver) -> None:
        """Send the request and report its lifecycle to ``observer``.

        Args:
            request: What to send.
            observer: Receiver of lifecycle notifications.

        Raises:
            RequestTimeoutError: If the transport gave up waiting.
            TransportError: On any network or protocol failure.
        """
        ...

    def abort(self) -> None:
        """Tear down the in-flight operation, releasing its socket."""
        ...
