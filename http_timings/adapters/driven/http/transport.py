"""aiohttp transports that report socket lifecycle events."""

from __future__ import annotations

import asyncio
import errno
import logging
import ssl
from collections.abc import Callable
from types import SimpleNamespace
from typing import Any

import aiohttp
from aiohttp import ClientResponse, ClientTimeout, TraceConfig
from yarl import URL

from http_timings.ports.errors import RequestTimeoutError, TransportError
from http_timings.ports.http import Headers, LifecycleObserver, RequestDescriptor, TransportPort

__all__ = ["PlainTransport", "SecureTransport", "make_transport", "ObservedSSLContext"]

logger = logging.getLogger(__name__)


class ObservedSSLContext(ssl.SSLContext):
    """Client SSL context that reports when a TLS session is attached.

    asyncio wraps the socket in a TLS object right after the TCP connection
    is established and before the handshake starts, which makes
    ``wrap_bio`` the TCP-connected notification for secure requests.
    """

    on_wrap: Callable[[], None] | None = None

    def wrap_bio(self, incoming, outgoing, server_side=False, server_hostname=None, session=None):  # type: ignore[no-untyped-def]
        if self.on_wrap is not None:
            self.on_wrap()
        return super().wrap_bio(
            incoming,
            outgoing,
            server_side=server_side,
            server_hostname=server_hostname,
            session=session,
        )


def _collect_headers(response: ClientResponse) -> Headers:
    """Flatten response headers; names are lower-cased, repeats become lists."""
    headers: Headers = {}
    for name, value in response.headers.items():
        key = name.lower()
        existing = headers.get(key)
        if existing is None:
            headers[key] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            headers[key] = [existing, value]
    return headers


def _error_code(exc: BaseException) -> str | None:
    """Return the errno name behind an aiohttp/OS error, if there is one."""
    os_error = getattr(exc, "os_error", exc)
    if isinstance(os_error, OSError) and os_error.errno is not None:
        return errno.errorcode.get(os_error.errno)
    return None


class PlainTransport(TransportPort):
    """One-shot aiohttp transport for ``http`` requests.

    Every dispatch uses its own session and connector with DNS caching and
    keep-alive disabled, so each request resolves and connects afresh.
    Timeouts are left to the caller's idle watchdog.

    Args:
        cafile: PEM bundle of extra trusted CAs; only the secure variant
            uses it.
    """

    def __init__(self, *, cafile: str | None = None) -> None:
        self._cafile = cafile
        self._response: ClientResponse | None = None

    def _ssl_context(self, observer: LifecycleObserver) -> ssl.SSLContext | bool:
        return False

    def _connection_established(self, observer: LifecycleObserver) -> None:
        observer.on_connected()

    def _trace_config(self, observer: LifecycleObserver) -> TraceConfig:
        async def on_dns_resolvehost_end(
            session: aiohttp.ClientSession,
            ctx: SimpleNamespace,
            params: aiohttp.TraceDnsResolveHostEndParams,
        ) -> None:
            observer.on_dns_resolved()

        async def on_connection_create_end(
            session: aiohttp.ClientSession,
            ctx: SimpleNamespace,
            params: aiohttp.TraceConnectionCreateEndParams,
        ) -> None:
            self._connection_established(observer)

        async def on_request_chunk_sent(
            session: aiohttp.ClientSession,
            ctx: SimpleNamespace,
            params: aiohttp.TraceRequestChunkSentParams,
        ) -> None:
            observer.on_request_chunk_sent()

        trace_config = TraceConfig()
        trace_config.on_dns_resolvehost_end.append(on_dns_resolvehost_end)
        trace_config.on_connection_create_end.append(on_connection_create_end)
        trace_config.on_request_chunk_sent.append(on_request_chunk_sent)
        return trace_config

    async def dispatch(self, request: RequestDescriptor, observer: LifecycleObserver) -> None:
        """Send ``request`` and stream its lifecycle to ``observer``.

        Args:
            request: Request to send.
            observer: Receiver of lifecycle notifications.

        Raises:
            RequestTimeoutError: If aiohttp timed out.
            TransportError: On connection, DNS, TLS or protocol failures.
        """
        path, _, query = request.path.partition("?")
        url = URL.build(
            scheme=request.scheme,
            host=request.host,
            port=request.port,
            path=path or "/",
            query_string=query,
        )
        connector = aiohttp.TCPConnector(
            ssl=self._ssl_context(observer),
            use_dns_cache=False,
            force_close=True,
            limit=1,
        )
        request_kwargs: dict[str, Any] = {
            "headers": dict(request.headers),
            "allow_redirects": False,
        }
        if request.body:
            request_kwargs["data"] = request.body

        try:
            async with aiohttp.ClientSession(
                connector=connector,
                trace_configs=[self._trace_config(observer)],
                timeout=ClientTimeout(total=None),
            ) as session:
                async with session.request(request.method, url, **request_kwargs) as response:
                    self._response = response
                    observer.on_response(response.status, _collect_headers(response))
                    async for chunk in response.content.iter_any():
                        observer.on_data(chunk)
                    observer.on_end()
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(f"Request to {url} timed out") from e
        except (aiohttp.ClientError, OSError) as e:
            logger.debug(f"Transport error for {url}: {e!r}")
            raise TransportError(str(e) or repr(e), code=_error_code(e)) from e
        finally:
            self._response = None

    def abort(self) -> None:
        """Close the response connection if headers already arrived.

        Before that point the connection attempt is torn down by cancelling
        the task awaiting ``dispatch``.
        """
        if self._response is not None:
            self._response.close()


class SecureTransport(PlainTransport):
    """aiohttp transport for ``https`` requests.

    TCP connect is reported when asyncio attaches the TLS session to the
    connected socket; the secure-connect milestone when aiohttp reports the
    connection (handshake included) as created.
    """

    def _ssl_context(self, observer: LifecycleObserver) -> ssl.SSLContext | bool:
        context = ObservedSSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.load_default_certs()
        if self._cafile:
            context.load_verify_locations(self._cafile)
        context.on_wrap = observer.on_connected
        return context

    def _connection_established(self, observer: LifecycleObserver) -> None:
        observer.on_secure_connected()


_TRANSPORTS: dict[str, type[PlainTransport]] = {
    "http": PlainTransport,
    "https": SecureTransport,
}


def make_transport(scheme: str, *, cafile: str | None = None) -> TransportPort:
    """Build the transport variant for ``scheme``.

    Args:
        scheme: ``"http"`` or ``"https"``.
        cafile: Optional PEM bundle trusted in addition to the system CAs.

    Returns:
        A fresh, single-use transport.

    Raises:
        KeyError: If the scheme is not supported.
    """
    return _TRANSPORTS[scheme](cafile=cafile)
