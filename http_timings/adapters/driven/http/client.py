"""Timed HTTP client bound to the aiohttp transports."""

import asyncio
from functools import partial

from http_timings.adapters.driven.http.transport import make_transport
from http_timings.core import executor
from http_timings.core.executor import DEFAULT_IDLE_TIMEOUT_SEC
from http_timings.ports.errors import RequestError
from http_timings.ports.http import CompletionCallback, RequestDescriptor, ResponseBundle

__all__ = ["execute", "timed_request"]


def execute(
    descriptor: RequestDescriptor,
    on_complete: CompletionCallback,
    *,
    idle_timeout_sec: float = DEFAULT_IDLE_TIMEOUT_SEC,
    cafile: str | None = None,
) -> asyncio.Task[None]:
    """Issue one timed request over aiohttp.

    Args:
        descriptor: Request to send.
        on_complete: Called once with ``(error, None)`` or ``(None, bundle)``.
        idle_timeout_sec: Inactivity window before aborting.
        cafile: Optional PEM bundle of extra CAs trusted for https.

    Returns:
        The task running the request.

    Raises:
        RequestValidationError: If the descriptor is invalid (before any I/O).
    """
    return executor.execute(
        descriptor,
        on_complete,
        partial(make_transport, cafile=cafile),
        idle_timeout_sec=idle_timeout_sec,
    )


async def timed_request(
    descriptor: RequestDescriptor,
    *,
    idle_timeout_sec: float = DEFAULT_IDLE_TIMEOUT_SEC,
    cafile: str | None = None,
) -> ResponseBundle:
    """Await one timed request.

    Args:
        descriptor: Request to send.
        idle_timeout_sec: Inactivity window before aborting.
        cafile: Optional PEM bundle of extra CAs trusted for https.

    Returns:
        Response headers, body and timing breakdown.

    Raises:
        RequestValidationError: If the descriptor is invalid.
        RequestTimeoutError: If the idle window elapsed.
        TransportError: On network or protocol failure.
    """
    done: asyncio.Future[ResponseBundle] = asyncio.get_running_loop().create_future()

    def on_complete(error: RequestError | None, bundle: ResponseBundle | None) -> None:
        if done.done():
            return
        if error is not None:
            done.set_exception(error)
        else:
            done.set_result(bundle)

    execute(descriptor, on_complete, idle_timeout_sec=idle_timeout_sec, cafile=cafile)
    return await done
