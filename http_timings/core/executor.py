"""Timed request executor: one request, one timing report."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

from http_timings.core.timings import compute_timings
from http_timings.ports.errors import (
    InternalError,
    RequestError,
    RequestTimeoutError,
    RequestValidationError,
)
from http_timings.ports.http import (
    SUPPORTED_SCHEMES,
    CompletionCallback,
    Headers,
    RequestDescriptor,
    ResponseBundle,
    TransportPort,
)
from http_timings.ports.timings import Milestones

__all__ = [
    "DEFAULT_IDLE_TIMEOUT_SEC",
    "RequestState",
    "TimedRequest",
    "TransportFactory",
    "execute",
    "get_now_time",
    "validate_request",
]

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT_SEC = 30.0

TransportFactory = Callable[[str], TransportPort]


def get_now_time() -> float:
    """Get current monotonic time in seconds.

    Uses event loop's monotonic clock so durations are immune to
    wall-clock adjustments during the request.

    Returns:
        Current time in seconds (monotonic).
    """
    return asyncio.get_running_loop().time()


class RequestState(Enum):
    """Lifecycle states of a timed request."""

    VALIDATING = "validating"
    CONNECTING = "connecting"
    AWAITING_RESPONSE = "awaiting-response"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestState.COMPLETED, RequestState.FAILED)


_TRANSITIONS: dict[RequestState, frozenset[RequestState]] = {
    RequestState.VALIDATING: frozenset({RequestState.CONNECTING, RequestState.FAILED}),
    RequestState.CONNECTING: frozenset({RequestState.AWAITING_RESPONSE, RequestState.FAILED}),
    RequestState.AWAITING_RESPONSE: frozenset({RequestState.TRANSFERRING, RequestState.FAILED}),
    RequestState.TRANSFERRING: frozenset({RequestState.COMPLETED, RequestState.FAILED}),
    RequestState.COMPLETED: frozenset(),
    RequestState.FAILED: frozenset(),
}


def validate_request(
    descriptor: RequestDescriptor,
    on_complete: CompletionCallback | None,
    idle_timeout_sec: float = DEFAULT_IDLE_TIMEOUT_SEC,
) -> None:
    """Check a request before any I/O happens.

    Args:
        descriptor: Request to validate.
        on_complete: Completion callback that will receive the outcome.
        idle_timeout_sec: Inactivity window in seconds.

    Raises:
        RequestValidationError: If any required field is missing or invalid.
    """
    if not descriptor.scheme:
        raise RequestValidationError("descriptor.scheme is required")
    if descriptor.scheme not in SUPPORTED_SCHEMES:
        raise RequestValidationError(
            f"Unsupported scheme {descriptor.scheme!r}; expected one of {SUPPORTED_SCHEMES}"
        )
    if not descriptor.host:
        raise RequestValidationError("descriptor.host is required")
    if not isinstance(descriptor.method, str) or not descriptor.method:
        raise RequestValidationError("descriptor.method must be a non-empty string")
    if on_complete is None or not callable(on_complete):
        raise RequestValidationError("on_complete callback is required")
    if idle_timeout_sec <= 0:
        raise RequestValidationError(f"Idle timeout must be positive (got: {idle_timeout_sec})")


class TimedRequest:
    """State machine driving a single request through its lifecycle.

    Acts as the transport's ``LifecycleObserver``: every notification stamps
    a milestone and advances the state. The completion callback is invoked
    from exactly one place per outcome and only on the transition into a
    terminal state, so it can fire at most once.

    Not reusable; create one instance per request.
    """

    def __init__(
        self,
        descriptor: RequestDescriptor,
        on_complete: CompletionCallback,
        transport: TransportPort,
        *,
        idle_timeout_sec: float = DEFAULT_IDLE_TIMEOUT_SEC,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the request.

        Args:
            descriptor: Validated request to send.
            on_complete: Receives ``(error, None)`` or ``(None, bundle)``.
            transport: Transport matching the descriptor's scheme.
            idle_timeout_sec: Inactivity window before aborting.
            clock: Monotonic time source in seconds; defaults to the loop clock.
        """
        self.descriptor = descriptor
        self.state = RequestState.VALIDATING
        self._on_complete = on_complete
        self._transport = transport
        self._idle_timeout_sec = idle_timeout_sec
        self._clock = clock or get_now_time
        self._milestones: Milestones | None = None
        self._status = 0
        self._headers: Headers = {}
        self._chunks: list[bytes] = []
        self._task: asyncio.Task[None] | None = None
        self._idle_handle: asyncio.TimerHandle | None = None
        self._timed_out = False

    @property
    def milestones(self) -> Milestones | None:
        """Milestones recorded so far; None until the request is started."""
        return self._milestones

    def start(self) -> asyncio.Task[None]:
        """Record ``start``, dispatch the request and arm the idle watchdog.

        Returns:
            The task running the request.
        """
        loop = asyncio.get_running_loop()
        self._milestones = Milestones(start=self._clock())
        self._advance(RequestState.CONNECTING)
        self._task = loop.create_task(self._run())
        self._arm_idle_timer()
        return self._task

    async def _run(self) -> None:
        """Run the transport and route its failures to the callback."""
        try:
            await self._transport.dispatch(self.descriptor, self)
        except asyncio.CancelledError:
            if not self._timed_out:
                raise
            self._fail(RequestTimeoutError(f"No activity for {self._idle_timeout_sec}s"))
            return
        except RequestTimeoutError as e:
            self._transport.abort()
            self._fail(e)
            return
        except RequestError as e:
            self._fail(e)
            return
        except Exception as e:  # noqa: BLE001
            logger.error(f"Unexpected error while dispatching {self._target}: {e}", exc_info=True)
            failure = InternalError(f"Unexpected error: {e}")
            failure.__cause__ = e
            self._fail(failure)
            return

        if not self.state.is_terminal:
            self._fail(InternalError("Transport finished without signalling end of response"))

    # Lifecycle notifications

    def on_dns_resolved(self) -> None:
        if self._accepts("dns_lookup", RequestState.CONNECTING):
            self._mark("dns_lookup")

    def on_connected(self) -> None:
        if not self._accepts("tcp_connect", RequestState.CONNECTING):
            return
        self._mark("tcp_connect")
        if not self.descriptor.is_secure:
            self._advance(RequestState.AWAITING_RESPONSE)

    def on_secure_connected(self) -> None:
        if not self._accepts("tls_handshake", RequestState.CONNECTING):
            return
        self._mark("tls_handshake")
        self._advance(RequestState.AWAITING_RESPONSE)

    def on_request_chunk_sent(self) -> None:
        """Upload progress keeps the request alive without stamping anything.

        The body may still be streaming after an early response, so any
        non-terminal state accepts it.
        """
        self._arm_idle_timer()

    def on_response(self, status: int, headers: Headers) -> None:
        if not self._accepts("first_byte", RequestState.AWAITING_RESPONSE):
            return
        self._mark("first_byte")
        self._status = status
        self._headers = headers
        self._advance(RequestState.TRANSFERRING)

    def on_data(self, chunk: bytes) -> None:
        if not self._accepts("data", RequestState.TRANSFERRING):
            return
        self._chunks.append(chunk)
        self._arm_idle_timer()

    def on_end(self) -> None:
        if not self._accepts("end", RequestState.TRANSFERRING):
            return
        self._mark("end")
        bundle = ResponseBundle(
            status=self._status,
            headers=self._headers,
            body=b"".join(self._chunks),
            timings=compute_timings(self._started()),
        )
        self._advance(RequestState.COMPLETED)
        self._cancel_idle_timer()
        logger.info(f"{self._target} -> {bundle.status} in {bundle.timings.total:.1f} ms")
        self._on_complete(None, bundle)

    # Internals

    @property
    def _target(self) -> str:
        d = self.descriptor
        port = f":{d.port}" if d.port is not None else ""
        return f"{d.method} {d.scheme}://{d.host}{port}{d.path}"

    def _accepts(self, event: str, expected: RequestState) -> bool:
        """Return True if ``event`` may be processed in the current state.

        Raises:
            InternalError: If the event arrived out of lifecycle order.
        """
        if self.state.is_terminal:
            logger.debug(f"Ignoring {event} for {self._target}: request already {self.state.value}")
            return False
        if self.state is not expected:
            raise InternalError(
                f"Lifecycle event {event!r} arrived while {self.state.value}, "
                f"expected {expected.value}"
            )
        return True

    def _advance(self, new_state: RequestState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InternalError(f"Illegal transition {self.state.value} -> {new_state.value}")
        self.state = new_state

    def _started(self) -> Milestones:
        if self._milestones is None:
            raise InternalError(f"{self._target} has not been started")
        return self._milestones

    def _mark(self, name: str) -> None:
        """Stamp a milestone once; later occurrences keep the first value."""
        milestones = self._started()
        if getattr(milestones, name) is None:
            setattr(milestones, name, self._clock())
            logger.debug(f"{self._target}: {name} reached")
        self._arm_idle_timer()

    def _arm_idle_timer(self) -> None:
        if self.state.is_terminal or self._task is None:
            return
        self._cancel_idle_timer()
        loop = asyncio.get_running_loop()
        self._idle_handle = loop.call_later(self._idle_timeout_sec, self._on_idle_timeout)

    def _cancel_idle_timer(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def _on_idle_timeout(self) -> None:
        """Abort the transport; the cancelled task then reports the timeout."""
        self._idle_handle = None
        if self.state.is_terminal or self._task is None:
            return
        logger.warning(f"{self._target}: no activity for {self._idle_timeout_sec}s, aborting")
        self._timed_out = True
        self._transport.abort()
        self._task.cancel()

    def _fail(self, error: RequestError) -> None:
        if self.state.is_terminal:
            logger.debug(f"Dropping {error.kind.value} error for {self._target}: {error}")
            return
        self._advance(RequestState.FAILED)
        self._cancel_idle_timer()
        logger.info(f"{self._target} failed ({error.kind.value}): {error}")
        self._on_complete(error, None)


def execute(
    descriptor: RequestDescriptor,
    on_complete: CompletionCallback,
    transport_factory: TransportFactory,
    *,
    idle_timeout_sec: float = DEFAULT_IDLE_TIMEOUT_SEC,
    clock: Callable[[], float] | None = None,
) -> asyncio.Task[None]:
    """Issue one timed request and return immediately.

    Must be called from within a running event loop. ``on_complete`` is
    called exactly once, later, with either an error or a response bundle.

    Args:
        descriptor: Request to send.
        on_complete: Completion callback ``(error, bundle)``.
        transport_factory: Builds the transport for the descriptor's scheme.
        idle_timeout_sec: Inactivity window before aborting (default 30 s).
        clock: Optional monotonic time source in seconds.

    Returns:
        The task running the request.

    Raises:
        RequestValidationError: Synchronously, if the descriptor is invalid.
    """
    validate_request(descriptor, on_complete, idle_timeout_sec)
    request = TimedRequest(
        descriptor,
        on_complete,
        transport_factory(descriptor.scheme),
        idle_timeout_sec=idle_timeout_sec,
        clock=clock,
    )
    return request.start()
