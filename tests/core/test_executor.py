"""Tests for the timed request executor."""

import asyncio
from collections.abc import Callable, Iterator

import pytest

from http_timings.core.executor import RequestState, TimedRequest, execute
from http_timings.ports.errors import (
    ErrorKind,
    InternalError,
    RequestError,
    RequestTimeoutError,
    RequestValidationError,
    TransportError,
)
from http_timings.ports.http import LifecycleObserver, RequestDescriptor, ResponseBundle

__all__ = []


class Outcomes:
    """Completion callback recording every invocation."""

    def __init__(self) -> None:
        self.calls: list[tuple[RequestError | None, ResponseBundle | None]] = []
        self.event = asyncio.Event()

    def __call__(self, error: RequestError | None, bundle: ResponseBundle | None) -> None:
        self.calls.append((error, bundle))
        self.event.set()

    async def wait(self) -> tuple[RequestError | None, ResponseBundle | None]:
        await asyncio.wait_for(self.event.wait(), timeout=2)
        return self.calls[0]


class ScriptedTransport:
    """Transport replaying a fixed sequence of lifecycle notifications."""

    def __init__(
        self,
        script: Callable[[LifecycleObserver], None],
        error: RequestError | None = None,
    ) -> None:
        self.script = script
        self.error = error
        self.aborted = False
        self.dispatched: list[RequestDescriptor] = []

    async def dispatch(self, request: RequestDescriptor, observer: LifecycleObserver) -> None:
        self.dispatched.append(request)
        await asyncio.sleep(0)
        self.script(observer)
        if self.error is not None:
            raise self.error

    def abort(self) -> None:
        self.aborted = True


class HangingTransport:
    """Transport that connects and then never answers."""

    def __init__(self) -> None:
        self.aborted = False
        self.cancelled = False

    async def dispatch(self, request: RequestDescriptor, observer: LifecycleObserver) -> None:
        observer.on_connected()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise

    def abort(self) -> None:
        self.aborted = True


def make_clock(*ticks: float) -> Callable[[], float]:
    """Return a clock yielding ``ticks`` in order."""
    it: Iterator[float] = iter(ticks)
    return lambda: next(it)


def https_script(observer: LifecycleObserver) -> None:
    observer.on_dns_resolved()
    observer.on_connected()
    observer.on_secure_connected()
    observer.on_response(200, {"content-type": "text/plain", "set-cookie": ["a=1", "b=2"]})
    observer.on_data(b"hel")
    observer.on_data(b"lo")
    observer.on_end()


def http_ip_script(observer: LifecycleObserver) -> None:
    observer.on_connected()
    observer.on_response(204, {})
    observer.on_end()


HTTPS = RequestDescriptor(scheme="https", host="example.test", path="/")


@pytest.mark.asyncio
async def test_execute_delivers_bundle_with_timings() -> None:
    """A full https lifecycle should produce headers, body and every phase."""
    outcomes = Outcomes()
    transport = ScriptedTransport(https_script)

    execute(
        HTTPS,
        outcomes,
        lambda scheme: transport,
        clock=make_clock(0.000, 0.010, 0.030, 0.060, 0.100, 0.150),
    )
    error, bundle = await outcomes.wait()

    assert error is None
    assert bundle is not None
    assert bundle.status == 200
    assert bundle.body == b"hello"
    assert bundle.headers["set-cookie"] == ["a=1", "b=2"]
    assert bundle.timings.dns_lookup == pytest.approx(10.0)
    assert bundle.timings.tcp_connection == pytest.approx(20.0)
    assert bundle.timings.tls_handshake == pytest.approx(30.0)
    assert bundle.timings.first_byte == pytest.approx(40.0)
    assert bundle.timings.content_transfer == pytest.approx(50.0)
    assert bundle.timings.total == pytest.approx(150.0)
    assert transport.dispatched == [HTTPS]


@pytest.mark.asyncio
async def test_execute_plain_ip_request_omits_dns_and_tls() -> None:
    """Plain http to a literal IP should have neither DNS nor TLS phases."""
    outcomes = Outcomes()
    descriptor = RequestDescriptor(scheme="http", host="127.0.0.1", port=8080)

    execute(
        descriptor,
        outcomes,
        lambda scheme: ScriptedTransport(http_ip_script),
        clock=make_clock(1.0, 1.002, 1.010, 1.011),
    )
    error, bundle = await outcomes.wait()

    assert error is None
    assert bundle is not None
    assert bundle.timings.dns_lookup is None
    assert bundle.timings.tls_handshake is None
    assert bundle.timings.tcp_connection == pytest.approx(2.0)
    assert bundle.timings.first_byte == pytest.approx(8.0)
    assert bundle.body == b""


@pytest.mark.asyncio
async def test_execute_picks_transport_by_scheme() -> None:
    """The transport factory should receive the descriptor's scheme."""
    outcomes = Outcomes()
    schemes: list[str] = []

    def factory(scheme: str) -> ScriptedTransport:
        schemes.append(scheme)
        return ScriptedTransport(http_ip_script)

    execute(RequestDescriptor(scheme="http", host="10.0.0.1"), outcomes, factory)
    await outcomes.wait()

    assert schemes == ["http"]


@pytest.mark.parametrize(
    "descriptor, match",
    [
        (RequestDescriptor(scheme="https", host=""), "host is required"),
        (RequestDescriptor(scheme="https", host=None), "host is required"),  # type: ignore[arg-type]
        (RequestDescriptor(scheme="", host="example.test"), "scheme is required"),
        (RequestDescriptor(scheme="ftp", host="example.test"), "Unsupported scheme"),
        (RequestDescriptor(scheme="https:", host="example.test"), "Unsupported scheme"),
        (RequestDescriptor(scheme="http", host="example.test", method=""), "method"),
    ],
)
def test_execute_rejects_invalid_descriptor_before_io(
    descriptor: RequestDescriptor, match: str
) -> None:
    """Validation errors should be raised synchronously, with no transport built."""
    factory_calls: list[str] = []

    with pytest.raises(RequestValidationError, match=match) as exc_info:
        execute(descriptor, lambda error, bundle: None, factory_calls.append)  # type: ignore[arg-type]

    assert exc_info.value.kind is ErrorKind.VALIDATION
    assert factory_calls == []


def test_execute_requires_callback() -> None:
    """A missing completion callback is a validation failure."""
    with pytest.raises(RequestValidationError, match="on_complete"):
        execute(HTTPS, None, lambda scheme: ScriptedTransport(https_script))  # type: ignore[arg-type]


def test_execute_rejects_non_positive_timeout() -> None:
    """The idle window must be positive."""
    with pytest.raises(RequestValidationError, match="Idle timeout"):
        execute(
            HTTPS,
            lambda error, bundle: None,
            lambda scheme: ScriptedTransport(https_script),
            idle_timeout_sec=0,
        )


@pytest.mark.asyncio
async def test_idle_timeout_aborts_and_reports_timeout() -> None:
    """A silent server should yield a timeout-kind error after the idle window."""
    outcomes = Outcomes()
    transport = HangingTransport()
    loop = asyncio.get_running_loop()

    started = loop.time()
    task = execute(HTTPS, outcomes, lambda scheme: transport, idle_timeout_sec=0.05)
    error, bundle = await outcomes.wait()
    elapsed = loop.time() - started

    assert isinstance(error, RequestTimeoutError)
    assert error.kind is ErrorKind.TIMEOUT
    assert error.code == "ETIMEDOUT"
    assert bundle is None
    assert transport.aborted is True
    assert transport.cancelled is True
    assert elapsed >= 0.04

    await asyncio.sleep(0.1)
    assert task.done()
    assert len(outcomes.calls) == 1


@pytest.mark.asyncio
async def test_activity_rearms_idle_timer() -> None:
    """Steady body chunks should keep a slow transfer alive."""
    outcomes = Outcomes()

    class TricklingTransport(ScriptedTransport):
        async def dispatch(self, request: RequestDescriptor, observer: LifecycleObserver) -> None:
            observer.on_connected()
            observer.on_secure_connected()
            observer.on_response(200, {})
            for _ in range(4):
                await asyncio.sleep(0.03)
                observer.on_data(b".")
            observer.on_end()

    execute(HTTPS, outcomes, lambda scheme: TricklingTransport(https_script), idle_timeout_sec=0.08)
    error, bundle = await outcomes.wait()

    assert error is None
    assert bundle is not None
    assert bundle.body == b"...."


@pytest.mark.asyncio
async def test_upload_progress_rearms_idle_timer() -> None:
    """A slow but steady request body must not count as idle."""
    outcomes = Outcomes()

    class UploadingTransport(ScriptedTransport):
        async def dispatch(self, request: RequestDescriptor, observer: LifecycleObserver) -> None:
            observer.on_connected()
            for _ in range(4):
                await asyncio.sleep(0.03)
                observer.on_request_chunk_sent()
            observer.on_response(201, {})
            observer.on_end()

    execute(
        RequestDescriptor(scheme="http", host="127.0.0.1", method="PUT", body="x" * 4),
        outcomes,
        lambda scheme: UploadingTransport(http_ip_script),
        idle_timeout_sec=0.08,
    )
    error, bundle = await outcomes.wait()

    assert error is None
    assert bundle is not None
    assert bundle.status == 201


@pytest.mark.asyncio
async def test_transport_error_is_reported_once() -> None:
    """Transport failures should surface verbatim with the transport kind."""
    outcomes = Outcomes()
    refused = TransportError("Connection refused", code="ECONNREFUSED")
    transport = ScriptedTransport(lambda observer: None, error=refused)

    execute(HTTPS, outcomes, lambda scheme: transport, idle_timeout_sec=5)
    error, bundle = await outcomes.wait()
    await asyncio.sleep(0)

    assert error is refused
    assert error.kind is ErrorKind.TRANSPORT
    assert bundle is None
    assert transport.aborted is False
    assert len(outcomes.calls) == 1


@pytest.mark.asyncio
async def test_transport_timeout_aborts_transport() -> None:
    """A timeout raised by the transport itself should still abort it."""
    outcomes = Outcomes()
    transport = ScriptedTransport(lambda observer: None, error=RequestTimeoutError())

    execute(HTTPS, outcomes, lambda scheme: transport)
    error, _ = await outcomes.wait()

    assert error is not None
    assert error.kind is ErrorKind.TIMEOUT
    assert transport.aborted is True


@pytest.mark.asyncio
async def test_error_after_completion_is_dropped() -> None:
    """Once completed, later failures must not trigger a second callback."""
    outcomes = Outcomes()
    transport = ScriptedTransport(https_script, error=TransportError("reset"))

    execute(HTTPS, outcomes, lambda scheme: transport)
    error, bundle = await outcomes.wait()
    await asyncio.sleep(0.01)

    assert error is None
    assert bundle is not None
    assert len(outcomes.calls) == 1


@pytest.mark.asyncio
async def test_out_of_order_event_is_internal_failure() -> None:
    """A response before the connection exists breaks the lifecycle."""
    outcomes = Outcomes()

    def script(observer: LifecycleObserver) -> None:
        observer.on_response(200, {})

    execute(HTTPS, outcomes, lambda scheme: ScriptedTransport(script))
    error, bundle = await outcomes.wait()

    assert error is not None
    assert error.kind is ErrorKind.INTERNAL
    assert "first_byte" in str(error)
    assert bundle is None


@pytest.mark.asyncio
async def test_transport_without_end_is_internal_failure() -> None:
    """Returning without signalling end of response must not hang the caller."""
    outcomes = Outcomes()

    def script(observer: LifecycleObserver) -> None:
        observer.on_connected()

    execute(RequestDescriptor(scheme="http", host="h"), outcomes, lambda s: ScriptedTransport(script))
    error, _ = await outcomes.wait()

    assert error is not None
    assert error.kind is ErrorKind.INTERNAL


@pytest.mark.asyncio
async def test_unexpected_exception_is_reported_as_internal() -> None:
    """Bugs in a transport should still complete the request exactly once."""
    outcomes = Outcomes()

    class BrokenTransport(ScriptedTransport):
        async def dispatch(self, request: RequestDescriptor, observer: LifecycleObserver) -> None:
            raise KeyError("boom")

    execute(HTTPS, outcomes, lambda scheme: BrokenTransport(https_script))
    error, _ = await outcomes.wait()

    assert error is not None
    assert error.kind is ErrorKind.INTERNAL
    assert isinstance(error.__cause__, KeyError)


@pytest.mark.asyncio
async def test_state_machine_walks_through_lifecycle() -> None:
    """States should advance connecting -> awaiting -> transferring -> completed."""
    seen: list[RequestState] = []
    outcomes = Outcomes()
    request: TimedRequest

    def script(observer: LifecycleObserver) -> None:
        seen.append(request.state)
        observer.on_dns_resolved()
        observer.on_connected()
        seen.append(request.state)
        observer.on_secure_connected()
        seen.append(request.state)
        observer.on_response(200, {})
        seen.append(request.state)
        observer.on_end()

    request = TimedRequest(HTTPS, outcomes, ScriptedTransport(script))
    assert request.state is RequestState.VALIDATING

    request.start()
    await outcomes.wait()

    assert seen == [
        RequestState.CONNECTING,
        RequestState.CONNECTING,
        RequestState.AWAITING_RESPONSE,
        RequestState.TRANSFERRING,
    ]
    assert request.state is RequestState.COMPLETED
    assert request.milestones is not None
    assert request.milestones.end is not None


@pytest.mark.asyncio
async def test_concurrent_requests_do_not_share_milestones() -> None:
    """Each call should own an independent milestone record."""
    first, second = Outcomes(), Outcomes()

    execute(HTTPS, first, lambda scheme: ScriptedTransport(https_script))
    execute(
        RequestDescriptor(scheme="http", host="127.0.0.1"),
        second,
        lambda scheme: ScriptedTransport(http_ip_script),
    )
    (_, bundle_a), (_, bundle_b) = await asyncio.gather(first.wait(), second.wait())

    assert bundle_a is not None and bundle_b is not None
    assert bundle_a.timings.tls_handshake is not None
    assert bundle_b.timings.tls_handshake is None
    assert bundle_b.timings.dns_lookup is None


def test_events_before_start_are_internal_errors() -> None:
    """Lifecycle notifications for a request that was never started are rejected."""
    request = TimedRequest(HTTPS, Outcomes(), ScriptedTransport(https_script))

    with pytest.raises(InternalError, match="tcp_connect"):
        request.on_connected()
    assert request.milestones is None
    assert request.state is RequestState.VALIDATING
