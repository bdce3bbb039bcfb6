"""Timing port definitions (milestone record and derived report)."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

__all__ = ["Milestones", "TimingReport"]


@dataclass(slots=True)
class Milestones:
    """Monotonic timestamps of one request's lifecycle.

    Owned by a single in-flight request and never shared. Every optional
    field stays ``None`` until its event fires; ``dns_lookup`` never fires
    for literal IP hosts and ``tls_handshake`` never fires for plain http.

    Attributes:
        start: Seconds when the request was issued.
        dns_lookup: Seconds when host resolution finished.
        tcp_connect: Seconds when the TCP socket connected.
        tls_handshake: Seconds when the secure channel was established.
        first_byte: Seconds when response headers became available.
        end: Seconds when the response body was fully consumed.
    """

    start: float
    dns_lookup: float | None = None
    tcp_connect: float | None = None
    tls_handshake: float | None = None
    first_byte: float | None = None
    end: float | None = None


@dataclass(slots=True, frozen=True)
class TimingReport:
    """Phase durations of a completed request, in milliseconds.

    Attributes:
        dns_lookup: Resolution time; None when no lookup happened.
        tcp_connection: Time to establish the TCP connection.
        tls_handshake: Handshake time; None for plain http.
        first_byte: Time from connection ready to response headers.
        content_transfer: Time spent reading the body.
        total: Time from issuing the request to the end of the body.
    """

    dns_lookup: float | None
    tcp_connection: float
    tls_handshake: float | None
    first_byte: float
    content_transfer: float
    total: float

    def as_dict(self) -> dict[str, Any]:
        """Return the report keyed the way the JSON output names phases."""
        raw = asdict(self)
        return {
            "dnsLookup": raw["dns_lookup"],
            "tcpConnection": raw["tcp_connection"],
            "tlsHandshake": raw["tls_handshake"],
            "firstByte": raw["first_byte"],
            "contentTransfer": raw["content_transfer"],
            "total": raw["total"],
        }

    def __str__(self) -> str:
        """Return one-line summary for logging.

        Returns:
            Formatted timings string.
        """

        def fmt(value: float | None) -> str:
            return "    -   " if value is None else f"{value:7.1f}ms"

        return (
            f"dns={fmt(self.dns_lookup)} | "
            f"tcp={fmt(self.tcp_connection)} | "
            f"tls={fmt(self.tls_handshake)} | "
            f"ttfb={fmt(self.first_byte)} | "
            f"transfer={fmt(self.content_transfer)} | "
            f"total={fmt(self.total)}"
        )
