"""Derivation of phase durations from recorded milestones."""

from http_timings.ports.errors import TimingConsistencyError
from http_timings.ports.timings import Milestones, TimingReport

__all__ = ["compute_timings"]

_MS_PER_SEC = 1_000.0


def _required(milestones: Milestones, name: str) -> float:
    value = getattr(milestones, name)
    if value is None:
        raise TimingConsistencyError(f"Milestone {name!r} was never recorded")
    return value


def _span(later: float, earlier: float, phase: str) -> float:
    """Return ``later - earlier`` in milliseconds, refusing negative spans."""
    elapsed = later - earlier
    if elapsed < 0:
        raise TimingConsistencyError(
            f"Negative {phase} duration ({elapsed * _MS_PER_SEC:.3f} ms): milestones out of order"
        )
    return elapsed * _MS_PER_SEC


def compute_timings(milestones: Milestones) -> TimingReport:
    """Compute the phase breakdown of a completed request.

    Each phase is measured from the nearest preceding milestone that was
    actually recorded, so the phases always add up to ``total``. The TCP
    phase starts at the DNS milestone when a lookup happened, else at
    ``start``. Nothing is clamped: the report is exactly what the
    milestones imply.

    Args:
        milestones: Milestones of a completed request.

    Returns:
        Durations in milliseconds.

    Raises:
        TimingConsistencyError: If a mandatory milestone is missing or the
            milestones are not in lifecycle order.
    """
    start = milestones.start
    dns = milestones.dns_lookup
    tls = milestones.tls_handshake
    tcp = _required(milestones, "tcp_connect")
    first_byte = _required(milestones, "first_byte")
    end = _required(milestones, "end")

    return TimingReport(
        dns_lookup=_span(dns, start, "DNS lookup") if dns is not None else None,
        tcp_connection=_span(tcp, dns if dns is not None else start, "TCP connection"),
        tls_handshake=_span(tls, tcp, "TLS handshake") if tls is not None else None,
        first_byte=_span(first_byte, tls if tls is not None else tcp, "first byte"),
        content_transfer=_span(end, first_byte, "content transfer"),
        total=_span(end, start, "total"),
    )
