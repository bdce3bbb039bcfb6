"""Settings port definition (DTO)."""

from dataclasses import dataclass, field

__all__ = ["SettingsPort"]


@dataclass
class SettingsPort:
    """Runtime settings for one timed request.

    Decouples the entrypoint from concrete configuration sources, enabling
    easy testing and implementation swapping.

    Attributes:
        target_url: Absolute http(s) URL to request.
        method: HTTP method.
        headers: Extra request headers.
        body: Optional request payload.
        idle_timeout_sec: Inactivity window before the request is aborted.
        ca_file: Optional PEM bundle of extra CAs trusted for https.
    """

    target_url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    idle_timeout_sec: float = 30.0
    ca_file: str | None = None
