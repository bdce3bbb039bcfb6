"""Configuration loading from environment variables."""

import json
import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, HttpUrl, TypeAdapter, field_validator

from http_timings.ports.http import SUPPORTED_SCHEMES

__all__ = ["Settings", "load_settings", "DEFAULT_IDLE_TIMEOUT_MS"]

load_dotenv()

logger = logging.getLogger(__name__)
_http_url_adapter = TypeAdapter(HttpUrl)

DEFAULT_IDLE_TIMEOUT_MS = 30_000


class Settings(BaseModel):
    """Runtime configuration for one timed request.

    Attributes:
        target_url: http(s) URL to request.
        method: HTTP method (upper-cased on validation).
        headers: Extra request headers.
        body: Optional request payload.
        idle_timeout_ms: Inactivity window before the request is aborted.
        ca_file: Optional PEM bundle of extra CAs trusted for https.
    """

    target_url: str = Field(..., description="http(s) URL to request.")
    method: str = Field(default="GET", min_length=1, description="HTTP method.")
    headers: dict[str, str] = Field(default_factory=dict, description="Extra request headers.")
    body: str | None = Field(default=None, description="Optional request payload.")
    idle_timeout_ms: int = Field(
        default=DEFAULT_IDLE_TIMEOUT_MS,
        gt=0,
        description="Inactivity window in milliseconds before aborting.",
    )
    ca_file: str | None = Field(default=None, description="Extra trusted CA bundle (PEM).")

    @field_validator("target_url")
    @classmethod
    def validate_target_url(cls, v: str) -> str:
        """Validate that the target is an http or https URL.

        Args:
            v: URL to validate.

        Returns:
            The validated URL.

        Raises:
            ValueError: If URL is invalid or uses another scheme.
        """
        try:
            url = _http_url_adapter.validate_python(v)
            if url.scheme not in SUPPORTED_SCHEMES:
                raise ValueError("Only http:// and https:// URLs allowed")
        except Exception as e:
            raise ValueError(f"Invalid target URL: {e}") from e
        return v

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        return v.strip().upper()

    @property
    def idle_timeout_sec(self) -> float:
        return self.idle_timeout_ms / 1_000.0


def _parse_headers(raw: str) -> dict[str, str]:
    """Parse REQUEST_HEADERS as a JSON object of strings.

    Raises:
        ValueError: If the value is not a JSON object of strings.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"REQUEST_HEADERS contains invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("REQUEST_HEADERS must be a JSON object")
    if not all(isinstance(k, str) and isinstance(v, str) for k, v in data.items()):
        raise ValueError("REQUEST_HEADERS names and values must be strings")
    return data


def load_settings() -> Settings:
    """Load and validate settings from environment (and a .env file).

    Required environment variables:
    - TARGET_URL: http(s) URL to request.

    Optional:
    - REQUEST_METHOD: HTTP method (default GET).
    - REQUEST_HEADERS: JSON object of extra headers.
    - REQUEST_BODY: Request payload.
    - IDLE_TIMEOUT_MS: Positive integer (default 30000).
    - CA_FILE: PEM bundle of extra CAs trusted for https.

    Returns:
        Validated Settings object.

    Raises:
        RuntimeError: If required env vars missing or invalid.
        ValueError: If configuration is invalid.
    """
    try:
        target_url = os.environ["TARGET_URL"]
    except KeyError as e:
        raise RuntimeError(f"Missing required environment variable: {e.args[0]}") from e

    timeout_raw = os.getenv("IDLE_TIMEOUT_MS", str(DEFAULT_IDLE_TIMEOUT_MS))
    try:
        idle_timeout_ms = int(timeout_raw)
        if idle_timeout_ms <= 0:
            raise ValueError("Must be positive")
    except ValueError as e:
        raise RuntimeError(
            f"IDLE_TIMEOUT_MS must be a positive integer (got: {timeout_raw})"
        ) from e

    settings = Settings(
        target_url=target_url,
        method=os.getenv("REQUEST_METHOD", "GET"),
        headers=_parse_headers(os.getenv("REQUEST_HEADERS", "{}")),
        body=os.getenv("REQUEST_BODY"),
        idle_timeout_ms=idle_timeout_ms,
        ca_file=os.getenv("CA_FILE") or None,
    )

    logger.info(
        f"Request configured: {settings.method} {settings.target_url}, "
        f"headers={len(settings.headers)}, "
        f"body={'<none>' if settings.body is None else f'{len(settings.body)} chars'}, "
        f"idle_timeout={settings.idle_timeout_ms}ms"
    )

    return settings
