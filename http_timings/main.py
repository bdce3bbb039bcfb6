"""Application entrypoint."""

import asyncio
import json
import logging

from http_timings.adapters.driven.config.settings import load_settings
from http_timings.adapters.driven.http.client import timed_request
from http_timings.adapters.driven.logging.logging_config import configure_logs
from http_timings.ports.errors import RequestError
from http_timings.ports.http import RequestDescriptor
from http_timings.ports.settings import SettingsPort

__all__ = ["main", "run"]

logger = logging.getLogger(__name__)


async def main() -> None:
    """Time one HTTP request and log where the time went.

    Startup sequence:
    1. Configure logging.
    2. Load and validate configuration.
    3. Send the configured request once.
    4. Log status, body size and the timing breakdown.
    """
    configure_logs()
    logger.info("Starting HTTP request timing...")

    try:
        config = load_settings()
    except (RuntimeError, ValueError) as exc:
        logger.error(
            "Configuration error: %s\n"
            "Hint: check TARGET_URL, REQUEST_METHOD, REQUEST_HEADERS "
            "IDLE_TIMEOUT_MS and CA_FILE.",
            exc,
        )
        return

    settings_port = SettingsPort(
        target_url=config.target_url,
        method=config.method,
        headers=config.headers,
        body=config.body,
        idle_timeout_sec=config.idle_timeout_sec,
        ca_file=config.ca_file,
    )

    descriptor = RequestDescriptor.from_url(
        settings_port.target_url,
        method=settings_port.method,
        headers=settings_port.headers,
        body=settings_port.body,
    )

    try:
        bundle = await timed_request(
            descriptor,
            idle_timeout_sec=settings_port.idle_timeout_sec,
            cafile=settings_port.ca_file,
        )
    except RequestError as e:
        logger.error(f"Request to {settings_port.target_url} failed ({e.kind.value}): {e}")
        return

    logger.info(f"Response: status={bundle.status} body={len(bundle.body)} bytes")
    logger.info(f"Timings: {bundle.timings}")
    print(json.dumps(bundle.timings.as_dict(), indent=2))


def run() -> None:
    """Console script entrypoint."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user (Ctrl+C).")


if __name__ == "__main__":
    run()
