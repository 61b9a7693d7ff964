"""Logfire cloud observability initialization and instrumentation."""

import logging

import logfire

from bakehouse import __version__
from bakehouse.config import Settings

logger = logging.getLogger(__name__)


def initialize_logfire(settings: Settings) -> None:
    """
    Initialize Logfire tracing for the sync engine.

    Call once at startup, before any session is opened. Instruments:
    - HTTPX clients (simulation REST API)
    - Python logging (bridges to Logfire)

    Args:
        settings: Application settings containing Logfire token
    """
    if not settings.logfire_token:
        logger.debug("Logfire token not set - observability disabled")
        return

    try:
        logfire.configure(
            token=settings.logfire_token,
            service_name="bakehouse",
            service_version=__version__,
        )

        logfire.instrument_httpx()

        root_logger = logging.getLogger()
        root_logger.addHandler(logfire.LogfireLoggingHandler())

        logger.info("Logfire cloud tracking initialized")

    except Exception as e:
        # Observability is optional; keep running without it
        logger.warning(f"Failed to initialize Logfire: {e}")
