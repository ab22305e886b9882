"""Logging configuration utilities for the mount proxy service."""
import logging
import os
from typing import Optional

SERVICE_NAME = "Mount-Proxy"

error_log = logging.getLogger(f"{SERVICE_NAME}.Errors")


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging based on `level` or the LOG_LEVEL environment variable."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def log_proxy_error(exc: BaseException) -> None:
    """Default error sink handed to the forwarder."""
    error_log.error("proxy error: %s", exc, exc_info=exc)
