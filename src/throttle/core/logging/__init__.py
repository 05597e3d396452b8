"""Logging module with structured logging via structlog."""

from throttle.core.logging.config import configure_logging


__all__ = [
    "configure_logging",
]
