"""Core services and cross-cutting concerns."""

from throttle.core.errors import (
    ConfigurationError,
    CounterStoreError,
    RateLimitError,
    ThrottleError,
    register_exception_handlers,
)


__all__ = [
    "ConfigurationError",
    "CounterStoreError",
    "RateLimitError",
    "ThrottleError",
    "register_exception_handlers",
]
