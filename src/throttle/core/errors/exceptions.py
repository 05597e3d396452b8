"""Throttling exceptions.

Exceeding a limit is not an error; the engine reports it through its
return value. These exceptions cover misconfiguration and counter store
failures, and are converted to RFC 7807 Problem Details responses by the
exception handlers.
"""

from typing import Any


class ThrottleError(Exception):
    """Base exception for all throttling errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for clients
        status_code: HTTP status code for the response
        details: Additional error details
    """

    message: str = "An unexpected throttling error occurred"
    error_code: str = "throttle_error"
    status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(ThrottleError):
    """Raised when a throttle rule option is invalid.

    Example:
        raise ConfigurationError(
            "Invalid throttle configuration",
            errors=[{"field": "limit", "message": "must be positive"}],
        )
    """

    message = "Invalid throttle configuration"
    error_code = "configuration_error"
    status_code = 500

    def __init__(
        self,
        message: str | None = None,
        errors: list[dict[str, Any]] | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if errors:
            details["errors"] = errors
        super().__init__(message=message, details=details, **kwargs)


class CounterStoreError(ThrottleError):
    """Raised when the counter store cannot be reached or fails a command.

    Example:
        raise CounterStoreError("Redis INCR failed", details={"operation": "incr"})
    """

    message = "Counter store unavailable"
    error_code = "counter_store_unavailable"
    status_code = 503


class RateLimitError(ThrottleError):
    """Raised by fallback handlers that answer a throttled request.

    Example:
        raise RateLimitError(details={"limit": 100, "period": 60})
    """

    message = "Rate limit exceeded. Please slow down."
    error_code = "rate_limit_exceeded"
    status_code = 429
