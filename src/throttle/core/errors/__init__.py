"""Error handling module with RFC 7807 Problem Details."""

from throttle.core.errors.exceptions import (
    ConfigurationError,
    CounterStoreError,
    RateLimitError,
    ThrottleError,
)
from throttle.core.errors.handlers import (
    ProblemDetail,
    problem_response,
    register_exception_handlers,
)


__all__ = [
    "ConfigurationError",
    "CounterStoreError",
    "ProblemDetail",
    "RateLimitError",
    "ThrottleError",
    "problem_response",
    "register_exception_handlers",
]
