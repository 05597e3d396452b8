"""Fixed-window request throttling for ASGI applications."""

from throttle.core.rate_limit import (
    CounterStore,
    MemoryCounterStore,
    RedisCounterStore,
    RequestContext,
    ThrottleEngine,
    ThrottleMiddleware,
    intercept,
)


__version__ = "0.1.0"

__all__ = [
    "CounterStore",
    "MemoryCounterStore",
    "RedisCounterStore",
    "RequestContext",
    "ThrottleEngine",
    "ThrottleMiddleware",
    "__version__",
    "intercept",
]
