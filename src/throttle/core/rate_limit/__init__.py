"""Fixed-window request throttling.

Counts requests per client identity in a counter store and reroutes
clients that exceed their limit to a fallback handler.
"""

from throttle.core.rate_limit.digest import window_digest, window_index
from throttle.core.rate_limit.engine import ThrottleEngine, ThrottleRule
from throttle.core.rate_limit.keys import (
    IdentityAttribute,
    IdentityAttributes,
    KeyBuilder,
    RequestContext,
    default_key_builder,
)
from throttle.core.rate_limit.middleware import ThrottleMiddleware, intercept
from throttle.core.rate_limit.store import (
    CounterStore,
    MemoryCounterStore,
    RedisCounterStore,
)


__all__ = [
    "CounterStore",
    "IdentityAttribute",
    "IdentityAttributes",
    "KeyBuilder",
    "MemoryCounterStore",
    "RedisCounterStore",
    "RequestContext",
    "ThrottleEngine",
    "ThrottleMiddleware",
    "ThrottleRule",
    "default_key_builder",
    "intercept",
    "window_digest",
    "window_index",
]
