"""FastAPI dependencies for routes that report throttle usage."""

from typing import Annotated

from fastapi import Depends, Request

from throttle.config import settings
from throttle.core.errors import ConfigurationError
from throttle.core.rate_limit.engine import ThrottleEngine
from throttle.core.rate_limit.keys import RequestContext


def get_throttle_engine(request: Request) -> ThrottleEngine:
    """Return the engine the host registered on ``app.state.throttle_engine``.

    Raises:
        ConfigurationError: If the host registered no engine
    """
    engine = getattr(request.app.state, "throttle_engine", None)
    if not isinstance(engine, ThrottleEngine):
        raise ConfigurationError("No throttle engine registered on app.state")
    return engine


def get_request_context(request: Request) -> RequestContext:
    """Build the throttle context for the current request."""
    trusted_proxies = getattr(
        request.app.state, "trusted_proxies", settings.trusted_proxies
    )
    return RequestContext.from_request(request, trusted_proxies)


# Type aliases for dependency injection
Throttle = Annotated[ThrottleEngine, Depends(get_throttle_engine)]
ThrottleContext = Annotated[RequestContext, Depends(get_request_context)]
