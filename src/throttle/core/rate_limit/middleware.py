"""Throttling middleware.

Asks the engine for a verdict once per request, before routing. A
throttled request is routed to the fallback handler instead of the one
it asked for; everything else passes through untouched.
"""

from collections.abc import Collection
from typing import TYPE_CHECKING, ClassVar

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import NoMatchFound

from throttle.core.errors import CounterStoreError, RateLimitError, problem_response
from throttle.core.rate_limit.engine import ThrottleEngine
from throttle.core.rate_limit.keys import RequestContext


if TYPE_CHECKING:
    from starlette.types import ASGIApp


logger = structlog.get_logger()


async def intercept(engine: ThrottleEngine, context: RequestContext) -> str | None:
    """Run the throttle check for one request.

    Call exactly once per request, before the handler is selected.

    Args:
        engine: The host application's throttle engine
        context: The request being dispatched

    Returns:
        Name of the handler that must serve the request, or None to
        dispatch normally
    """
    return await engine.evaluate_and_record(context)


class ThrottleMiddleware(BaseHTTPMiddleware):
    """Middleware that reroutes throttled requests to the fallback route.

    The fallback is looked up by route name, so the engine's ``exceeded``
    option must match the ``name`` of a registered route. If it matches
    none, throttled requests get a plain 429 problem response.
    """

    # Paths to exclude from throttling
    EXCLUDED_PATHS: ClassVar[set[str]] = {
        "/health/live",
        "/health/ready",
        "/docs",
        "/redoc",
        "/openapi.json",
    }

    def __init__(
        self,
        app: "ASGIApp",
        engine: ThrottleEngine,
        exclude_paths: Collection[str] | None = None,
        trusted_proxies: Collection[str] | None = None,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: The ASGI application
            engine: Engine deciding each request's verdict
            exclude_paths: Paths never throttled (default: health and docs)
            trusted_proxies: Peers whose X-Forwarded-For header is honoured
        """
        super().__init__(app)
        self.engine = engine
        self.exclude_paths = (
            set(exclude_paths) if exclude_paths is not None else self.EXCLUDED_PATHS
        )
        self.trusted_proxies = frozenset(trusted_proxies or ())

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Throttle the request, rerouting it when over the limit.

        Args:
            request: Incoming HTTP request
            call_next: Next middleware/handler in chain

        Returns:
            Response from the requested or the fallback handler, or a 503
            problem response when the store fails and the engine fails closed
        """
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        context = RequestContext.from_request(request, self.trusted_proxies)
        try:
            handler = await intercept(self.engine, context)
        except CounterStoreError as exc:
            # Only raised when failing closed. Exception handlers run inside
            # this middleware and never see it
            return problem_response(exc, instance=request.url.path)

        if handler is None:
            return await call_next(request)

        request.state.throttled = True

        try:
            fallback_path = str(request.app.url_path_for(handler))
        except NoMatchFound:
            logger.warning("throttle_fallback_missing", handler=handler)
            rule = self.engine.rule
            return problem_response(
                RateLimitError(details={"limit": rule.limit, "period": rule.period}),
                instance=request.url.path,
                headers={"Retry-After": str(rule.period)},
            )

        request.scope["path"] = fallback_path
        request.scope["raw_path"] = fallback_path.encode("utf-8")
        return await call_next(request)
