"""FastAPI application factory.

Wires the throttle engine into a host application: the middleware
checks every request, ``/usage`` reports the caller's count, and the
fallback route answers throttled requests.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from throttle.config import Settings, settings
from throttle.core.cache import close_redis_pool
from throttle.core.errors import (
    RateLimitError,
    problem_response,
    register_exception_handlers,
)
from throttle.core.logging import configure_logging
from throttle.core.rate_limit import (
    CounterStore,
    KeyBuilder,
    RedisCounterStore,
    ThrottleEngine,
    ThrottleMiddleware,
)
from throttle.core.rate_limit.dependencies import Throttle, ThrottleContext


logger = structlog.get_logger()

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_app(
    app_settings: Settings | None = None,
    store: CounterStore | None = None,
    key_builder: KeyBuilder | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        app_settings: Settings to use (default: environment settings)
        store: Counter store (default: Redis at REDIS_URL, if set)
        key_builder: Optional custom identity derivation

    Returns:
        Configured FastAPI application instance.
    """
    app_settings = app_settings or settings
    configure_logging(app_settings)

    if store is None and app_settings.redis_url is not None:
        store = RedisCounterStore.from_url(str(app_settings.redis_url))

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(
            "application_startup",
            app_name=app_settings.app_name,
            environment=app_settings.environment,
            throttling=store is not None,
        )

        yield

        logger.info("application_shutdown")
        if isinstance(store, RedisCounterStore):
            await store.aclose()
        await close_redis_pool()
        logger.info("redis_closed")

    app = FastAPI(
        title=app_settings.app_name,
        lifespan=lifespan,
    )

    engine = ThrottleEngine.from_settings(
        app_settings, store=store, key_builder=key_builder
    )
    if not app_settings.throttle_prefix:
        # Namespace counters by the host application's type
        engine.configure(prefix=type(app).__name__)

    if store is None:
        logger.warning("throttling_disabled", reason="no counter store configured")

    app.state.throttle_engine = engine
    app.state.trusted_proxies = app_settings.trusted_proxies
    app.add_middleware(
        ThrottleMiddleware,
        engine=engine,
        trusted_proxies=app_settings.trusted_proxies,
    )

    register_exception_handlers(app)
    _register_routes(app, engine)

    return app


def _register_routes(app: FastAPI, engine: ThrottleEngine) -> None:
    """Register the usage and fallback routes."""
    exceeded = engine.rule.exceeded

    @app.get("/usage")
    async def usage(throttle: Throttle, context: ThrottleContext) -> dict[str, int]:
        """Report the caller's requests in the current window."""
        count, limit = await throttle.count(context)
        return {"count": count, "limit": limit, "remaining": max(0, limit - count)}

    @app.api_route(
        f"/{exceeded.replace('_', '-')}",
        methods=ALL_METHODS,
        name=exceeded,
        include_in_schema=False,
    )
    async def slow_down(request: Request, throttle: Throttle) -> JSONResponse:
        """Answer a throttled request."""
        rule = throttle.rule
        return problem_response(
            RateLimitError(details={"limit": rule.limit, "period": rule.period}),
            instance=request.url.path,
            headers={"Retry-After": str(rule.period)},
        )
