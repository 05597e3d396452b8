"""Fixed-window throttle engine.

Counts requests per client identity in fixed windows of ``period``
seconds and names the fallback handler once a client goes over
``limit`` requests in a window.

The engine holds no per-request state. One instance is configured at
startup and shared by every request.
"""

import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, PositiveInt
from pydantic import ValidationError as PydanticValidationError

from throttle.constants import (
    DEFAULT_EXCEEDED_HANDLER,
    DEFAULT_LIMIT,
    DEFAULT_PERIOD_SECONDS,
    DEFAULT_PREFIX,
    PREFIX_ATTRIBUTE,
)
from throttle.core.errors import ConfigurationError, CounterStoreError
from throttle.core.rate_limit.digest import window_digest
from throttle.core.rate_limit.keys import (
    IdentityAttributes,
    KeyBuilder,
    RequestContext,
    default_key_builder,
)
from throttle.core.rate_limit.store import CounterStore


if TYPE_CHECKING:
    from throttle.config import Settings


logger = structlog.get_logger()


class ThrottleRule(BaseModel):
    """Limit, window length and fallback for one engine."""

    model_config = ConfigDict(frozen=True)

    limit: PositiveInt = DEFAULT_LIMIT
    period: PositiveInt = DEFAULT_PERIOD_SECONDS
    exceeded: str = Field(default=DEFAULT_EXCEEDED_HANDLER, min_length=1)
    prefix: str = DEFAULT_PREFIX


class ThrottleEngine:
    """Decides whether a request is over its client's limit.

    Without a counter store the engine fails open: nothing is throttled
    and every count reads zero.

    Example:
        engine = ThrottleEngine(store=RedisCounterStore())
        engine.configure(limit=10, period=60, exceeded="slow_down")

        handler = await engine.evaluate_and_record(context)
        if handler is not None:
            ...  # serve the fallback handler instead
    """

    def __init__(
        self,
        store: CounterStore | None = None,
        key_builder: KeyBuilder | None = None,
        *,
        limit: int = DEFAULT_LIMIT,
        period: int = DEFAULT_PERIOD_SECONDS,
        exceeded: str = DEFAULT_EXCEEDED_HANDLER,
        prefix: str = DEFAULT_PREFIX,
        fail_open: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Counter store; throttling is inactive without one
            key_builder: Identity derivation (default: user, address, agent)
            limit: Requests allowed per client per window
            period: Window length in seconds
            exceeded: Name of the handler serving throttled requests
            prefix: Namespace prepended to every identity
            fail_open: Let requests through when the store fails
            clock: Source of the current unix time

        Raises:
            ConfigurationError: If a rule option is invalid
        """
        self.store = store
        self.key_builder: KeyBuilder = key_builder or default_key_builder
        self.fail_open = fail_open
        self.clock = clock
        self.rule = _validate_rule(
            {"limit": limit, "period": period, "exceeded": exceeded, "prefix": prefix}
        )

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        store: CounterStore | None = None,
        key_builder: KeyBuilder | None = None,
    ) -> "ThrottleEngine":
        """Create an engine from application settings.

        Args:
            settings: Application settings
            store: Counter store to count with
            key_builder: Optional custom identity derivation

        Returns:
            Configured engine
        """
        engine = cls(
            store=store,
            key_builder=key_builder,
            limit=settings.throttle_limit,
            period=settings.throttle_period,
            exceeded=settings.throttle_exceeded,
            fail_open=settings.throttle_fail_open,
        )
        if settings.throttle_prefix:
            engine.configure(prefix=settings.throttle_prefix)
        return engine

    def configure(
        self,
        *,
        store: CounterStore | None = None,
        limit: int | None = None,
        period: int | None = None,
        prefix: str | None = None,
        exceeded: str | None = None,
        key_builder: KeyBuilder | None = None,
        fail_open: bool | None = None,
    ) -> None:
        """Override any subset of the engine's options.

        Options left as ``None`` keep their current value, so this may be
        called repeatedly. Rule options are validated together; if any is
        invalid none of them is applied.

        Raises:
            ConfigurationError: If a rule option is invalid
        """
        changes: dict[str, Any] = {
            name: value
            for name, value in (
                ("limit", limit),
                ("period", period),
                ("prefix", prefix),
                ("exceeded", exceeded),
            )
            if value is not None
        }
        if changes:
            self.rule = _validate_rule({**self.rule.model_dump(), **changes})

        if store is not None:
            self.store = store
        if key_builder is not None:
            self.key_builder = key_builder
        if fail_open is not None:
            self.fail_open = fail_open

    def identity(self, context: RequestContext) -> IdentityAttributes | None:
        """Return the identity attributes for a request.

        The configured prefix is prepended unless the key builder already
        supplied a ``prefix`` attribute, so engines sharing one store never
        share counters.

        Returns:
            Ordered attributes, or None when the request must not be throttled
        """
        attributes = self.key_builder(context)

        if attributes is None:
            return None
        attributes = list(attributes)
        if len(attributes) == 1 and attributes[0] is None:
            return None

        identity: IdentityAttributes = [
            attribute for attribute in attributes if attribute is not None
        ]
        if not any(name == PREFIX_ATTRIBUTE for name, _value in identity):
            identity.insert(0, (PREFIX_ATTRIBUTE, self.rule.prefix))
        return identity

    def counter_key(self, identity: IdentityAttributes) -> str:
        """Return the counter key for an identity in the current window."""
        return window_digest(identity, self.rule.period, now=self.clock())

    async def count(self, context: RequestContext) -> tuple[int, int]:
        """Report the client's usage in the current window.

        Does not count as a request.

        Returns:
            Tuple of (requests seen this window, limit)
        """
        rule = self.rule

        if self.store is None:
            return 0, rule.limit

        identity = self.identity(context)
        if identity is None:
            return 0, rule.limit

        try:
            visits = await self.store.current(self.counter_key(identity))
        except CounterStoreError as exc:
            self._on_store_error(exc, operation="count")
            visits = 0

        return visits, rule.limit

    async def evaluate_and_record(self, context: RequestContext) -> str | None:
        """Count a request and decide whether it is over the limit.

        The request that opens a window sets the window's expiry; later
        requests leave it alone so the window does not roll forward.

        Returns:
            The fallback handler name when throttled, otherwise None
        """
        identity = self.identity(context)
        if identity is None:
            logger.debug("throttle_skipped", path=context.path)
            return None

        if self.store is None:
            return None

        rule = self.rule
        key = self.counter_key(identity)

        try:
            current = await self.store.increment_and_get(key)
            if current == 1:
                await self.store.expire_after(key, rule.period)
        except CounterStoreError as exc:
            self._on_store_error(exc, operation="evaluate")
            return None

        if current > rule.limit:
            logger.warning(
                "throttle_exceeded",
                path=context.path,
                count=current,
                limit=rule.limit,
                period=rule.period,
                handler=rule.exceeded,
            )
            return rule.exceeded

        return None

    def _on_store_error(self, exc: CounterStoreError, operation: str) -> None:
        """Log a store failure, re-raising it unless failing open."""
        if not self.fail_open:
            logger.error(
                "throttle_store_error",
                operation=operation,
                error=exc.message,
                fail_open=False,
            )
            raise exc

        logger.warning(
            "throttle_store_error",
            operation=operation,
            error=exc.message,
            fail_open=True,
        )


def _validate_rule(values: dict[str, Any]) -> ThrottleRule:
    """Build a rule, converting validation failures to ConfigurationError."""
    try:
        return ThrottleRule.model_validate(values)
    except PydanticValidationError as exc:
        raise ConfigurationError(
            errors=[
                {
                    "field": ".".join(str(part) for part in error["loc"]),
                    "message": error["msg"],
                }
                for error in exc.errors()
            ]
        ) from exc
