"""Tests for the throttle engine."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.fakes import FakeClock, RecordingStore
from throttle.config import Settings
from throttle.core.errors import ConfigurationError, CounterStoreError
from throttle.core.rate_limit.digest import window_digest
from throttle.core.rate_limit.engine import ThrottleEngine, ThrottleRule
from throttle.core.rate_limit.keys import RequestContext


def failing_store() -> MagicMock:
    """Create a store whose every call fails."""
    store = MagicMock()
    store.increment_and_get = AsyncMock(side_effect=CounterStoreError("down"))
    store.expire_after = AsyncMock()
    store.current = AsyncMock(side_effect=CounterStoreError("down"))
    return store


class TestThrottleRule:
    """Tests for ThrottleRule defaults."""

    def test_defaults(self):
        """Verify the default rule."""
        rule = ThrottleRule()
        assert rule.limit == 100
        assert rule.period == 60
        assert rule.exceeded == "slow_down"
        assert rule.prefix == "THROTTLE"


class TestConfigure:
    """Tests for ThrottleEngine.configure."""

    def test_overrides_only_supplied_options(self):
        """Verify unset options keep their previous values."""
        engine = ThrottleEngine()

        engine.configure(limit=5)
        engine.configure(exceeded="too_fast")

        assert engine.rule.limit == 5
        assert engine.rule.period == 60
        assert engine.rule.exceeded == "too_fast"
        assert engine.rule.prefix == "THROTTLE"

    def test_sets_store_and_key_builder(self, store: RecordingStore):
        """Verify non-rule options can be configured."""
        engine = ThrottleEngine()

        def builder(context):
            return [("tenant_id", "1")]

        engine.configure(store=store, key_builder=builder, fail_open=False)

        assert engine.store is store
        assert engine.key_builder is builder
        assert engine.fail_open is False

    @pytest.mark.parametrize(
        "options",
        [{"limit": 0}, {"period": -5}, {"exceeded": ""}],
    )
    def test_invalid_options_raise(self, options):
        """Verify invalid rule options are rejected."""
        engine = ThrottleEngine()

        with pytest.raises(ConfigurationError) as exc_info:
            engine.configure(**options)

        assert exc_info.value.details["errors"]

    def test_invalid_options_leave_rule_unchanged(self):
        """Verify a rejected configure applies nothing."""
        engine = ThrottleEngine(limit=10)

        with pytest.raises(ConfigurationError):
            engine.configure(limit=20, period=0)

        assert engine.rule.limit == 10
        assert engine.rule.period == 60

    def test_from_settings(self, store: RecordingStore):
        """Verify settings map onto the rule."""
        settings = Settings(
            _env_file=None,
            throttle_limit=7,
            throttle_period=30,
            throttle_prefix="shop",
            throttle_exceeded="busy",
            throttle_fail_open=False,
        )

        engine = ThrottleEngine.from_settings(settings, store=store)

        assert engine.rule == ThrottleRule(
            limit=7, period=30, exceeded="busy", prefix="shop"
        )
        assert engine.store is store
        assert engine.fail_open is False


class TestIdentity:
    """Tests for identity derivation."""

    def test_default_builder_gets_prefix_first(self, engine, context):
        """Verify the configured prefix leads the default attributes."""
        assert engine.identity(context) == [
            ("prefix", "test"),
            ("remote_user", None),
            ("remote_addr", "203.0.113.7"),
            ("http_user_agent", "Mozilla/5.0 (X11; Linux x86_64)"),
        ]

    def test_custom_builder_gets_prefix_prepended(self, context):
        """Verify a builder without a prefix attribute is namespaced."""
        engine = ThrottleEngine(
            prefix="X", key_builder=lambda ctx: [("tenant_id", "1234")]
        )

        assert engine.identity(context) == [("prefix", "X"), ("tenant_id", "1234")]

    def test_custom_prefix_attribute_is_kept(self, context):
        """Verify a builder-supplied prefix is not overridden."""
        engine = ThrottleEngine(
            prefix="X",
            key_builder=lambda ctx: [("tenant_id", "1234"), ("prefix", "Y")],
        )

        assert engine.identity(context) == [("tenant_id", "1234"), ("prefix", "Y")]

    @pytest.mark.parametrize("skip", [None, [None]])
    def test_skip_sentinel_returns_none(self, context, skip):
        """Verify None and [None] both mean 'do not throttle'."""
        engine = ThrottleEngine(key_builder=lambda ctx: skip)

        assert engine.identity(context) is None

    def test_none_entries_in_longer_list_are_dropped(self, context):
        """Verify stray None entries do not reach the identity."""
        engine = ThrottleEngine(
            prefix="X", key_builder=lambda ctx: [None, ("tenant_id", "1"), None]
        )

        assert engine.identity(context) == [("prefix", "X"), ("tenant_id", "1")]

    def test_builder_receives_context(self, context):
        """Verify the builder is called with the request context."""
        builder = MagicMock(return_value=[("path", "/x")])
        engine = ThrottleEngine(key_builder=builder)

        engine.identity(context)

        builder.assert_called_once_with(context)

    def test_builder_errors_propagate(self, context):
        """Verify a failing builder is not swallowed."""

        def broken(ctx):
            raise RuntimeError("tenant lookup failed")

        engine = ThrottleEngine(key_builder=broken)

        with pytest.raises(RuntimeError):
            engine.identity(context)


class TestEvaluateAndRecord:
    """Tests for ThrottleEngine.evaluate_and_record."""

    @pytest.mark.asyncio
    async def test_limit_two_scenario(self, engine, context):
        """Verify pass, pass, then throttled within one window."""
        engine.configure(limit=2, period=60)

        verdicts = [await engine.evaluate_and_record(context) for _ in range(3)]

        assert verdicts == [None, None, "slow_down"]

    @pytest.mark.asyncio
    async def test_counter_resets_after_window_boundary(
        self, engine, context, clock: FakeClock
    ):
        """Verify a request in the next window is not throttled."""
        engine.configure(limit=2, period=60)

        await engine.evaluate_and_record(context)
        await engine.evaluate_and_record(context)
        clock.advance(60)

        assert await engine.evaluate_and_record(context) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [1, 3, 10])
    async def test_first_throttled_request_is_limit_plus_one(
        self, engine, context, limit
    ):
        """Verify the limit-th request passes and the next is throttled."""
        engine.configure(limit=limit)

        verdicts = [
            await engine.evaluate_and_record(context) for _ in range(limit + 1)
        ]

        assert verdicts[:limit] == [None] * limit
        assert verdicts[limit] == "slow_down"

    @pytest.mark.asyncio
    async def test_expire_set_once_per_window(
        self, engine, context, store: RecordingStore, clock: FakeClock
    ):
        """Verify only the request opening a window sets its expiry."""
        engine.configure(limit=3, period=60)

        for _ in range(5):
            await engine.evaluate_and_record(context)
        clock.advance(60)
        await engine.evaluate_and_record(context)

        keys = [key for key, _seconds in store.expire_calls]
        assert len(keys) == 2
        assert len(set(keys)) == 2
        assert all(seconds == 60 for _key, seconds in store.expire_calls)

    @pytest.mark.asyncio
    async def test_counter_key_is_window_digest_of_identity(
        self, engine, context, store: RecordingStore, clock: FakeClock
    ):
        """Verify the store is keyed by the digest of the prefixed identity."""
        await engine.evaluate_and_record(context)

        expected = window_digest(engine.identity(context), 60, now=clock())
        assert store.incremented_keys == [expected]

    @pytest.mark.asyncio
    async def test_distinct_clients_counted_separately(self, engine):
        """Verify different identities have separate counters."""
        engine.configure(limit=1)
        alice = RequestContext(remote_user="alice", remote_addr="10.0.0.1")
        bob = RequestContext(remote_user="bob", remote_addr="10.0.0.1")

        assert await engine.evaluate_and_record(alice) is None
        assert await engine.evaluate_and_record(bob) is None
        assert await engine.evaluate_and_record(alice) == "slow_down"

    @pytest.mark.asyncio
    async def test_engines_with_different_prefixes_do_not_collide(
        self, store: RecordingStore, clock: FakeClock, context
    ):
        """Verify two engines sharing a store keep separate counts."""
        first = ThrottleEngine(store=store, clock=clock, prefix="one", limit=1)
        second = ThrottleEngine(store=store, clock=clock, prefix="two", limit=1)

        assert await first.evaluate_and_record(context) is None
        assert await second.evaluate_and_record(context) is None

    @pytest.mark.asyncio
    async def test_skip_sentinel_never_throttles(
        self, store: RecordingStore, clock: FakeClock, context
    ):
        """Verify skipped requests are never counted or throttled."""
        engine = ThrottleEngine(
            store=store, clock=clock, limit=1, key_builder=lambda ctx: [None]
        )

        verdicts = [await engine.evaluate_and_record(context) for _ in range(5)]

        assert verdicts == [None] * 5
        assert store.incremented_keys == []

    @pytest.mark.asyncio
    async def test_no_store_fails_open(self, context):
        """Verify nothing is throttled without a store."""
        engine = ThrottleEngine(limit=1)

        verdicts = [await engine.evaluate_and_record(context) for _ in range(3)]

        assert verdicts == [None, None, None]

    @pytest.mark.asyncio
    async def test_store_error_fails_open_by_default(self, context):
        """Verify a store failure lets the request through."""
        engine = ThrottleEngine(store=failing_store(), limit=1)

        assert await engine.evaluate_and_record(context) is None

    @pytest.mark.asyncio
    async def test_store_error_raises_when_fail_closed(self, context):
        """Verify a store failure propagates with fail_open disabled."""
        engine = ThrottleEngine(store=failing_store(), fail_open=False)

        with pytest.raises(CounterStoreError):
            await engine.evaluate_and_record(context)

    @pytest.mark.asyncio
    async def test_builder_error_propagates(self, store: RecordingStore, context):
        """Verify a failing key builder reaches the caller."""

        def broken(ctx):
            raise KeyError("tenant")

        engine = ThrottleEngine(store=store, key_builder=broken)

        with pytest.raises(KeyError):
            await engine.evaluate_and_record(context)


class TestCount:
    """Tests for ThrottleEngine.count."""

    @pytest.mark.asyncio
    async def test_fresh_identity_counts_zero(self, engine, context):
        """Verify a new client has used nothing."""
        assert await engine.count(context) == (0, 100)

    @pytest.mark.asyncio
    async def test_counts_recorded_requests(self, engine, context):
        """Verify count reflects requests without adding one."""
        await engine.evaluate_and_record(context)
        await engine.evaluate_and_record(context)

        assert await engine.count(context) == (2, 100)
        assert await engine.count(context) == (2, 100)

    @pytest.mark.asyncio
    async def test_count_resets_with_window(self, engine, context, clock: FakeClock):
        """Verify the next window starts from zero."""
        await engine.evaluate_and_record(context)
        clock.advance(60)

        assert await engine.count(context) == (0, 100)

    @pytest.mark.asyncio
    async def test_no_store_counts_zero(self, context):
        """Verify count is zero without a store."""
        engine = ThrottleEngine(limit=5)

        assert await engine.count(context) == (0, 5)

    @pytest.mark.asyncio
    async def test_skipped_request_counts_zero(self, store: RecordingStore, context):
        """Verify a skipped identity reports zero."""
        engine = ThrottleEngine(store=store, key_builder=lambda ctx: None)

        assert await engine.count(context) == (0, 100)

    @pytest.mark.asyncio
    async def test_store_error_counts_zero_when_failing_open(self, context):
        """Verify count falls back to zero on store failure."""
        engine = ThrottleEngine(store=failing_store(), limit=3)

        assert await engine.count(context) == (0, 3)

    @pytest.mark.asyncio
    async def test_store_error_raises_when_fail_closed(self, context):
        """Verify count propagates store failures with fail_open disabled."""
        engine = ThrottleEngine(store=failing_store(), fail_open=False)

        with pytest.raises(CounterStoreError):
            await engine.count(context)
