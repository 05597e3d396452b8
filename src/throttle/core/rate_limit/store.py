"""Counter stores for fixed-window request counts.

The engine needs an atomic increment, a TTL it sets once per window,
and a plain read for usage reports. Redis provides all three natively
(INCR, EXPIRE, GET).
"""

import asyncio
import heapq
import time
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any, Protocol, runtime_checkable

import redis.asyncio as redis
from redis.exceptions import RedisError

from throttle.core.cache.redis import redis_client
from throttle.core.errors import CounterStoreError


@runtime_checkable
class CounterStore(Protocol):
    """Atomic counter service backing the throttle engine."""

    async def increment_and_get(self, key: str) -> int:
        """Increment ``key`` by one, creating it at 1, and return the new value."""
        ...

    async def expire_after(self, key: str, seconds: int) -> None:
        """Expire ``key`` after ``seconds``."""
        ...

    async def current(self, key: str) -> int:
        """Return the value of ``key`` without changing it, 0 if missing."""
        ...


class RedisCounterStore:
    """Redis-backed counter store.

    Uses an injected client when given one, otherwise borrows a client
    from the shared connection pool for each command. Redis failures are
    raised as ``CounterStoreError``.
    """

    def __init__(
        self,
        client: "redis.Redis[Any] | None" = None,
        *,
        owns_client: bool = False,
    ) -> None:
        """Initialize the store.

        Args:
            client: Redis client to use instead of the shared pool
            owns_client: Close ``client`` when the store is closed
        """
        self._client = client
        self._owns_client = owns_client

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        """Create a store with its own client for ``url``."""
        return cls(
            redis.Redis.from_url(url, decode_responses=True), owns_client=True
        )

    async def aclose(self) -> None:
        """Close the client if this store created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()

    @asynccontextmanager
    async def _connection(self) -> "AsyncGenerator[redis.Redis[Any], None]":
        if self._client is not None:
            yield self._client
        else:
            async with redis_client() as client:
                yield client

    async def increment_and_get(self, key: str) -> int:
        try:
            async with self._connection() as client:
                return int(await client.incr(key))
        except RedisError as exc:
            raise CounterStoreError(
                "Redis INCR failed", details={"operation": "incr"}
            ) from exc

    async def expire_after(self, key: str, seconds: int) -> None:
        try:
            async with self._connection() as client:
                await client.expire(key, seconds)
        except RedisError as exc:
            raise CounterStoreError(
                "Redis EXPIRE failed", details={"operation": "expire"}
            ) from exc

    async def current(self, key: str) -> int:
        try:
            async with self._connection() as client:
                value = await client.get(key)
        except RedisError as exc:
            raise CounterStoreError(
                "Redis GET failed", details={"operation": "get"}
            ) from exc
        return int(value) if value is not None else 0


class MemoryCounterStore:
    """In-process counter store.

    Suitable for a single worker and for tests. Expired counters are
    swept on every increment, so memory stays bounded by the keys live
    in the current window.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        """Initialize the store.

        Args:
            clock: Source of the current unix time
        """
        self._clock = clock
        self._counts: dict[str, int] = {}
        self._expires_at: dict[str, float] = {}
        # Min-heap of (expires_at, key); entries may be stale
        self._expiry_heap: list[tuple[float, str]] = []
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._counts)

    def _evict_if_expired(self, key: str) -> None:
        expires_at = self._expires_at.get(key)
        if expires_at is not None and self._clock() >= expires_at:
            self._counts.pop(key, None)
            self._expires_at.pop(key, None)

    def _sweep_expired(self) -> None:
        now = self._clock()
        while self._expiry_heap and self._expiry_heap[0][0] <= now:
            expires_at, key = heapq.heappop(self._expiry_heap)
            if self._expires_at.get(key) == expires_at:
                self._counts.pop(key, None)
                self._expires_at.pop(key, None)

    async def increment_and_get(self, key: str) -> int:
        async with self._lock:
            self._sweep_expired()
            self._evict_if_expired(key)
            self._counts[key] = self._counts.get(key, 0) + 1
            return self._counts[key]

    async def expire_after(self, key: str, seconds: int) -> None:
        async with self._lock:
            self._evict_if_expired(key)
            # Like Redis EXPIRE, a missing key is left alone
            if key in self._counts:
                expires_at = self._clock() + seconds
                self._expires_at[key] = expires_at
                heapq.heappush(self._expiry_heap, (expires_at, key))

    async def current(self, key: str) -> int:
        async with self._lock:
            self._evict_if_expired(key)
            return self._counts.get(key, 0)

    def clear(self) -> None:
        """Drop every counter."""
        self._counts.clear()
        self._expires_at.clear()
        self._expiry_heap.clear()
