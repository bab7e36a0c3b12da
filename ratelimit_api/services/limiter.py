"""Fixed-window rate limiter built on a pluggable counter store.

Each key owns exactly one active window: the first request creates a counter
whose TTL is the window length, later requests increment it without touching
the TTL, and the window ends when the store expires the counter.
"""

from __future__ import annotations

import asyncio
import zlib
from dataclasses import dataclass

from ratelimit_api.adapters.rate_limit.base import CounterStore

DEFAULT_LOCK_STRIPES = 64


@dataclass(frozen=True)
class LimitDecision:
    """Outcome of a single ``check`` call.

    Attributes:
        allowed: Whether the request is admitted.
        limit: Max requests per window.
        remaining: Requests left in the current window (0 when rejected).
        reset_seconds: Seconds until the window's counter expires (never negative).
        count: Count observed after this request was recorded.
        window_seconds: Window length the decision was computed for.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int
    count: int
    window_seconds: int


class FixedWindowLimiter:
    """Turns store counts into admit/reject decisions plus quota telemetry.

    The limiter holds a reference to the store interface only. Read, create and
    increment for one key are serialized inside this instance so concurrent
    first requests cannot both create the counter.
    """

    def __init__(self, store: CounterStore, *, lock_stripes: int = DEFAULT_LOCK_STRIPES) -> None:
        if lock_stripes < 1:
            raise ValueError("lock_stripes must be >= 1")
        self._store = store
        self._lock_stripes = lock_stripes
        self._locks: list[asyncio.Lock] = []
        self._locks_loop: asyncio.AbstractEventLoop | None = None

    @property
    def store(self) -> CounterStore:
        return self._store

    async def check(self, key: str, limit: int, window_seconds: int) -> LimitDecision:
        """Record one request for ``key`` and decide whether it is allowed.

        Not idempotent: every call consumes one unit of the window's quota,
        including rejected calls. Backend errors propagate unchanged.

        Args:
            key: Limiting key; it must already encode the isolated scope
                (identity, or identity + route).
            limit: Max requests per window. 0 rejects everything.
            window_seconds: Window length. Values <= 0 are not stored, so each
                call behaves like the first request of a new window.

        Returns:
            LimitDecision with telemetry ready to surface to clients.
        """
        async with self._lock_for(key):
            current = await self._store.get(key)
            if not current:
                await self._store.set(key, 1, window_seconds)
                count = 1
            else:
                count = await self._store.increment(key)

        ttl = await self._store.ttl(key)
        allowed = count <= limit

        return LimitDecision(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - count) if allowed else 0,
            reset_seconds=max(0, ttl),
            count=count,
            window_seconds=window_seconds,
        )

    async def close(self) -> None:
        """Release the underlying store's resources."""
        await self._store.destroy()

    def _lock_for(self, key: str) -> asyncio.Lock:
        # asyncio locks are bound to the loop that first waits on them
        loop = asyncio.get_running_loop()
        if self._locks_loop is not loop:
            self._locks = [asyncio.Lock() for _ in range(self._lock_stripes)]
            self._locks_loop = loop
        return self._locks[zlib.crc32(key.encode()) % self._lock_stripes]
