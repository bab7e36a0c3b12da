"""Redis-backed counter store for deployments that share limits.

Every operation maps onto one Redis command (GET, SETEX, INCR, TTL) and relies
on Redis for atomicity and expiry. Connection and timeout failures are not
caught here: they propagate to the limiter's caller as ``redis.RedisError``.
A malformed counter is the one Redis error handled locally (see ``increment``).
"""

from __future__ import annotations

from redis.asyncio import Redis
from redis.exceptions import RedisError, ResponseError

from ratelimit_api.adapters.rate_limit.base import CounterStore, parse_count

# INCR error text for values that are not integers (or would overflow)
_NOT_AN_INTEGER = "not an integer"


class RedisCounterStore(CounterStore):
    """Counter store adapter over an asyncio Redis client."""

    backend_name = "redis"
    backend_errors = (RedisError,)

    def __init__(self, client: Redis, *, owns_client: bool = False) -> None:
        """Wrap an existing client.

        Args:
            client: Connected ``redis.asyncio.Redis`` instance.
            owns_client: Close the client on ``destroy()``. Set by the factory
                when it built the client itself.
        """
        self._client = client
        self._owns_client = owns_client
        self._closed = False

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float = 5.0) -> "RedisCounterStore":
        """Build a store owning a client created from ``url``.

        Socket timeouts are always set so a stalled server surfaces as
        ``redis.TimeoutError`` instead of hanging the request.
        """
        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client, owns_client=True)

    async def get(self, key: str) -> int | None:
        raw = await self._client.get(key)
        if raw is None:
            return None
        return parse_count(raw)

    async def set(self, key: str, value: int | str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        await self._client.setex(key, ttl_seconds, value)

    async def increment(self, key: str) -> int:
        """INCR ``key``; a non-integer value restarts the count at 1.

        The reset keeps the key's remaining TTL (``SET ... KEEPTTL``), so a
        corrupted counter never extends its window.
        """
        try:
            return int(await self._client.incr(key))
        except ResponseError as exc:
            if _NOT_AN_INTEGER not in str(exc):
                raise
        await self._client.set(key, 1, keepttl=True)
        return 1

    async def ttl(self, key: str) -> int:
        # -2: missing key, -1: key without expiry
        seconds = int(await self._client.ttl(key))
        return seconds if seconds >= 0 else -1

    async def destroy(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_client:
            await self._client.aclose()
