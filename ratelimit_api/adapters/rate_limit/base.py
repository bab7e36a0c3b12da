"""Counter store interface.

The limiter depends on this abstraction (never on a concrete implementation)
so the storage backend can be swapped (in-process memory, Redis) by
configuration alone.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


def parse_count(raw: Any) -> int:
    """Interpret a stored counter value as an integer.

    Backends keep counters as text; anything that is not an integer counts as 0.
    """
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 0


class CounterStore(ABC):
    """Interface for key -> counter stores with per-key expiration.

    All operations are coroutines so networked backends can suspend; in-process
    implementations simply never await.

    Attributes:
        backend_errors: Exception types that signal backend I/O failure. They
            are propagated unmodified; integrations may catch them to map to a
            service-unavailable response.
    """

    backend_name: str = "abstract"
    backend_errors: tuple[type[BaseException], ...] = ()

    @abstractmethod
    async def get(self, key: str) -> int | None:
        """Return the live count for ``key`` or None if absent/expired."""
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: int | str, ttl_seconds: int) -> None:
        """Store ``value`` with a TTL. No-op when ``ttl_seconds <= 0``."""
        raise NotImplementedError

    @abstractmethod
    async def increment(self, key: str) -> int:
        """Atomically add 1 to ``key`` without touching its expiry.

        Returns:
            The new count.
        """
        raise NotImplementedError

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Seconds until ``key`` expires, or -1 if there is no live entry."""
        raise NotImplementedError

    async def destroy(self) -> None:
        """Release background resources. Safe to call more than once."""
        return None

    async def __aenter__(self) -> "CounterStore":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.destroy()
