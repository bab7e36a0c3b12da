"""In-process counter store with lazy and sweeper-driven expiry.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: one lock guards the map for request-path operations and the
  background sweep alike.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from ratelimit_api.adapters.rate_limit.base import CounterStore, parse_count

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_INTERVAL_SECONDS = 300.0
DEFAULT_TTL_SECONDS = 3600


@dataclass
class CounterEntry:
    """Stored counter value with its absolute expiry (clock seconds)."""

    value: str
    expires_at: float


def _is_expired(entry: CounterEntry, now: float) -> bool:
    return now > entry.expires_at


class InMemoryCounterStore(CounterStore):
    """Counter store backed by a dict, for single-process deployments.

    Expired entries are treated as absent on every read and removed there;
    a daemon sweeper thread removes the ones that are never read again.

    Important:
        Each worker process holds its own counters. Use the Redis store when
        several workers or instances must share one budget.
    """

    backend_name = "memory"

    def __init__(
        self,
        *,
        cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the store and start the background sweeper.

        Args:
            cleanup_interval_seconds: Delay between two sweeps.
            default_ttl_seconds: TTL given to counters created by ``increment``
                when no live entry exists.
            clock: Time source returning seconds.

        Raises:
            ValueError: If the interval or default TTL are not positive.
        """
        if cleanup_interval_seconds <= 0:
            raise ValueError("cleanup_interval_seconds must be > 0")
        if default_ttl_seconds < 1:
            raise ValueError("default_ttl_seconds must be >= 1")

        self._cleanup_interval = cleanup_interval_seconds
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, CounterEntry] = {}

        self._stop_event = threading.Event()
        self._sweeper: threading.Thread | None = threading.Thread(
            target=self._sweep_loop,
            name="counter-store-sweeper",
            daemon=True,
        )
        self._sweeper.start()

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryCounterStore(entries={len(self._entries)}, "
            f"cleanup_interval_seconds={self._cleanup_interval}, "
            f"default_ttl_seconds={self._default_ttl})"
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __enter__(self) -> "InMemoryCounterStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    async def get(self, key: str) -> int | None:
        with self._lock:
            entry = self._live_entry_locked(key, self._clock())
            if entry is None:
                return None
            return parse_count(entry.value)

    async def set(self, key: str, value: int | str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            logger.debug(
                "counter_store.set_skipped",
                extra={"reason": "non_positive_ttl", "ttl_s": ttl_seconds},
            )
            return

        with self._lock:
            self._entries[key] = CounterEntry(
                value=str(value),
                expires_at=self._clock() + ttl_seconds,
            )

    async def increment(self, key: str) -> int:
        with self._lock:
            now = self._clock()
            entry = self._live_entry_locked(key, now)

            if entry is None:
                self._entries[key] = CounterEntry(value="1", expires_at=now + self._default_ttl)
                logger.warning(
                    "counter_store.increment_fallback",
                    extra={"ttl_s": self._default_ttl},
                )
                return 1

            new_value = parse_count(entry.value) + 1
            entry.value = str(new_value)
            return new_value

    async def ttl(self, key: str) -> int:
        with self._lock:
            now = self._clock()
            entry = self._live_entry_locked(key, now)
            if entry is None:
                return -1
            return math.ceil(entry.expires_at - now)

    def sweep(self) -> int:
        """Remove every expired entry now.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            now = self._clock()
            expired_keys = [k for k, entry in self._entries.items() if _is_expired(entry, now)]
            for key in expired_keys:
                del self._entries[key]
            remaining = len(self._entries)

        if expired_keys:
            logger.debug(
                "counter_store.sweep",
                extra={"removed": len(expired_keys), "entries": remaining},
            )
        return len(expired_keys)

    def close(self) -> None:
        """Stop the sweeper and drop all counters. Idempotent."""
        self._stop_event.set()
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None and sweeper is not threading.current_thread():
            sweeper.join(timeout=self._cleanup_interval + 1)

        with self._lock:
            self._entries.clear()

    async def destroy(self) -> None:
        self.close()

    def _live_entry_locked(self, key: str, now: float) -> CounterEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if _is_expired(entry, now):
            del self._entries[key]
            return None
        return entry

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self._cleanup_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("counter_store.sweep_failed")
