"""Counter store adapters.

This package provides the storage abstraction behind the fixed-window
limiter: an in-process store for single workers and a Redis adapter for
deployments that share counters, selected by configuration.
"""

from ratelimit_api.adapters.rate_limit.base import CounterStore
from ratelimit_api.adapters.rate_limit.factory import create_counter_store
from ratelimit_api.adapters.rate_limit.in_memory import InMemoryCounterStore
from ratelimit_api.adapters.rate_limit.redis_store import RedisCounterStore

__all__ = [
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "create_counter_store",
]
