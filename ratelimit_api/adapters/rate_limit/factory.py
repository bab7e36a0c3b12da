"""Factory pattern for creating counter store instances."""

from ratelimit_api.adapters.rate_limit.base import CounterStore
from ratelimit_api.adapters.rate_limit.in_memory import InMemoryCounterStore
from ratelimit_api.adapters.rate_limit.redis_store import RedisCounterStore
from ratelimit_api.core.config import RateLimitSettings, settings
from ratelimit_api.core.errors import ValidationAppError


def create_counter_store(rate_limit_settings: RateLimitSettings | None = None) -> CounterStore:
    """Factory function to instantiate the configured counter store.

    Reads configuration from ratelimit_api.core.config.settings unless explicit
    settings are passed.

    Returns:
        CounterStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend name is not supported.
    """
    cfg = rate_limit_settings or settings.rate_limit
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryCounterStore(
            cleanup_interval_seconds=cfg.cleanup_interval_seconds,
            default_ttl_seconds=cfg.default_ttl_seconds,
        )

    if backend == "redis":
        return RedisCounterStore.from_url(
            cfg.redis_url,
            timeout_seconds=cfg.redis_timeout_seconds,
        )

    raise ValidationAppError(
        code="rate_limit_unknown_backend",
        message=f"Unknown counter store backend: '{backend}'. Supported backends: memory, redis",
    )
