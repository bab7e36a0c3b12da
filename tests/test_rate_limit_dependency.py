"""Tests for the FastAPI rate limiting dependencies."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError
from starlette.requests import Request

from ratelimit_api.adapters.rate_limit.redis_store import RedisCounterStore
from ratelimit_api.core import rate_limit
from ratelimit_api.core.config import settings
from ratelimit_api.core.exception_handlers import setup_exception_handlers
from ratelimit_api.core.logging import hash_identifier
from ratelimit_api.core.rate_limit import (
    RateLimit,
    build_global_key,
    enforce_rate_limit,
    get_rate_limiter,
    resolve_client_identity,
    shutdown_rate_limiter,
)
from ratelimit_api.services.limiter import FixedWindowLimiter


@pytest.fixture(autouse=True)
def fresh_limiter(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(settings.app, "api_key_required", False)
    monkeypatch.setattr(settings.rate_limit, "enabled", True)
    monkeypatch.setattr(settings.rate_limit, "backend", "memory")
    monkeypatch.setattr(settings.rate_limit, "requests", 3)
    monkeypatch.setattr(settings.rate_limit, "window_seconds", 60)
    monkeypatch.setattr(settings.rate_limit, "include_headers", True)
    monkeypatch.setattr(settings.rate_limit, "trust_forwarded_headers", True)
    asyncio.run(shutdown_rate_limiter())
    yield
    asyncio.run(shutdown_rate_limiter())


@pytest.fixture
def client() -> TestClient:
    app = FastAPI()
    setup_exception_handlers(app)

    @app.get("/global", dependencies=[Depends(enforce_rate_limit)])
    async def global_route() -> dict:
        return {"ok": True}

    @app.get(
        "/strict",
        dependencies=[Depends(RateLimit(limit=2, window_seconds=30)), Depends(enforce_rate_limit)],
    )
    async def strict_route() -> dict:
        return {"ok": True}

    @app.get("/items/{item_id}", dependencies=[Depends(RateLimit(limit=1, window_seconds=60))])
    async def item_route(item_id: int) -> dict:
        return {"item_id": item_id}

    return TestClient(app)


def _make_request(headers: dict[str, str] | None = None, client_addr=("9.9.9.9", 1234)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client_addr,
    }
    return Request(scope)


class TestGlobalLimit:
    def test_allowed_responses_carry_telemetry(self, client: TestClient) -> None:
        remaining = []
        for _ in range(3):
            resp = client.get("/global")
            assert resp.status_code == 200
            assert resp.headers["X-RateLimit-Limit"] == "3"
            assert resp.headers["X-RateLimit-Reset"] == "60"
            remaining.append(resp.headers["X-RateLimit-Remaining"])

        assert remaining == ["2", "1", "0"]

    def test_rejection_returns_429_with_context(self, client: TestClient) -> None:
        for _ in range(3):
            client.get("/global")

        resp = client.get("/global")

        assert resp.status_code == 429
        assert resp.headers["X-RateLimit-Limit"] == "3"
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        assert resp.headers["X-RateLimit-Reset"] == "60"
        assert resp.headers["Retry-After"] == "60"

        error = resp.json()["error"]
        assert error["code"] == "rate_limit_exceeded"
        assert error["details"] == {"limit": 3, "window": 60, "remaining": 0, "reset": 60}

    def test_disabled_limiter_never_rejects(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "enabled", False)

        for _ in range(5):
            resp = client.get("/global")
            assert resp.status_code == 200
            assert "X-RateLimit-Limit" not in resp.headers

    def test_headers_can_be_disabled(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "include_headers", False)

        assert "X-RateLimit-Limit" not in client.get("/global").headers
        for _ in range(2):
            client.get("/global")

        blocked = client.get("/global")
        assert blocked.status_code == 429
        assert "Retry-After" not in blocked.headers


class TestIdentity:
    def test_forwarded_clients_have_separate_budgets(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "requests", 1)

        assert client.get("/global", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
        assert client.get("/global", headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 200
        assert client.get("/global", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429

    def test_verified_api_keys_have_separate_budgets(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "requests", 1)
        monkeypatch.setattr(settings.app, "api_key_required", True)
        monkeypatch.setattr(settings.app, "api_keys", "k1,k2")

        assert client.get("/global", headers={"X-API-Key": "k1"}).status_code == 200
        assert client.get("/global", headers={"X-API-Key": "k2"}).status_code == 200
        assert client.get("/global", headers={"X-API-Key": "k1"}).status_code == 429

    def test_rotating_unverified_keys_share_the_ip_budget(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "requests", 2)

        statuses = [
            client.get("/global", headers={"X-API-Key": f"k{i}"}).status_code for i in range(4)
        ]

        assert statuses == [200, 200, 429, 429]

    def test_unknown_keys_fall_back_to_ip_when_auth_is_on(
        self, client: TestClient, monkeypatch
    ) -> None:
        monkeypatch.setattr(settings.rate_limit, "requests", 1)
        monkeypatch.setattr(settings.app, "api_key_required", True)
        monkeypatch.setattr(settings.app, "api_keys", "k1")

        assert client.get("/global", headers={"X-API-Key": "made-up-1"}).status_code == 200
        assert client.get("/global", headers={"X-API-Key": "made-up-2"}).status_code == 429
        assert client.get("/global", headers={"X-API-Key": "k1"}).status_code == 200

    def test_untrusted_forwarded_headers_are_ignored(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "requests", 1)
        monkeypatch.setattr(settings.rate_limit, "trust_forwarded_headers", False)

        assert client.get("/global", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
        assert client.get("/global", headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 429

    def test_identity_prefers_hashed_verified_api_key(self, monkeypatch) -> None:
        monkeypatch.setattr(settings.app, "api_key_required", True)
        monkeypatch.setattr(settings.app, "api_keys", "secret-key")
        request = _make_request({"X-Forwarded-For": "1.2.3.4"})

        identity = resolve_client_identity(request, "secret-key")

        assert identity == f"api_key:{hash_identifier('secret-key')}"
        assert "secret-key" not in identity

    @pytest.mark.parametrize(
        ("auth_required", "configured"),
        [(False, "secret-key"), (True, "other-key"), (True, None)],
    )
    def test_identity_ignores_unverified_api_key(
        self, monkeypatch, auth_required: bool, configured: str | None
    ) -> None:
        monkeypatch.setattr(settings.app, "api_key_required", auth_required)
        monkeypatch.setattr(settings.app, "api_keys", configured)
        request = _make_request({"X-Forwarded-For": "1.2.3.4"})

        assert resolve_client_identity(request, "secret-key") == "ip:1.2.3.4"

    @pytest.mark.parametrize(
        ("headers", "expected"),
        [
            ({"X-Forwarded-For": "1.2.3.4, 10.0.0.1"}, "ip:1.2.3.4"),
            ({"X-Real-IP": "5.6.7.8"}, "ip:5.6.7.8"),
            ({"X-Forwarded-For": " , 10.0.0.1", "X-Real-IP": "5.6.7.8"}, "ip:5.6.7.8"),
            ({}, "ip:9.9.9.9"),
        ],
    )
    def test_identity_from_ip_headers(self, headers: dict, expected: str) -> None:
        assert resolve_client_identity(_make_request(headers), None) == expected

    def test_identity_defaults_to_loopback(self) -> None:
        assert resolve_client_identity(_make_request(client_addr=None), None) == "ip:127.0.0.1"

    def test_global_key_uses_prefix(self, monkeypatch) -> None:
        monkeypatch.setattr(settings.rate_limit, "key_prefix", "rl")

        assert build_global_key("ip:1.2.3.4") == "rl:ip:1.2.3.4"


class TestRouteLimit:
    def test_route_limit_overrides_global(self, client: TestClient) -> None:
        first = client.get("/strict")
        assert first.headers["X-RateLimit-Limit"] == "2"
        assert first.headers["X-RateLimit-Reset"] == "30"

        assert client.get("/strict").status_code == 200
        blocked = client.get("/strict")
        assert blocked.status_code == 429
        assert blocked.json()["error"]["details"]["window"] == 30

        # The global budget was not consumed by /strict
        resp = client.get("/global")
        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Remaining"] == "2"

    def test_app_level_global_limit_shadows_route_limits(self) -> None:
        app = FastAPI(dependencies=[Depends(enforce_rate_limit)])
        setup_exception_handlers(app)

        @app.get("/once", dependencies=[Depends(RateLimit(limit=1, window_seconds=60))])
        async def once_route() -> dict:
            return {"ok": True}

        client = TestClient(app)
        responses = [client.get("/once") for _ in range(2)]

        assert [r.status_code for r in responses] == [200, 200]
        assert responses[1].headers["X-RateLimit-Limit"] == "3"

    def test_route_budget_is_shared_across_path_params(self, client: TestClient) -> None:
        assert client.get("/items/1").status_code == 200
        assert client.get("/items/2").status_code == 429

    def test_routes_do_not_share_counters(self, client: TestClient) -> None:
        assert client.get("/items/1").status_code == 200
        assert client.get("/strict").status_code == 200

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"limit": -1, "window_seconds": 60},
            {"limit": 1, "window_seconds": 0},
        ],
    )
    def test_invalid_constructor_args(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            RateLimit(**kwargs)


class TestBackendFailure:
    def test_store_outage_maps_to_503(self, client: TestClient, monkeypatch) -> None:
        redis_client = AsyncMock()
        redis_client.get.side_effect = RedisConnectionError("connection refused")
        limiter = FixedWindowLimiter(RedisCounterStore(redis_client))
        monkeypatch.setattr(rate_limit, "_limiter", limiter)

        resp = client.get("/global")

        assert resp.status_code == 503
        error = resp.json()["error"]
        assert error["code"] == "rate_limit_store_unavailable"
        assert error["details"] == {"backend": "redis", "error_type": "ConnectionError"}


class TestLimiterLifecycle:
    def test_limiter_is_cached(self) -> None:
        assert get_rate_limiter() is get_rate_limiter()

    def test_shutdown_destroys_store(self) -> None:
        store = get_rate_limiter().store

        asyncio.run(shutdown_rate_limiter())
        asyncio.run(shutdown_rate_limiter())

        assert len(store) == 0
        assert get_rate_limiter().store is not store
