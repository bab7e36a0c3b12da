from __future__ import annotations

from fastapi.testclient import TestClient

from ratelimit_api.main import app


client = TestClient(app)


def test_preserves_incoming_request_id_header():
    incoming_id = "test-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == incoming_id


def test_generates_request_id_when_missing():
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID")
    assert resp.headers.get("X-Request-Duration-ms") is not None


def test_request_id_present_on_rejections():
    resp = client.post(
        "/v1/limits/check",
        json={"key": "k", "limit": 1, "window_seconds": 0},
        headers={"X-Request-ID": "req-422"},
    )

    assert resp.status_code == 422
    assert resp.headers.get("X-Request-ID") == "req-422"
