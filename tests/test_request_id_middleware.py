from __future__ import annotations

from fastapi.testclient import TestClient

from app.main import app


client = TestClient(app)


def test_preserves_incoming_request_id_header():
    incoming_id = "test-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == incoming_id


def test_generates_request_id_when_missing():
    resp = client.get("/health")

    assert resp.status_code == 200
    generated = resp.headers.get("X-Request-ID")
    assert generated
    assert isinstance(generated, str)

    duration = resp.headers.get("X-Request-Duration-ms")
    assert duration is not None


def test_error_envelope_carries_request_id(install_limiter):
    install_limiter("auth", max_attempts=1)
    headers = {"X-Request-ID": "trace-429"}

    client.post("/v1/auth/verify", headers={**headers, "X-API-Key": "wrong-key"})
    resp = client.post("/v1/auth/verify", headers={**headers, "X-API-Key": "wrong-key"})

    assert resp.status_code == 429
    assert resp.headers.get("X-Request-ID") == "trace-429"
    assert resp.json()["error"]["request_id"] == "trace-429"
