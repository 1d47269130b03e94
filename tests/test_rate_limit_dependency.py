"""Tests for the FastAPI rate limiting dependency and limiter registry."""

from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from app.core import rate_limit as rate_limit_module
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.rate_limit import (
    active_rate_limiters,
    build_rate_limit_error,
    client_key,
    get_rate_limiter,
    require_rate_limit,
    shutdown_rate_limiters,
)


def _request(headers: dict[str, str] | None = None, client: tuple[str, int] | None = ("198.51.100.4", 4321)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


@pytest.fixture
def trust_proxy(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings.rate_limit, "trust_forwarded_for", True)


@pytest.fixture
def limited_client() -> TestClient:
    app = FastAPI()
    setup_exception_handlers(app)

    @app.get("/limited", dependencies=[Depends(require_rate_limit("auth"))])
    async def limited() -> dict:
        return {"ok": True}

    return TestClient(app)


class TestClientKey:
    def test_uses_peer_address_by_default(self) -> None:
        request = _request(headers={"X-Forwarded-For": "203.0.113.1"})

        assert client_key(request) == "198.51.100.4"

    def test_uses_first_forwarded_hop_behind_trusted_proxy(self, trust_proxy) -> None:
        request = _request(headers={"X-Forwarded-For": "203.0.113.1, 10.0.0.2"})

        assert client_key(request) == "203.0.113.1"

    def test_trusted_proxy_without_header_falls_back_to_peer(self, trust_proxy) -> None:
        assert client_key(_request()) == "198.51.100.4"

    def test_falls_back_to_forwarded_header_without_peer(self) -> None:
        request = _request(headers={"X-Forwarded-For": "203.0.113.9"}, client=None)

        assert client_key(request) == "203.0.113.9"

    def test_unknown_when_nothing_identifies_client(self) -> None:
        assert client_key(_request(client=None)) == "unknown"


class TestRegistry:
    def test_one_limiter_per_preset(self) -> None:
        auth = get_rate_limiter("auth")

        assert get_rate_limiter("auth") is auth
        assert get_rate_limiter("api") is not auth
        assert auth.config.max_attempts == 20
        assert set(active_rate_limiters()) == {"auth", "api"}

    def test_unknown_preset_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            get_rate_limiter("bogus")

    def test_require_rate_limit_validates_preset_eagerly(self) -> None:
        with pytest.raises(ValueError):
            require_rate_limit("bogus")

    def test_shutdown_stops_and_forgets_limiters(self) -> None:
        limiter = get_rate_limiter("default")

        shutdown_rate_limiters()

        assert limiter.stats().stopped is True
        assert active_rate_limiters() == {}
        assert get_rate_limiter("default") is not limiter


class TestEnforceRateLimit:
    def test_allows_within_budget(self, limited_client: TestClient, install_limiter) -> None:
        limiter = install_limiter("auth", max_attempts=2)

        assert limited_client.get("/limited").status_code == 200
        assert limited_client.get("/limited").status_code == 200
        assert limiter.get_remaining_attempts("testclient") == 0

    def test_returns_429_with_retry_hint(self, limited_client: TestClient, install_limiter) -> None:
        install_limiter("auth", max_attempts=1, block_seconds=30 * 60)

        limited_client.get("/limited")
        response = limited_client.get("/limited")

        assert response.status_code == 429
        error = response.json()["error"]
        assert error["code"] == "rate_limit_exceeded"
        assert error["details"]["preset"] == "auth"
        assert error["details"]["limit"] == 1
        assert 1790 <= error["details"]["retry_after"] <= 1800
        assert error["details"]["blocked_until"].endswith("+00:00")

        assert 1790 <= int(response.headers["Retry-After"]) <= 1800
        assert response.headers["X-RateLimit-Limit"] == "1"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert "X-RateLimit-Reset" in response.headers

    def test_headers_can_be_disabled(
        self, limited_client: TestClient, install_limiter, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings.rate_limit, "include_headers", False)
        install_limiter("auth", max_attempts=1)

        limited_client.get("/limited")
        response = limited_client.get("/limited")

        assert response.status_code == 429
        assert "Retry-After" not in response.headers
        assert response.json()["error"]["details"]["retry_after"] > 0

    def test_disabled_limiting_never_blocks(
        self, limited_client: TestClient, install_limiter, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings.rate_limit, "enabled", False)
        limiter = install_limiter("auth", max_attempts=1)

        for _ in range(5):
            assert limited_client.get("/limited").status_code == 200

        assert limiter.stats().entries == 0

    def test_forwarded_clients_are_limited_independently(
        self, limited_client: TestClient, install_limiter, trust_proxy
    ) -> None:
        install_limiter("auth", max_attempts=1)

        assert limited_client.get("/limited", headers={"X-Forwarded-For": "192.168.1.101"}).status_code == 200
        assert limited_client.get("/limited", headers={"X-Forwarded-For": "192.168.1.101"}).status_code == 429
        assert limited_client.get("/limited", headers={"X-Forwarded-For": "192.168.1.102"}).status_code == 200

    def test_presets_do_not_share_counters(self, install_limiter) -> None:
        app = FastAPI()
        setup_exception_handlers(app)

        @app.get("/auth", dependencies=[Depends(require_rate_limit("auth"))])
        async def auth_route() -> dict:
            return {}

        @app.get("/api", dependencies=[Depends(require_rate_limit("api"))])
        async def api_route() -> dict:
            return {}

        install_limiter("auth", max_attempts=1)
        client = TestClient(app)

        client.get("/auth")
        assert client.get("/auth").status_code == 429
        assert client.get("/api").status_code == 200
        assert rate_limit_module.get_rate_limiter("api").get_remaining_attempts("testclient") == 99


class TestBuildRateLimitError:
    def test_retry_hint_follows_limiter_clock(self, make_limiter, clock) -> None:
        limiter = make_limiter(max_attempts=1, block_seconds=30 * 60)
        limiter.allow("203.0.113.5")
        limiter.allow("203.0.113.5")
        clock.advance(100)

        details = build_rate_limit_error(limiter, "203.0.113.5", preset="default").details

        assert details["retry_after"] == 30 * 60 - 100
        assert details["reset_at"] == int(clock() - 100 + 30 * 60)
        assert details["blocked_until"].endswith("+00:00")

    def test_block_gone_before_error_is_built(self, make_limiter) -> None:
        limiter = make_limiter(max_attempts=1)
        limiter.allow("203.0.113.6")
        limiter.allow("203.0.113.6")
        limiter.reset("203.0.113.6")

        error = build_rate_limit_error(limiter, "203.0.113.6", preset="auth")

        assert error.details == {"preset": "auth", "limit": 1, "retry_after": 0}

    def test_response_without_active_block_omits_reset_header(self, make_limiter) -> None:
        limiter = make_limiter(max_attempts=2)
        app = FastAPI()
        setup_exception_handlers(app)

        @app.get("/stale")
        async def stale_denial() -> dict:
            raise build_rate_limit_error(limiter, "nobody", preset="default")

        response = TestClient(app).get("/stale")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "0"
        assert "X-RateLimit-Reset" not in response.headers
        assert "blocked_until" not in response.json()["error"]["details"]
