"""Integration tests for the rate-limited request filter."""

from unittest.mock import Mock, PropertyMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from conftest import FakeClock, make_settings
from referral_gate.core.app_factory import create_app
from referral_gate.core.rate_limit import build_rate_limit_key, client_address


def _request(path: str = "/api/ping", client=("10.0.0.1", 1234), headers=None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": path,
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
        "server": ("testserver", 80),
        "scheme": "http",
    }
    return Request(scope)


class TestKeyDerivation:
    def test_key_combines_client_and_path(self) -> None:
        assert build_rate_limit_key(_request()) == "10.0.0.1:/api/ping"

    def test_missing_client_falls_back_to_unknown(self) -> None:
        assert build_rate_limit_key(_request(client=None)) == "unknown:/api/ping"

    def test_forwarded_for_ignored_unless_trusted(self) -> None:
        request = _request(headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.2"})

        assert client_address(request) == "10.0.0.1"
        assert client_address(request, trust_forwarded_for=True) == "203.0.113.9"

    def test_failing_derivation_degrades_to_constant_key(self) -> None:
        request = Mock()
        type(request).url = PropertyMock(side_effect=RuntimeError("boom"))
        request.client = None

        assert build_rate_limit_key(request) == "unknown"


class TestRateLimiting:
    def test_allows_limit_then_rejects_with_429(self, client: TestClient) -> None:
        for _ in range(3):
            assert client.get("/api/ping").status_code == 200

        response = client.get("/api/ping")

        assert response.status_code == 429
        body = response.json()
        assert body["error"]["code"] == "rate_limit_exceeded"
        assert "request_id" in body["error"]
        assert response.headers["Retry-After"] == "60"
        assert response.headers["X-RateLimit-Limit"] == "3"
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_rejected_request_never_reaches_route(self, app: FastAPI, client: TestClient) -> None:
        calls = []

        @app.get("/api/counted")
        def counted() -> dict:
            calls.append(1)
            return {}

        for _ in range(5):
            client.get("/api/counted")

        assert len(calls) == 3

    def test_retry_after_reflects_remaining_window(self, client: TestClient, clock: FakeClock) -> None:
        for _ in range(3):
            client.get("/api/ping")
        clock.advance(45_500)

        response = client.get("/api/ping")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "15"

    def test_window_expiry_readmits_client(self, client: TestClient, clock: FakeClock) -> None:
        for _ in range(6):
            client.get("/api/ping")

        clock.advance(60_001)

        assert client.get("/api/ping").status_code == 200

    def test_routes_are_counted_separately(self, client: TestClient) -> None:
        for _ in range(3):
            client.get("/api/ping")

        assert client.get("/api/ping").status_code == 429
        assert client.get("/api/other").status_code == 200

    def test_non_api_paths_are_not_limited(self, client: TestClient) -> None:
        for _ in range(10):
            assert client.get("/pages/home").status_code == 200
        assert client.get("/health").status_code == 200

    def test_disabled_limiting_still_sets_headers(self, clock: FakeClock) -> None:
        app = create_app(make_settings(enabled=False), clock=clock, configure_logs=False)

        @app.get("/api/ping")
        def ping() -> dict:
            return {}

        client = TestClient(app)
        responses = [client.get("/api/ping") for _ in range(10)]

        assert all(r.status_code == 200 for r in responses)
        assert "Content-Security-Policy" in responses[-1].headers

    def test_expired_entries_are_swept_during_requests(self, app: FastAPI, client: TestClient, clock: FakeClock) -> None:
        client.get("/api/ping")
        client.get("/api/other")
        assert len(app.state.rate_limiter) == 2

        clock.advance(120_000)
        client.get("/pages/home")

        assert len(app.state.rate_limiter) == 0

    def test_lifespan_shutdown_resets_table(self, app: FastAPI) -> None:
        with TestClient(app) as client:
            client.get("/api/ping")
            assert len(app.state.rate_limiter) == 1

        assert len(app.state.rate_limiter) == 0


class TestSecurityHeaders:
    def test_accepted_responses_carry_security_headers(self, client: TestClient) -> None:
        response = client.get("/api/ping")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
        assert response.headers["Permissions-Policy"] == "camera=(), microphone=(), geolocation=()"
        csp = response.headers["Content-Security-Policy"]
        assert "unsafe-eval" not in csp
        assert "https://backend.example.com" in csp

    def test_static_assets_bypass_filter(self, client: TestClient) -> None:
        response = client.get("/static/app.js")

        assert response.status_code == 200
        assert "Content-Security-Policy" not in response.headers

    def test_failing_route_still_gets_headers_and_request_id(self, app: FastAPI) -> None:
        @app.get("/api/boom")
        def boom() -> dict:
            raise RuntimeError("downstream exploded")

        client = TestClient(app, raise_server_exceptions=False)
        response = client.get("/api/boom", headers={"X-Request-ID": "rid-500"})

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "internal_server_error"
        assert response.json()["error"]["request_id"] == "rid-500"
        assert "exploded" not in response.text
        assert response.headers["X-Request-ID"] == "rid-500"
        assert "Content-Security-Policy" in response.headers
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_prefix_matches_whole_segments_only(self, app: FastAPI, client: TestClient) -> None:
        @app.get("/apiary")
        def apiary() -> dict:
            return {}

        statuses = [client.get("/apiary").status_code for _ in range(5)]

        assert statuses == [200] * 5
        assert "Content-Security-Policy" in client.get("/apiary").headers

    @pytest.mark.parametrize("is_development, expect_eval", [(True, True), (False, False)])
    def test_csp_mode_follows_settings(self, clock: FakeClock, is_development: bool, expect_eval: bool) -> None:
        settings = make_settings()
        settings.security.is_development = is_development
        client = TestClient(create_app(settings, clock=clock, configure_logs=False))

        csp = client.get("/health").headers["Content-Security-Policy"]

        assert ("'unsafe-eval'" in csp) is expect_eval
        assert ("wss:" in csp) is expect_eval


class TestFilterDirect:
    """Drive the middleware callable without the HTTP stack."""

    @pytest.mark.asyncio
    async def test_concurrent_requests_admit_at_most_limit(self, clock: FakeClock) -> None:
        import asyncio

        from starlette.responses import PlainTextResponse

        from referral_gate.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter
        from referral_gate.core.rate_limit import RequestFilter
        from referral_gate.core.security_headers import SecurityHeaderPolicy

        request_filter = RequestFilter(
            limiter=InMemorySlidingWindowRateLimiter(limit=4, window_ms=60_000, clock=clock),
            header_policy=SecurityHeaderPolicy(),
        )
        forwarded = []

        async def call_next(request: Request):
            forwarded.append(request.url.path)
            await asyncio.sleep(0)
            return PlainTextResponse("ok")

        responses = await asyncio.gather(*(request_filter(_request(), call_next) for _ in range(20)))

        statuses = [r.status_code for r in responses]
        assert statuses.count(200) == 4
        assert statuses.count(429) == 16
        assert len(forwarded) == 4
        assert all("Content-Security-Policy" in r.headers for r in responses if r.status_code == 200)
