"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any import that loads settings.
"""

import os

os.environ["APP_ENV"] = "testing"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from referral_gate.core.app_factory import create_app
from referral_gate.core.auth import Identity
from referral_gate.core.config import AuthSettings, RateLimitSettings, SecuritySettings, Settings


class FakeClock:
    """Deterministic millisecond clock used to simulate window expiry."""

    def __init__(self, start: int = 1_000_000) -> None:
        self.current = start

    def __call__(self) -> int:
        return self.current

    def advance(self, ms: int) -> None:
        self.current += ms


class FakeAuthProvider:
    """In-memory stand-in for the hosted authentication provider."""

    def __init__(self, sessions: dict[str, Identity] | None = None) -> None:
        self.sessions = sessions or {}
        self.calls: list[str] = []

    def validate_session(self, token: str) -> Identity | None:
        self.calls.append(token)
        return self.sessions.get(token)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def auth_provider() -> FakeAuthProvider:
    return FakeAuthProvider(
        {
            "admin-token": Identity(user_id="u-1", email="root@example.com", role="admin"),
            "owner-token": Identity(user_id="u-2", email="Owner@Example.com", role="user"),
            "user-token": Identity(user_id="u-3", email="someone@example.com", role="user"),
        }
    )


def make_settings(**rate_limit_overrides) -> Settings:
    """Build isolated settings for a test app."""
    rate_limit = {"limit": 3, "window_ms": 60_000}
    rate_limit.update(rate_limit_overrides)
    return Settings(
        app_env="testing",
        rate_limit=RateLimitSettings(**rate_limit),
        security=SecuritySettings(is_development=False, connect_sources="https://backend.example.com"),
        auth=AuthSettings(admin_roles="admin", admin_emails="owner@example.com"),
    )


@pytest.fixture
def app(clock: FakeClock, auth_provider: FakeAuthProvider) -> FastAPI:
    application = create_app(
        make_settings(),
        auth_provider=auth_provider,
        clock=clock,
        configure_logs=False,
    )

    @application.get("/api/ping")
    def ping() -> dict:
        return {"pong": True}

    @application.get("/api/other")
    def other() -> dict:
        return {"other": True}

    @application.get("/static/app.js")
    def static_asset() -> dict:
        return {"asset": True}

    @application.get("/pages/home")
    def page() -> dict:
        return {"page": True}

    return application


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)
