"""Tests for admin identity resolution and the session dependencies."""

import pytest
from fastapi.testclient import TestClient

from conftest import make_settings
from referral_gate.core.app_factory import create_app
from referral_gate.core.auth import AdminPolicy, Identity, session_token_from_request
from referral_gate.core.config import AuthSettings


class TestAdminPolicy:
    """Single source of truth for admin identity."""

    def test_admin_role_grants_access(self) -> None:
        policy = AdminPolicy(admin_roles=["admin"])

        assert policy.is_admin(Identity(user_id="1", role="admin")) is True
        assert policy.is_admin(Identity(user_id="1", role="ADMIN")) is True

    def test_configured_email_grants_access_case_insensitively(self) -> None:
        policy = AdminPolicy(admin_roles=["admin"], admin_emails=["Owner@Example.com"])

        assert policy.is_admin(Identity(user_id="2", email="owner@example.COM", role="user")) is True

    def test_regular_user_is_not_admin(self) -> None:
        policy = AdminPolicy(admin_roles=["admin"], admin_emails=["owner@example.com"])

        assert policy.is_admin(Identity(user_id="3", email="someone@example.com", role="user")) is False

    def test_missing_identity_or_fields_is_not_admin(self) -> None:
        policy = AdminPolicy()

        assert policy.is_admin(None) is False
        assert policy.is_admin(Identity(user_id="4")) is False

    def test_no_emails_configured_means_role_only(self) -> None:
        policy = AdminPolicy.from_settings(AuthSettings(admin_roles="admin, superadmin", admin_emails=None))

        assert policy.is_admin(Identity(user_id="5", role="superadmin")) is True
        assert policy.is_admin(Identity(user_id="6", email="owner@example.com")) is False


class TestAdminSessionRoute:
    def test_admin_role_session_is_accepted(self, client: TestClient) -> None:
        response = client.get("/api/admin/session", headers={"Cookie": "session=admin-token"})

        assert response.status_code == 200
        assert response.json() == {
            "user_id": "u-1",
            "email": "root@example.com",
            "role": "admin",
            "is_admin": True,
        }

    def test_configured_admin_email_is_accepted(self, client: TestClient) -> None:
        response = client.get("/api/admin/session", headers={"Authorization": "Bearer owner-token"})

        assert response.status_code == 200
        assert response.json()["user_id"] == "u-2"

    def test_missing_session_returns_401(self, client: TestClient) -> None:
        response = client.get("/api/admin/session")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "missing_session"

    def test_unknown_session_returns_401(self, client: TestClient) -> None:
        response = client.get("/api/admin/session", headers={"Cookie": "session=forged"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "invalid_session"

    def test_non_admin_returns_403(self, client: TestClient) -> None:
        response = client.get("/api/admin/session", headers={"Cookie": "session=user-token"})

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "admin_required"

    def test_admin_route_is_rate_limited(self, client: TestClient) -> None:
        statuses = [
            client.get("/api/admin/session", headers={"Cookie": "session=admin-token"}).status_code
            for _ in range(4)
        ]

        assert statuses == [200, 200, 200, 429]

    def test_missing_provider_is_a_configuration_error(self) -> None:
        client = TestClient(create_app(make_settings(), configure_logs=False))

        response = client.get("/api/admin/session", headers={"Cookie": "session=admin-token"})

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "auth_provider_not_configured"

    def test_async_provider_is_awaited(self) -> None:
        class AsyncProvider:
            async def validate_session(self, token: str) -> Identity | None:
                return Identity(user_id="a-1", role="admin") if token == "ok" else None

        client = TestClient(create_app(make_settings(), auth_provider=AsyncProvider(), configure_logs=False))

        assert client.get("/api/admin/session", headers={"Cookie": "session=ok"}).status_code == 200
        assert client.get("/api/admin/session", headers={"Cookie": "session=no"}).status_code == 401


@pytest.mark.parametrize(
    "cookies, headers, expected",
    [
        ({"session": "cookie-token"}, {}, "cookie-token"),
        ({}, {"Authorization": "Bearer header-token"}, "header-token"),
        ({"session": "cookie-token"}, {"Authorization": "Bearer header-token"}, "cookie-token"),
        ({}, {"Authorization": "Basic abc"}, None),
        ({}, {"Authorization": "Bearer   "}, None),
        ({}, {}, None),
    ],
)
def test_session_token_sources(cookies: dict, headers: dict, expected: str | None) -> None:
    from starlette.requests import Request

    raw_headers = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
    if cookies:
        cookie_header = "; ".join(f"{k}={v}" for k, v in cookies.items())
        raw_headers.append((b"cookie", cookie_header.encode()))
    request = Request({"type": "http", "method": "GET", "path": "/", "headers": raw_headers})

    assert session_token_from_request(request, "session") == expected
