"""Session validation and admin access control.

The authentication provider itself is external: it validates a session token
and reports who the caller is. This module only decides what that identity
may do, and ``AdminPolicy`` is the one place that answers "is this an admin".

Usage:
    @router.get("/admin/thing")
    async def thing(identity: Identity = Depends(require_admin)): ...
"""

from __future__ import annotations

import hashlib
import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Iterable, Protocol

from fastapi import Request

from referral_gate.core.config import AuthSettings, parse_csv
from referral_gate.core.errors import (
    AuthenticationAppError,
    AuthorizationAppError,
    ConfigurationAppError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Caller identity as reported by the authentication provider."""

    user_id: str
    email: str | None = None
    role: str | None = None


class AuthProvider(Protocol):
    """External collaborator that turns a session token into an identity.

    Implementations may be sync or async and return None for an unknown or
    expired session.
    """

    def validate_session(self, token: str) -> Identity | None | Awaitable[Identity | None]:
        ...


def _hash(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()[:16]


class AdminPolicy:
    """Single source of truth for admin identity.

    An identity is an admin when its role is one of ``admin_roles`` or its
    email is one of the configured ``admin_emails`` (case-insensitive).
    """

    def __init__(self, admin_roles: Iterable[str] = ("admin",), admin_emails: Iterable[str] = ()) -> None:
        self._roles = frozenset(role.strip().lower() for role in admin_roles if role.strip())
        self._emails = frozenset(email.strip().lower() for email in admin_emails if email.strip())

    @classmethod
    def from_settings(cls, auth_settings: AuthSettings) -> "AdminPolicy":
        return cls(
            admin_roles=parse_csv(auth_settings.admin_roles),
            admin_emails=parse_csv(auth_settings.admin_emails),
        )

    def is_admin(self, identity: Identity | None) -> bool:
        if identity is None:
            return False
        if identity.role and identity.role.lower() in self._roles:
            return True
        return bool(identity.email) and identity.email.lower() in self._emails


def session_token_from_request(request: Request, cookie_name: str) -> str | None:
    """Read the session token from the session cookie or a Bearer header."""
    token = request.cookies.get(cookie_name)
    if token:
        return token

    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


async def get_current_identity(request: Request) -> Identity:
    """FastAPI dependency resolving the caller through the auth provider.

    Raises:
        ConfigurationAppError: No provider is attached to the application.
        AuthenticationAppError: Missing, invalid or expired session.
    """
    provider: AuthProvider | None = getattr(request.app.state, "auth_provider", None)
    if provider is None:
        logger.error("auth.provider_missing", extra={"route": request.url.path})
        raise ConfigurationAppError(
            code="auth_provider_not_configured",
            message="No authentication provider is configured",
        )

    auth_settings: AuthSettings = request.app.state.settings.auth
    token = session_token_from_request(request, auth_settings.session_cookie)
    if not token:
        logger.info("auth.missing_session", extra={"route": request.url.path})
        raise AuthenticationAppError(
            code="missing_session",
            message="Authentication required",
            details={"hint": f"Send the {auth_settings.session_cookie} cookie or a Bearer token"},
        )

    identity = provider.validate_session(token)
    if inspect.isawaitable(identity):
        identity = await identity

    if identity is None:
        logger.warning("auth.invalid_session", extra={"token_hash": _hash(token)})
        raise AuthenticationAppError(
            code="invalid_session",
            message="Session is invalid or expired",
        )

    return identity


async def require_admin(request: Request) -> Identity:
    """FastAPI dependency admitting only identities the AdminPolicy accepts.

    Raises:
        AuthenticationAppError: No valid session.
        AuthorizationAppError: Authenticated but not an admin.
    """
    identity = await get_current_identity(request)
    policy: AdminPolicy = request.app.state.admin_policy

    if not policy.is_admin(identity):
        logger.warning(
            "auth.admin_denied",
            extra={"user_id_hash": _hash(identity.user_id), "role": identity.role},
        )
        raise AuthorizationAppError(
            code="admin_required",
            message="Access denied - admin privileges required",
            details={"role": identity.role or ""},
        )

    logger.info("auth.admin_granted", extra={"user_id_hash": _hash(identity.user_id)})
    return identity
