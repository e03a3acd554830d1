"""Application factory for the FastAPI app.

Builds the app and everything it owns: the rate limiter table, the security
header policy, the admin policy and the optional auth provider. Nothing is
kept at module level, so tests can build isolated apps with injected clocks.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI

from referral_gate.adapters.rate_limit.base import AbstractRateLimiter
from referral_gate.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter, monotonic_ms
from referral_gate.api.routes import admin_router, health_router
from referral_gate.core.auth import AdminPolicy, AuthProvider
from referral_gate.core.config import Settings, settings as default_settings
from referral_gate.core.exception_handlers import setup_exception_handlers
from referral_gate.core.logging import configure_logging
from referral_gate.core.middleware import RequestContextMiddleware
from referral_gate.core.openapi import apply_openapi_customizations
from referral_gate.core.rate_limit import RequestFilter
from referral_gate.core.security_headers import SecurityHeaderPolicy

logger = logging.getLogger(__name__)


def build_rate_limiter(
    app_settings: Settings,
    *,
    clock: Callable[[], int] = monotonic_ms,
) -> AbstractRateLimiter:
    """Construct the limiter described by the rate limit settings."""
    cfg = app_settings.rate_limit
    return InMemorySlidingWindowRateLimiter(
        limit=cfg.limit,
        window_ms=cfg.window_ms,
        sweep_interval_ms=cfg.sweep_interval_ms,
        clock=clock,
    )


def create_app(
    app_settings: Settings | None = None,
    *,
    rate_limiter: AbstractRateLimiter | None = None,
    auth_provider: AuthProvider | None = None,
    clock: Callable[[], int] = monotonic_ms,
    configure_logs: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to use; defaults to the environment-loaded ones.
        rate_limiter: Pre-built limiter; built from settings when omitted.
        auth_provider: Session validator used by admin routes.
        clock: Millisecond clock for a limiter built from settings.
        configure_logs: Install the root log handler.

    Returns:
        Configured app with middleware, handlers, routers and docs.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    if configure_logs:
        configure_logging(cfg.log)

    limiter = rate_limiter or build_rate_limiter(cfg, clock=clock)
    header_policy = SecurityHeaderPolicy.from_settings(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "app.startup",
            extra={
                "app_env": cfg.app_env,
                "is_development": cfg.is_development,
                "rate_limit_enabled": cfg.rate_limit.enabled,
                "rate_limit": cfg.rate_limit.limit,
                "window_ms": cfg.rate_limit.window_ms,
            },
        )
        try:
            yield
        finally:
            limiter.reset()
            logger.info("app.shutdown")

    app = FastAPI(
        title="Referral Gate",
        description=(
            "Edge filter for the referral site and admin panel: per-client, "
            "per-route rate limiting, security headers and admin session checks."
        ),
        version="0.1.0",
        debug=cfg.app.debug,
        lifespan=lifespan,
    )

    app.state.settings = cfg
    app.state.rate_limiter = limiter
    app.state.header_policy = header_policy
    app.state.admin_policy = AdminPolicy.from_settings(cfg.auth)
    app.state.auth_provider = auth_provider

    # Middleware: the last registered runs first, so the correlation id
    # wraps the filter and reaches throttled responses.
    app.middleware("http")(RequestFilter.from_settings(limiter, header_policy, cfg.rate_limit))
    app.middleware("http")(RequestContextMiddleware(header_name=cfg.log.request_id_header))

    setup_exception_handlers(app)

    app.include_router(admin_router, prefix="/api")
    app.include_router(health_router)

    apply_openapi_customizations(
        app,
        session_cookie=cfg.auth.session_cookie,
        limited_prefixes=cfg.rate_limit.limited_paths,
    )

    return app
