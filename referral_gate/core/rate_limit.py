"""Rate-limited request filter.

This module wires the limiter adapter and the security header policy into the
HTTP layer as a single ``http`` middleware.

Per request:
1. cooperative sweep of expired limiter entries;
2. static asset paths pass through untouched;
3. rate-limited paths are counted per ``{client_ip}:{path}`` key and rejected
   with 429 once over budget;
4. everything that reaches the application gets the security headers.

The limiter is injected, so each application instance owns its own table.
Multiple worker processes do not share counts.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from referral_gate.adapters.rate_limit.base import AbstractRateLimiter, RateLimitDecision
from referral_gate.adapters.rate_limit.in_memory import UNKNOWN_KEY
from referral_gate.core.config import RateLimitSettings
from referral_gate.core.exception_handlers import error_body, general_exception_handler
from referral_gate.core.security_headers import SecurityHeaderPolicy

logger = logging.getLogger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]


def client_address(request: Request, *, trust_forwarded_for: bool = False) -> str:
    """Best-effort network identity of the caller.

    Args:
        request: Incoming request.
        trust_forwarded_for: Prefer the first ``X-Forwarded-For`` hop. Only
            enable behind a proxy that overwrites the header.

    Returns:
        Client address, or ``"unknown"`` when none is available.
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_KEY


def build_rate_limit_key(request: Request, *, trust_forwarded_for: bool = False) -> str:
    """Build the limiter key ``{client_ip}:{path}`` for the current request.

    Never raises: a request whose identity cannot be derived shares the
    constant ``"unknown"`` bucket.
    """
    try:
        return f"{client_address(request, trust_forwarded_for=trust_forwarded_for)}:{request.url.path}"
    except Exception:
        logger.warning("rate_limit.key_derivation_failed", exc_info=True)
        return UNKNOWN_KEY


def _hash_limiter_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing client addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def _matches(path: str, prefixes: Sequence[str]) -> bool:
    """Match whole path segments, so "/api" covers "/api/x" but not "/apiary"."""
    return any(
        path == prefix or path.startswith(prefix.rstrip("/") + "/")
        for prefix in prefixes
    )


def rate_limited_response(decision: RateLimitDecision, *, include_headers: bool = True) -> JSONResponse:
    """Turn a blocked decision into the 429 response sent to the client."""
    retry_after = decision.retry_after_seconds or 1
    headers = {"Retry-After": str(retry_after)}
    if include_headers:
        headers["X-RateLimit-Limit"] = str(decision.limit)
        headers["X-RateLimit-Remaining"] = str(decision.remaining)
        headers["X-RateLimit-Reset"] = str(retry_after)

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=error_body(
            "rate_limit_exceeded",
            "Rate limit exceeded. Please try again later.",
        ),
        headers=headers,
    )


@dataclass
class RequestFilter:
    """HTTP middleware combining rate limiting and security headers.

    Register with ``app.middleware("http")(RequestFilter(...))``.

    Attributes:
        limiter: Limiter owning the per-key counting state.
        header_policy: Headers attached to every response that passes.
        limited_prefixes: Path prefixes subject to rate limiting.
        exempt_prefixes: Path prefixes skipped entirely (static assets).
        enabled: Master switch for rate limiting; headers still apply.
        trust_forwarded_for: Derive client address from X-Forwarded-For.
        include_headers: Add X-RateLimit-* headers to 429 responses.
    """

    limiter: AbstractRateLimiter
    header_policy: SecurityHeaderPolicy
    limited_prefixes: Sequence[str] = ("/api",)
    exempt_prefixes: Sequence[str] = ("/_next", "/static", "/favicon.ico")
    enabled: bool = True
    trust_forwarded_for: bool = False
    include_headers: bool = True

    @classmethod
    def from_settings(
        cls,
        limiter: AbstractRateLimiter,
        header_policy: SecurityHeaderPolicy,
        rate_limit_settings: RateLimitSettings,
    ) -> "RequestFilter":
        return cls(
            limiter=limiter,
            header_policy=header_policy,
            limited_prefixes=tuple(rate_limit_settings.limited_paths),
            exempt_prefixes=tuple(rate_limit_settings.exempt_paths),
            enabled=rate_limit_settings.enabled,
            trust_forwarded_for=rate_limit_settings.trust_forwarded_for,
            include_headers=rate_limit_settings.include_headers,
        )

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        self.limiter.maybe_sweep()

        path = request.url.path
        if _matches(path, self.exempt_prefixes):
            return await call_next(request)

        if self.enabled and _matches(path, self.limited_prefixes):
            key = build_rate_limit_key(request, trust_forwarded_for=self.trust_forwarded_for)
            decision = self.limiter.consume(key)
            if not decision.allowed:
                logger.warning(
                    "rate_limit.exceeded",
                    extra={
                        "key_hash": _hash_limiter_key(key),
                        "route": path,
                        "method": request.method,
                        "limit": decision.limit,
                        "count": decision.count,
                        "retry_after_s": decision.retry_after_seconds,
                    },
                )
                return rate_limited_response(decision, include_headers=self.include_headers)

            logger.debug(
                "rate_limit.allowed",
                extra={
                    "key_hash": _hash_limiter_key(key),
                    "route": path,
                    "limit": decision.limit,
                    "remaining": decision.remaining,
                },
            )

        try:
            response = await call_next(request)
        except Exception as exc:
            # Render the 500 here so it still gets policy headers and the request id
            response = await general_exception_handler(request, exc)
        self.header_policy.apply(response.headers)
        return response
