from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Liveness probe for load balancers and uptime checks.

    Not rate limited; reports the number of live rate limit buckets.
    """

    limiter = request.app.state.rate_limiter
    return {"status": "ok", "rate_limit_entries": len(limiter)}
