"""Request correlation middleware.

Every request gets a correlation id (taken from the configured header or
freshly generated) that is stored in contextvars for log records, echoed in
the response, and reported in one ``request.completed`` access log line.

Register it after the request filter so it wraps throttled responses too.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass

from fastapi import Request, Response

from referral_gate.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)


@dataclass
class RequestContextMiddleware:
    """Correlation id + timing middleware.

    Attributes:
        header_name: Header read from the request and written on the response.
    """

    header_name: str = "X-Request-ID"

    async def __call__(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        set_request_id(request_id)
        start = time.perf_counter()
        try:
            response: Response = await call_next(request)
            duration_ms = (time.perf_counter() - start) * 1000
            logger.info(
                "request.completed",
                extra={
                    "method": request.method,
                    "route": request.url.path,
                    "status": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                },
            )
        finally:
            clear_request_id()

        response.headers[self.header_name] = request_id
        response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
        return response
