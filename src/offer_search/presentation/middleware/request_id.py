"""Request ID middleware for the offer search API.

Ensures every request and response carries an ``X-Request-ID`` header for
end-to-end tracing.  If the incoming request already contains the header its
value is preserved; otherwise a new UUID-4 is generated.  The id is also
bound into the logging context so every log event of the request carries it.
"""
from __future__ import annotations

import time
import uuid
from typing import Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from offer_search.infrastructure.logging import bind_request_id

_HEADER = "X-Request-ID"

logger = structlog.get_logger("offer_search.access")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Injects a unique request identifier into every HTTP transaction.

    The identifier is:
    1. Read from the incoming ``X-Request-ID`` header if present.
    2. Generated as a UUID-4 string when the header is absent.
    3. Attached to the response headers so callers can correlate logs.
    4. Stored in ``request.state.request_id`` for downstream access.

    One ``http_request`` event is logged per request with method, path,
    status code and duration.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response],  # type: ignore[override]
    ) -> Response:
        request_id = request.headers.get(_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        bind_request_id(request_id)
        start = time.perf_counter()

        response = await call_next(request)
        response.headers[_HEADER] = request_id

        log_kwargs: dict[str, object] = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round((time.perf_counter() - start) * 1000, 2),
        }
        if response.status_code >= 500:
            logger.error("http_request", **log_kwargs)
        elif response.status_code >= 400:
            logger.warning("http_request", **log_kwargs)
        else:
            logger.info("http_request", **log_kwargs)
        return response
