"""Global exception handlers -- map service exceptions to HTTP responses."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse

from offer_search.shared.exceptions import (
    DependencyUnavailableError,
    InvalidQueryError,
    MalformedCommandError,
    OfferSearchError,
    SearchCancelledError,
)

logger = structlog.get_logger(__name__)


def _error_response(
    status: int,
    code: str,
    message: str,
    details: list | None = None,
    request: Request | None = None,
) -> ORJSONResponse:
    body: dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
            "details": details or [],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }
    request_id = getattr(request.state, "request_id", None) if request is not None else None
    if request_id:
        body["error"]["request_id"] = request_id
    return ORJSONResponse(status_code=status, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
        details = []
        for error in exc.errors():
            loc = ".".join(str(part) for part in error.get("loc", []))
            details.append({"field": loc, "message": error.get("msg", "")})
        return _error_response(422, "VALIDATION_ERROR", "Invalid request parameters", details, request)

    @app.exception_handler(SearchCancelledError)
    async def cancelled_handler(request: Request, exc: SearchCancelledError) -> ORJSONResponse:
        return _error_response(400, exc.error_code, exc.message, request=request)

    @app.exception_handler(InvalidQueryError)
    async def invalid_query_handler(request: Request, exc: InvalidQueryError) -> ORJSONResponse:
        return _error_response(400, exc.error_code, exc.message, request=request)

    @app.exception_handler(MalformedCommandError)
    async def malformed_handler(request: Request, exc: MalformedCommandError) -> ORJSONResponse:
        return _error_response(400, exc.error_code, exc.message, request=request)

    @app.exception_handler(DependencyUnavailableError)
    async def dependency_handler(request: Request, exc: DependencyUnavailableError) -> ORJSONResponse:
        logger.error("dependency_unavailable", error_code=exc.error_code, error=exc.message, **exc.context)
        return _error_response(503, exc.error_code, exc.message, request=request)

    @app.exception_handler(OfferSearchError)
    async def service_error_handler(request: Request, exc: OfferSearchError) -> ORJSONResponse:
        logger.error("unhandled_service_error", error_code=exc.error_code, error=exc.message)
        return _error_response(500, exc.error_code, exc.message, request=request)


__all__ = ["register_exception_handlers"]
