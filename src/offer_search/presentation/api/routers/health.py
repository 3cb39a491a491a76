"""Health check endpoints for the offer search API.

Provides Kubernetes-style liveness and readiness checks.  Readiness pings
the document store.
"""
from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from offer_search.infrastructure.document_store import DocumentStore
from offer_search.presentation.api.dependencies import get_store

logger = structlog.get_logger("offer_search.health")

router = APIRouter(tags=["health"])

# ---------------------------------------------------------------------------
# Module-level state -- set during application lifespan
# ---------------------------------------------------------------------------

_startup_time: float = time.monotonic()


def reset_startup_time() -> None:
    """Reset the startup clock (called during application lifespan startup)."""
    global _startup_time
    _startup_time = time.monotonic()


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class LivenessResponse(BaseModel):
    status: str = "ok"


class DependencyCheck(BaseModel):
    """Health status of a single dependency."""

    name: str
    status: str = "ok"
    latency_ms: float | None = None


class ReadinessResponse(BaseModel):
    status: str = Field(description="Overall readiness: ok | unavailable")
    uptime_seconds: float = Field(description="Seconds since application startup.")
    checks: list[DependencyCheck] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/healthz",
    response_model=LivenessResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness check",
)
async def liveness() -> LivenessResponse:
    return LivenessResponse(status="ok")


@router.get(
    "/readyz",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Returns 503 when the document store does not answer a ping.",
)
async def readiness(response: Response, store: DocumentStore = Depends(get_store)) -> ReadinessResponse:
    start = time.perf_counter()
    reachable = await store.ping()
    check = DependencyCheck(
        name="document_store",
        status="ok" if reachable else "unavailable",
        latency_ms=round((time.perf_counter() - start) * 1000, 2),
    )

    if not reachable:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        logger.warning("readiness_degraded", checks=[check.name])

    return ReadinessResponse(
        status=check.status,
        uptime_seconds=round(time.monotonic() - _startup_time, 2),
        checks=[check],
    )
