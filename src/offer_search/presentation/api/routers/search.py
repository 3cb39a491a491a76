"""Search endpoints for the offer search API.

Provides role-filtered full-text search, autocomplete, single-offer lookup,
reverse lookup by embedded entity and index bootstrap.  The caller's role,
account id and user id travel in the request body (search) or as query
parameters (everything else).
"""
from __future__ import annotations

import asyncio
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel

from offer_search.domain.value_objects import UserContext
from offer_search.infrastructure.document_store import DocumentStore
from offer_search.presentation.api.dependencies import (
    get_autocomplete,
    get_orchestrator,
    get_store,
    get_user_context,
    request_cancellation,
)
from offer_search.search import (
    AutocompleteRequest,
    AutocompleteResult,
    AutocompleteService,
    SearchOrchestrator,
    SearchRequest,
    SearchResult,
)

logger = structlog.get_logger("offer_search.search_api")

router = APIRouter(prefix="/api/search", tags=["search"])


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class SearchApiRequest(SearchRequest):
    """Search body: the query plus the caller's identity."""

    role: str | None = None
    account_id: str | None = None
    user_id: str | None = None


class IndexResponse(BaseModel):
    created: bool


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", response_model=SearchResult, summary="Search offers")
async def search_offers(
    body: SearchApiRequest,
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
    cancel_event: asyncio.Event = Depends(request_cancellation),
) -> Any:
    """Run a search; 503 when the store failed, 400 when cancelled."""
    user = UserContext.create(body.role, body.account_id, body.user_id)
    result = await orchestrator.search(body, user, cancel_event)
    if not result.success:
        return ORJSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=result.model_dump(mode="json", by_alias=True),
        )
    return result


@router.get("/autocomplete", response_model=AutocompleteResult, summary="Autocomplete suggestions")
async def autocomplete(
    term: str = Query(..., min_length=1, max_length=200),
    max_results: int = Query(default=10, alias="maxResults", ge=1),
    user: UserContext = Depends(get_user_context),
    service: AutocompleteService = Depends(get_autocomplete),
    cancel_event: asyncio.Event = Depends(request_cancellation),
) -> Any:
    result = await service.suggest(AutocompleteRequest(term=term, max_results=max_results), user, cancel_event)
    if not result.success:
        return ORJSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=result.model_dump(mode="json", by_alias=True),
        )
    return result


@router.get("/offers/{document_id}", summary="Get one offer document")
async def get_offer(
    document_id: str = Path(..., min_length=1),
    user: UserContext = Depends(get_user_context),
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
    cancel_event: asyncio.Event = Depends(request_cancellation),
) -> dict[str, Any]:
    """Return the document if the caller may see it; 404 otherwise."""
    document = await orchestrator.get_offer(document_id, user, cancel_event)
    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "OFFER_NOT_FOUND", "message": f"Offer {document_id} not found"},
        )
    return document


@router.get("/entities/{kind}/{entity_id}", response_model=SearchResult, summary="Documents embedding an entity")
async def find_by_entity(
    kind: str = Path(...),
    entity_id: str = Path(..., min_length=1),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, alias="pageSize", ge=1),
    user: UserContext = Depends(get_user_context),
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
    cancel_event: asyncio.Event = Depends(request_cancellation),
) -> SearchResult:
    return await orchestrator.find_by_entity(
        kind,
        entity_id,
        user,
        page=page,
        page_size=page_size,
        cancel_event=cancel_event,
    )


@router.post("/index", response_model=IndexResponse, summary="Create the offer index if missing")
async def ensure_index(store: DocumentStore = Depends(get_store)) -> IndexResponse:
    created = await store.ensure_index()
    logger.info("index_ensured", created=created)
    return IndexResponse(created=created)
