"""Search orchestrator for the offer index.

Provides :class:`SearchOrchestrator`, which turns a :class:`SearchRequest`
and the caller's :class:`UserContext` into one store query:

1. synonym expansion of the query text;
2. entity pattern detection (reported as hints only);
3. weighted, fuzzy ``multi_match`` over vin / make / model / seller / text;
4. structured filters AND the caller's access filter in ``bool.filter``;
5. pagination, sorting and optional facet aggregations;
6. hits shaped into :class:`SearchResultItem` and projected per role.
"""
from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from offer_search.domain.value_objects import EntityKind, UserContext
from offer_search.infrastructure.document_store import (
    AggregationBucket,
    DocumentStore,
    StoreResponse,
    nested_filter,
    term_filter,
)
from offer_search.search.access_filter import AccessFilterBuilder
from offer_search.search.entity_detection import EntityDetector
from offer_search.search.synonyms import SynonymExpander
from offer_search.shared.exceptions import DocumentStoreError, InvalidQueryError, SearchCancelledError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class SortField(StrEnum):
    """Fields available for sorting search results."""

    CREATED_AT = "createdAt"
    LAST_MODIFIED_AT = "lastModifiedAt"
    MILEAGE = "mileage"
    VEHICLE_YEAR = "vehicleYear"


class SortOrder(StrEnum):
    ASC = "asc"
    DESC = "desc"


_UNMAPPED_TYPES: dict[SortField, str] = {
    SortField.CREATED_AT: "date",
    SortField.LAST_MODIFIED_AT: "date",
    SortField.MILEAGE: "integer",
    SortField.VEHICLE_YEAR: "keyword",
}

SEARCHABLE_KINDS = (EntityKind.OFFER, EntityKind.PURCHASE, EntityKind.TRANSPORT)


# ---------------------------------------------------------------------------
# Query / result models
# ---------------------------------------------------------------------------

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SearchRequest(CamelModel):
    """Describes a search against the offer index.

    Attributes:
        query: Free text; empty means "everything visible".
        entity_kind: ``offer`` (all documents), ``purchase`` (documents with
            a purchase) or ``transport`` (documents with a transport).
        status: Exact offer status.
        page: 1-based page number.
        page_size: Hits per page; the orchestrator default when unset,
            capped at its maximum.
        sort_by: Explicit sort field; relevance then recency when unset.
        include_aggregations: Return facet buckets.
    """

    query: str = ""
    entity_kind: EntityKind | None = None
    status: str | None = None
    page: int = Field(default=1, ge=1)
    page_size: int | None = Field(default=None, ge=1)
    sort_by: SortField | None = None
    sort_order: SortOrder = SortOrder.DESC
    include_aggregations: bool = False

    @field_validator("entity_kind", mode="before")
    @classmethod
    def _normalise_kind(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower() or None
        return value

    @field_validator("entity_kind")
    @classmethod
    def _searchable_kind(cls, value: EntityKind | None) -> EntityKind | None:
        if value is not None and value not in SEARCHABLE_KINDS:
            raise ValueError(f"entity kind must be one of {[k.value for k in SEARCHABLE_KINDS]}")
        return value


class SearchResultItem(CamelModel):
    id: str
    score: float | None = None
    document: dict[str, Any] = Field(default_factory=dict)


class SearchResult(CamelModel):
    """Container returned by every search operation.

    ``total`` and ``aggregations`` cover the full access-filtered match set,
    not just the returned page.
    """

    success: bool = True
    total: int = 0
    items: list[SearchResultItem] = Field(default_factory=list)
    aggregations: dict[str, list[AggregationBucket]] = Field(default_factory=dict)
    took_ms: float = 0.0
    page: int = 1
    page_size: int = 20
    expanded_query: str = ""
    query_hints: dict[str, str] = Field(default_factory=dict)
    error: str | None = None


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

async def run_cancellable(
    operation: Callable[[], Awaitable[T]],
    cancel_event: asyncio.Event | None,
) -> T:
    """Await *operation* unless *cancel_event* fires first.

    When the event wins, the in-flight operation is cancelled and
    :class:`SearchCancelledError` is raised.
    """
    if cancel_event is None:
        return await operation()
    if cancel_event.is_set():
        raise SearchCancelledError()

    task = asyncio.ensure_future(operation())
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    if task.cancelled():
        raise SearchCancelledError()
    return task.result()


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class SearchOrchestrator:
    """Read-only facade over the document store. Holds no per-request state."""

    FULL_TEXT_FIELDS = ["vin^3", "vehicleMake^2", "vehicleModel^2", "sellerName^1.5", "searchableText"]

    AGGREGATIONS: dict[str, Any] = {
        "makes": {"terms": {"field": "vehicleMake.keyword", "size": 20}},
        "models": {"terms": {"field": "vehicleModel.keyword", "size": 20}},
        "years": {"terms": {"field": "vehicleYear", "size": 20}},
        "status": {"terms": {"field": "status", "size": 10}},
        "mileage_ranges": {
            "range": {
                "field": "mileage",
                "ranges": [
                    {"key": "0-50k", "to": 50000},
                    {"key": "50k-100k", "from": 50000, "to": 100000},
                    {"key": "100k-150k", "from": 100000, "to": 150000},
                    {"key": "150k+", "from": 150000},
                ],
            }
        },
    }

    def __init__(
        self,
        store: DocumentStore,
        access_filters: AccessFilterBuilder | None = None,
        synonyms: SynonymExpander | None = None,
        detector: EntityDetector | None = None,
        default_page_size: int = 20,
        max_page_size: int = 100,
    ) -> None:
        self._store = store
        self._access = access_filters or AccessFilterBuilder()
        self._synonyms = synonyms or SynonymExpander()
        self._detector = detector or EntityDetector()
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size
        logger.info(
            "search_orchestrator_initialised",
            default_page_size=default_page_size,
            max_page_size=max_page_size,
        )

    # -- primary search -----------------------------------------------------

    async def search(
        self,
        request: SearchRequest,
        user: UserContext,
        cancel_event: asyncio.Event | None = None,
    ) -> SearchResult:
        """Execute a search and return the requested page.

        Returns:
            A :class:`SearchResult`; ``success`` is ``False`` when the store
            failed.

        Raises:
            SearchCancelledError: *cancel_event* fired before the store answered.
        """
        start = time.perf_counter()
        page_size = min(request.page_size or self._default_page_size, self._max_page_size)
        text = request.query.strip()
        expanded = self._synonyms.expand_query(text)
        hints = self._detector.detect(text)

        full_text = self.full_text_query(expanded) if expanded else None
        filter = self._access.combine(self._structured_filter(request), self._access.build_filter(user))
        query = functools.partial(
            self._store.query,
            filter=filter,
            full_text=full_text,
            sort=self._sort(request, has_text=full_text is not None),
            from_=(request.page - 1) * page_size,
            size=page_size,
            aggregations=self.AGGREGATIONS if request.include_aggregations else None,
        )

        try:
            response: StoreResponse = await run_cancellable(query, cancel_event)
        except SearchCancelledError:
            logger.info("search_cancelled", role=user.role.value, query=text)
            raise
        except DocumentStoreError as exc:
            logger.error("search_failed", role=user.role.value, query=text, error=exc.message)
            return SearchResult(
                success=False,
                error=exc.message,
                page=request.page,
                page_size=page_size,
                expanded_query=expanded,
                query_hints=hints,
                took_ms=round((time.perf_counter() - start) * 1000, 2),
            )

        items = [
            SearchResultItem(
                id=hit.id,
                score=hit.score,
                document=self._access.project(user, hit.source, hit.inner_hits),
            )
            for hit in response.hits
        ]
        elapsed = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "search_completed",
            role=user.role.value,
            query=text,
            total=response.total,
            returned=len(items),
            elapsed_ms=elapsed,
        )
        return SearchResult(
            total=response.total,
            items=items,
            aggregations=response.aggregations,
            took_ms=elapsed,
            page=request.page,
            page_size=page_size,
            expanded_query=expanded,
            query_hints=hints,
        )

    # -- supplementary reads ------------------------------------------------

    async def get_offer(
        self,
        document_id: str,
        user: UserContext,
        cancel_event: asyncio.Event | None = None,
    ) -> dict[str, Any] | None:
        """Return one document if the caller may see it, else ``None``."""
        filter = self._access.combine({"ids": {"values": [document_id]}}, self._access.build_filter(user))
        response = await run_cancellable(
            functools.partial(self._store.query, filter=filter, size=1),
            cancel_event,
        )
        if not response.hits:
            return None
        hit = response.hits[0]
        return self._access.project(user, hit.source, hit.inner_hits)

    async def find_by_entity(
        self,
        kind: EntityKind | str,
        entity_id: str,
        user: UserContext,
        page: int = 1,
        page_size: int = 20,
        cancel_event: asyncio.Event | None = None,
    ) -> SearchResult:
        """List the visible documents that embed the given entity."""
        try:
            kind = EntityKind(str(kind).strip().lower())
        except ValueError as exc:
            raise InvalidQueryError(f"Unknown entity kind: {kind}", context={"kind": str(kind)}) from exc

        page_size = min(max(page_size, 1), self._max_page_size)
        page = max(page, 1)
        filter = self._access.build_lookup_filter(user, kind, entity_id)
        start = time.perf_counter()
        response = await run_cancellable(
            functools.partial(
                self._store.query,
                filter=filter,
                sort=self._sort(SearchRequest(), has_text=False),
                from_=(page - 1) * page_size,
                size=page_size,
            ),
            cancel_event,
        )
        return SearchResult(
            total=response.total,
            items=[
                SearchResultItem(
                    id=hit.id,
                    score=hit.score,
                    document=self._access.project(user, hit.source, hit.inner_hits),
                )
                for hit in response.hits
            ],
            took_ms=round((time.perf_counter() - start) * 1000, 2),
            page=page,
            page_size=page_size,
        )

    # -- query building -----------------------------------------------------

    @classmethod
    def full_text_query(cls, text: str) -> dict[str, Any]:
        return {
            "multi_match": {
                "query": text,
                "fields": list(cls.FULL_TEXT_FIELDS),
                "type": "best_fields",
                "fuzziness": "AUTO",
            }
        }

    @staticmethod
    def _structured_filter(request: SearchRequest) -> dict[str, Any] | None:
        filters: list[dict[str, Any] | None] = []
        if request.entity_kind is EntityKind.PURCHASE:
            filters.append(nested_filter("purchases", {"exists": {"field": "purchases.id"}}))
        elif request.entity_kind is EntityKind.TRANSPORT:
            filters.append(nested_filter("transports", {"exists": {"field": "transports.id"}}))
        if request.status:
            filters.append(term_filter("status", request.status))
        return AccessFilterBuilder.combine(*filters)

    @staticmethod
    def _sort(request: SearchRequest, has_text: bool) -> list[Any]:
        if request.sort_by is not None:
            return [{
                request.sort_by.value: {
                    "order": request.sort_order.value,
                    "missing": "_last",
                    "unmapped_type": _UNMAPPED_TYPES[request.sort_by],
                }
            }]
        recency = {"createdAt": {"order": "desc", "missing": "_last", "unmapped_type": "date"}}
        if has_text:
            return ["_score", recency]
        return [recency]


__all__ = [
    "SearchOrchestrator",
    "SearchRequest",
    "SearchResult",
    "SearchResultItem",
    "SortField",
    "SortOrder",
    "run_cancellable",
]
