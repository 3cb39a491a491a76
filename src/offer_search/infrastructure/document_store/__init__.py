"""Document store port and its adapters.

The store holds one JSON document per offer and answers Elasticsearch
query DSL.  Two adapters implement the port:

- :class:`~offer_search.infrastructure.document_store.elasticsearch.ElasticsearchDocumentStore`
  for production;
- :class:`~offer_search.infrastructure.document_store.memory.InMemoryDocumentStore`
  for tests and local development.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class StoreHit(BaseModel):
    """One matching document.

    ``inner_hits`` maps an inner-hit name (e.g. ``visible_purchases``) to the
    nested objects that matched under that name.
    """

    id: str
    score: float | None = None
    source: dict[str, Any] = Field(default_factory=dict)
    inner_hits: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)


class AggregationBucket(BaseModel):
    key: str
    count: int


class StoreResponse(BaseModel):
    """Normalised result of :meth:`DocumentStore.query`."""

    total: int = 0
    hits: list[StoreHit] = Field(default_factory=list)
    aggregations: dict[str, list[AggregationBucket]] = Field(default_factory=dict)
    took_ms: float = 0.0


class DocumentStore(ABC):
    """Persistence port for offer documents."""

    @abstractmethod
    async def ensure_index(self) -> bool:
        """Create the index when missing. Returns ``True`` if it was created."""

    @abstractmethod
    async def upsert(self, document_id: str, source: dict[str, Any]) -> None: ...

    @abstractmethod
    async def get(self, document_id: str) -> dict[str, Any] | None: ...

    @abstractmethod
    async def delete(self, document_id: str) -> bool:
        """Delete a document. Returns ``False`` when it did not exist."""

    @abstractmethod
    async def query(
        self,
        *,
        filter: dict[str, Any] | None = None,
        full_text: dict[str, Any] | None = None,
        sort: list[Any] | None = None,
        from_: int = 0,
        size: int = 10,
        aggregations: dict[str, Any] | None = None,
        source_includes: list[str] | None = None,
    ) -> StoreResponse:
        """Run a query.

        Args:
            filter: Non-scoring clause placed in ``bool.filter``.
            full_text: Scoring clause placed in ``bool.must``.
            sort: Elasticsearch sort clauses.
            from_: Offset of the first hit.
            size: Maximum number of hits.
            aggregations: Elasticsearch ``aggs`` body.
            source_includes: Restrict the returned ``_source`` fields.
        """

    @abstractmethod
    async def ping(self) -> bool: ...

    @abstractmethod
    async def close(self) -> None: ...


def term_filter(field: str, value: Any) -> dict[str, Any]:
    return {"term": {field: value}}


def nested_filter(path: str, query: dict[str, Any]) -> dict[str, Any]:
    return {"nested": {"path": path, "query": query}}


def nested_term_filter(path: str, field: str, value: Any) -> dict[str, Any]:
    """Match documents with at least one ``path`` element whose ``field`` equals *value*."""
    return nested_filter(path, term_filter(f"{path}.{field}", value))


def compose_query(filter: dict[str, Any] | None, full_text: dict[str, Any] | None) -> dict[str, Any]:
    """Combine the scoring and filter clauses into one query body."""
    if filter is None and full_text is None:
        return {"match_all": {}}
    clauses: dict[str, Any] = {}
    if full_text is not None:
        clauses["must"] = [full_text]
    if filter is not None:
        clauses["filter"] = [filter]
    return {"bool": clauses}


__all__ = [
    "AggregationBucket",
    "DocumentStore",
    "StoreHit",
    "StoreResponse",
    "compose_query",
    "nested_filter",
    "nested_term_filter",
    "term_filter",
]
