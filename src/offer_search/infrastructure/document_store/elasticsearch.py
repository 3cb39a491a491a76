"""Elasticsearch document store adapter.

Stores one offer document per id in a single index whose mapping nests
``purchases`` and ``transports`` so that per-element conditions (e.g. "a
purchase of *this* buyer that references an offer") hold inside one
element, and so that access filters can return the matching elements as
inner hits.

Every transport or API failure is re-raised as
:class:`~offer_search.shared.exceptions.DocumentStoreError`; a missing
document is not a failure.
"""
from __future__ import annotations

import copy
import time
from typing import Any

import structlog
from elasticsearch import ApiError, AsyncElasticsearch, NotFoundError, TransportError

from offer_search.config import Settings
from offer_search.infrastructure.document_store import (
    AggregationBucket,
    DocumentStore,
    StoreHit,
    StoreResponse,
    compose_query,
)
from offer_search.shared.exceptions import DocumentStoreError

logger = structlog.get_logger(__name__)

_KEYWORD = {"type": "keyword"}
_TEXT_WITH_KEYWORD = {
    "type": "text",
    "fields": {"keyword": {"type": "keyword", "ignore_above": 256}},
}
_AUTOCOMPLETE_TEXT = {
    "type": "text",
    "fields": {
        "keyword": {"type": "keyword", "ignore_above": 256},
        "autocomplete": {"type": "text", "analyzer": "autocomplete", "search_analyzer": "standard"},
    },
}


def _profile(*extra: str) -> dict[str, Any]:
    properties: dict[str, Any] = {
        "id": _KEYWORD,
        "name": _TEXT_WITH_KEYWORD,
        "email": _KEYWORD,
        "createdAt": {"type": "date"},
        "lastModifiedAt": {"type": "date"},
    }
    for name in extra:
        properties[name] = _TEXT_WITH_KEYWORD
    return {"type": "object", "properties": properties}


def _body(response: Any) -> dict[str, Any]:
    return getattr(response, "body", response)


class ElasticsearchDocumentStore(DocumentStore):
    """:class:`DocumentStore` backed by ``AsyncElasticsearch``.

    Features:
    - Nested purchases and transports with inner-hit projection
    - Keyword ids; text fields with ``.keyword`` sub-fields for exact
      filters, sorting and aggregations
    - Edge-ngram ``.autocomplete`` sub-fields on make, model, VIN and seller
      name, queried by the autocomplete service
    """

    INDEX_SETTINGS: dict[str, Any] = {
        "settings": {
            "number_of_shards": 3,
            "number_of_replicas": 1,
            "analysis": {
                "analyzer": {
                    "autocomplete": {
                        "type": "custom",
                        "tokenizer": "autocomplete_tokenizer",
                        "filter": ["lowercase"],
                    }
                },
                "tokenizer": {
                    "autocomplete_tokenizer": {
                        "type": "edge_ngram",
                        "min_gram": 1,
                        "max_gram": 20,
                        "token_chars": ["letter", "digit"],
                    }
                },
            },
        },
        "mappings": {
            "properties": {
                "id": _KEYWORD,
                "offerId": _KEYWORD,
                "sellerId": _KEYWORD,
                "sellerNetworkId": _KEYWORD,
                "sellerName": _AUTOCOMPLETE_TEXT,
                "vin": _AUTOCOMPLETE_TEXT,
                "vehicleYear": _KEYWORD,
                "vehicleMake": _AUTOCOMPLETE_TEXT,
                "vehicleModel": _AUTOCOMPLETE_TEXT,
                "vehicleTrim": _TEXT_WITH_KEYWORD,
                "vehicleBodyType": _TEXT_WITH_KEYWORD,
                "vehicleFuelType": _TEXT_WITH_KEYWORD,
                "vehicleZipCode": _KEYWORD,
                "vehicleDoorCount": {"type": "integer"},
                "mileage": {"type": "integer"},
                "isMileageUnverifiable": {"type": "boolean"},
                "status": _KEYWORD,
                "createdAt": {"type": "date"},
                "lastModifiedAt": {"type": "date"},
                "searchableText": {"type": "text"},
                "tags": {"type": "flattened"},
                "seller": _profile(),
                "purchases": {
                    "type": "nested",
                    "properties": {
                        "id": _KEYWORD,
                        "buyerId": _KEYWORD,
                        "offerId": _KEYWORD,
                        "purchaseDate": {"type": "date"},
                        "amount": {"type": "double"},
                        "buyerInfo": {"type": "text"},
                        "status": _KEYWORD,
                        "createdAt": {"type": "date"},
                        "lastModifiedAt": {"type": "date"},
                        "buyer": _profile("phone", "company"),
                    },
                },
                "transports": {
                    "type": "nested",
                    "properties": {
                        "id": _KEYWORD,
                        "carrierId": _KEYWORD,
                        "purchaseId": _KEYWORD,
                        "pickupLocation": {"type": "text"},
                        "deliveryLocation": {"type": "text"},
                        "scheduleDate": {"type": "date"},
                        "vehicleDetails": {"type": "text"},
                        "status": _KEYWORD,
                        "createdAt": {"type": "date"},
                        "lastModifiedAt": {"type": "date"},
                        "carrier": _profile("phone"),
                    },
                },
            }
        },
    }

    def __init__(
        self,
        client: AsyncElasticsearch,
        index_name: str = "offers",
        shards: int = 3,
        replicas: int = 1,
        refresh: bool | str = "wait_for",
    ) -> None:
        self._client = client
        self._index_name = index_name
        self._shards = shards
        self._replicas = replicas
        self._refresh = refresh

    @classmethod
    def from_settings(cls, settings: Settings) -> ElasticsearchDocumentStore:
        basic_auth = None
        if settings.elasticsearch_username:
            basic_auth = (settings.elasticsearch_username, settings.elasticsearch_password or "")
        client = AsyncElasticsearch(
            settings.elasticsearch_url,
            basic_auth=basic_auth,
            request_timeout=settings.elasticsearch_request_timeout,
        )
        return cls(
            client,
            index_name=settings.offer_index_name,
            shards=settings.offer_index_shards,
            replicas=settings.offer_index_replicas,
            refresh=settings.elasticsearch_refresh,
        )

    @property
    def index_name(self) -> str:
        return self._index_name

    def _failure(self, operation: str, exc: Exception, **context: Any) -> DocumentStoreError:
        logger.error(
            "document_store_request_failed",
            operation=operation,
            index=self._index_name,
            error=str(exc),
            **context,
        )
        return DocumentStoreError(
            f"Document store {operation} failed: {exc}",
            context={"operation": operation, "index": self._index_name, **context},
        )

    # -- index management ---------------------------------------------------

    async def ensure_index(self) -> bool:
        """Create the offer index when missing."""
        try:
            exists = await self._client.indices.exists(index=self._index_name)
            if exists:
                return False
            body = copy.deepcopy(self.INDEX_SETTINGS)
            body["settings"]["number_of_shards"] = self._shards
            body["settings"]["number_of_replicas"] = self._replicas
            await self._client.indices.create(
                index=self._index_name,
                settings=body["settings"],
                mappings=body["mappings"],
            )
        except (ApiError, TransportError) as exc:
            raise self._failure("ensure_index", exc) from exc
        logger.info("offer_index_created", index=self._index_name, shards=self._shards)
        return True

    # -- documents ----------------------------------------------------------

    async def upsert(self, document_id: str, source: dict[str, Any]) -> None:
        try:
            await self._client.index(
                index=self._index_name,
                id=document_id,
                document=source,
                refresh=self._refresh,
            )
        except (ApiError, TransportError) as exc:
            raise self._failure("upsert", exc, document_id=document_id) from exc

    async def get(self, document_id: str) -> dict[str, Any] | None:
        try:
            response = await self._client.get(index=self._index_name, id=document_id)
        except NotFoundError:
            return None
        except (ApiError, TransportError) as exc:
            raise self._failure("get", exc, document_id=document_id) from exc
        return _body(response).get("_source")

    async def delete(self, document_id: str) -> bool:
        try:
            await self._client.delete(index=self._index_name, id=document_id, refresh=self._refresh)
        except NotFoundError:
            return False
        except (ApiError, TransportError) as exc:
            raise self._failure("delete", exc, document_id=document_id) from exc
        return True

    # -- search -------------------------------------------------------------

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
        start = time.perf_counter()
        kwargs: dict[str, Any] = {
            "index": self._index_name,
            "query": compose_query(filter, full_text),
            "from_": from_,
            "size": size,
            "track_total_hits": True,
        }
        if sort:
            kwargs["sort"] = sort
        if aggregations:
            kwargs["aggs"] = aggregations
        if source_includes:
            kwargs["source"] = source_includes

        try:
            response = _body(await self._client.search(**kwargs))
        except (ApiError, TransportError) as exc:
            raise self._failure("query", exc) from exc

        hits_section = response.get("hits", {})
        total = hits_section.get("total", {})
        total_count = total.get("value", 0) if isinstance(total, dict) else int(total)

        hits = [
            StoreHit(
                id=hit["_id"],
                score=hit.get("_score"),
                source=hit.get("_source", {}),
                inner_hits={
                    name: [inner.get("_source", {}) for inner in section.get("hits", {}).get("hits", [])]
                    for name, section in hit.get("inner_hits", {}).items()
                },
            )
            for hit in hits_section.get("hits", [])
        ]

        buckets: dict[str, list[AggregationBucket]] = {}
        for name, section in response.get("aggregations", {}).items():
            buckets[name] = [
                AggregationBucket(key=str(b.get("key_as_string", b.get("key"))), count=b.get("doc_count", 0))
                for b in section.get("buckets", [])
            ]

        took = response.get("took")
        return StoreResponse(
            total=total_count,
            hits=hits,
            aggregations=buckets,
            took_ms=float(took) if took is not None else round((time.perf_counter() - start) * 1000, 2),
        )

    # -- lifecycle ----------------------------------------------------------

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (ApiError, TransportError) as exc:
            logger.warning("document_store_ping_failed", error=str(exc))
            return False

    async def close(self) -> None:
        await self._client.close()
        logger.info("elasticsearch_client_closed", index=self._index_name)


__all__ = ["ElasticsearchDocumentStore"]
