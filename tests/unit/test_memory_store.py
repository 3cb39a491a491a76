"""Unit tests for the in-memory document store and its query evaluator."""
from __future__ import annotations

import pytest

from offer_search.infrastructure.document_store import compose_query, nested_term_filter, term_filter
from offer_search.infrastructure.document_store.memory import InMemoryDocumentStore
from offer_search.shared.exceptions import InvalidQueryError


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

async def _store() -> InMemoryDocumentStore:
    store = InMemoryDocumentStore()
    await store.upsert("d1", {
        "id": "d1", "sellerId": "S1", "vehicleMake": "Toyota", "mileage": 10000, "status": "active",
        "purchases": [{"id": "P1", "buyerId": "B1", "offerId": "O1"}, {"id": "P2", "buyerId": "B2", "offerId": "O1"}],
    })
    await store.upsert("d2", {
        "id": "d2", "sellerId": "S2", "vehicleMake": "Honda", "mileage": 90000, "status": "sold",
        "purchases": [],
    })
    await store.upsert("d3", {
        "id": "d3", "sellerId": "S1", "vehicleMake": "Toyota", "status": "active",
        "purchases": [{"id": "P3", "buyerId": "B1", "offerId": None}],
    })
    return store


async def _ids(store: InMemoryDocumentStore, **kwargs) -> list[str]:
    response = await store.query(sort=[{"id": "asc"}], size=100, **kwargs)
    return [hit.id for hit in response.hits]


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestDocuments:

    async def test_get_returns_copy(self) -> None:
        store = await _store()
        source = await store.get("d1")
        source["status"] = "mutated"
        assert (await store.get("d1"))["status"] == "active"

    async def test_get_missing(self) -> None:
        assert await InMemoryDocumentStore().get("nope") is None

    async def test_delete(self) -> None:
        store = await _store()
        assert await store.delete("d1") is True
        assert await store.delete("d1") is False
        assert len(store) == 2

    async def test_ensure_index_reports_creation_once(self) -> None:
        store = InMemoryDocumentStore()
        assert await store.ensure_index() is True
        assert await store.ensure_index() is False

    async def test_ping(self) -> None:
        assert await InMemoryDocumentStore().ping() is True


# ---------------------------------------------------------------------------
# Query evaluation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestQueries:

    async def test_match_all(self) -> None:
        assert await _ids(await _store()) == ["d1", "d2", "d3"]

    async def test_term(self) -> None:
        assert await _ids(await _store(), filter=term_filter("sellerId", "S1")) == ["d1", "d3"]

    async def test_keyword_suffix_is_ignored(self) -> None:
        assert await _ids(await _store(), filter=term_filter("vehicleMake.keyword", "Honda")) == ["d2"]

    async def test_terms_and_range(self) -> None:
        store = await _store()
        assert await _ids(store, filter={"terms": {"status": ["sold", "archived"]}}) == ["d2"]
        assert await _ids(store, filter={"range": {"mileage": {"gte": 50000}}}) == ["d2"]

    async def test_nested_requires_one_element_to_match_all_conditions(self) -> None:
        clause = {
            "nested": {
                "path": "purchases",
                "query": {"bool": {"filter": [
                    {"term": {"purchases.buyerId": "B1"}},
                    {"exists": {"field": "purchases.offerId"}},
                ]}},
            }
        }
        assert await _ids(await _store(), filter=clause) == ["d1"]

    async def test_nested_inner_hits(self) -> None:
        clause = {
            "nested": {
                "path": "purchases",
                "query": {"term": {"purchases.buyerId": "B2"}},
                "inner_hits": {"name": "mine", "size": 5},
            }
        }
        response = await (await _store()).query(filter=clause)
        assert [hit.id for hit in response.hits] == ["d1"]
        assert response.hits[0].inner_hits == {"mine": [{"id": "P2", "buyerId": "B2", "offerId": "O1"}]}

    async def test_nested_term_filter(self) -> None:
        assert await _ids(await _store(), filter=nested_term_filter("purchases", "id", "P3")) == ["d3"]

    async def test_bool_must_not_and_should(self) -> None:
        store = await _store()
        assert await _ids(store, filter={"bool": {"must_not": [{"term": {"status": "sold"}}]}}) == ["d1", "d3"]
        should = {"bool": {"should": [{"term": {"sellerId": "S2"}}, {"term": {"status": "sold"}}]}}
        assert await _ids(store, filter=should) == ["d2"]

    async def test_match_none(self) -> None:
        assert await _ids(await _store(), filter={"match_none": {}}) == []

    async def test_ids(self) -> None:
        assert await _ids(await _store(), filter={"ids": {"values": ["d2", "zz"]}}) == ["d2"]

    async def test_unsupported_clause(self) -> None:
        with pytest.raises(InvalidQueryError):
            await (await _store()).query(filter={"script": {"source": "true"}})

    async def test_multi_match_scores_boosted_fields_higher(self) -> None:
        store = InMemoryDocumentStore()
        await store.upsert("a", {"id": "a", "title": "honda", "body": ""})
        await store.upsert("b", {"id": "b", "title": "", "body": "honda"})
        response = await store.query(
            full_text={"multi_match": {"query": "honda", "fields": ["title^3", "body"]}},
        )
        assert [hit.id for hit in response.hits] == ["a", "b"]
        assert response.hits[0].score > response.hits[1].score


# ---------------------------------------------------------------------------
# Paging, sorting, aggregation, projection
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestResponseShaping:

    async def test_paging_reports_full_total(self) -> None:
        response = await (await _store()).query(sort=[{"id": "asc"}], from_=1, size=1)
        assert response.total == 3
        assert [hit.id for hit in response.hits] == ["d2"]

    async def test_missing_sort_values_go_last(self) -> None:
        store = await _store()
        asc = await _ids_sorted(store, [{"mileage": {"order": "asc", "missing": "_last"}}])
        desc = await _ids_sorted(store, [{"mileage": {"order": "desc", "missing": "_last"}}])
        assert asc == ["d1", "d2", "d3"]
        assert desc == ["d2", "d1", "d3"]

    async def test_terms_aggregation(self) -> None:
        response = await (await _store()).query(aggregations={"makes": {"terms": {"field": "vehicleMake.keyword"}}})
        assert [(b.key, b.count) for b in response.aggregations["makes"]] == [("Toyota", 2), ("Honda", 1)]

    async def test_source_includes(self) -> None:
        response = await (await _store()).query(filter={"ids": {"values": ["d1"]}}, source_includes=["id", "status"])
        assert response.hits[0].source == {"id": "d1", "status": "active"}


async def _ids_sorted(store: InMemoryDocumentStore, sort: list) -> list[str]:
    response = await store.query(sort=sort, size=10)
    return [hit.id for hit in response.hits]


class TestComposeQuery:

    def test_empty_is_match_all(self) -> None:
        assert compose_query(None, None) == {"match_all": {}}

    def test_filter_and_full_text(self) -> None:
        f, t = {"term": {"a": 1}}, {"multi_match": {"query": "x"}}
        assert compose_query(f, t) == {"bool": {"must": [t], "filter": [f]}}
