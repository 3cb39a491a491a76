"""Unit tests for role-based access filters and per-role projection."""
from __future__ import annotations

import pytest

from offer_search.domain.value_objects import EntityKind, UserContext
from offer_search.infrastructure.document_store.memory import InMemoryDocumentStore
from offer_search.search.access_filter import (
    MATCH_ALL,
    MATCH_NONE,
    VISIBLE_PURCHASES,
    VISIBLE_TRANSPORTS,
    AccessFilterBuilder,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

DOCUMENTS = {
    "O1": {
        "id": "O1",
        "offerId": "O1",
        "sellerId": "S1",
        "seller": {"id": "S1", "name": "Acme Motors", "email": "sales@acme.test"},
        "purchases": [
            {"id": "P1", "offerId": "O1", "buyerId": "B1"},
            {"id": "P2", "offerId": "O1", "buyerId": "B2"},
        ],
        "transports": [
            {"id": "T1", "purchaseId": "P1", "carrierId": "C1"},
            {"id": "T2", "purchaseId": "P2", "carrierId": "C2"},
        ],
    },
    "O2": {
        "id": "O2",
        "offerId": "O2",
        "sellerId": "S2",
        "purchases": [{"id": "P3", "offerId": "O2", "buyerId": "B1"}],
        "transports": [],
    },
    # Orphaned purchase: no offerId, must stay invisible to its buyer.
    "O3": {
        "id": "O3",
        "offerId": "O3",
        "sellerId": "S3",
        "purchases": [{"id": "P9", "offerId": None, "buyerId": "B1"}],
        "transports": [{"id": "T9", "purchaseId": None, "carrierId": "C1"}],
    },
}


@pytest.fixture
def builder() -> AccessFilterBuilder:
    return AccessFilterBuilder(inner_hits_size=10)


async def _seeded_store() -> InMemoryDocumentStore:
    store = InMemoryDocumentStore()
    for document_id, source in DOCUMENTS.items():
        await store.upsert(document_id, source)
    return store


async def _visible(builder: AccessFilterBuilder, user: UserContext) -> dict[str, dict]:
    store = await _seeded_store()
    response = await store.query(filter=builder.build_filter(user), sort=[{"id": "asc"}], size=50)
    return {hit.id: builder.project(user, hit.source, hit.inner_hits) for hit in response.hits}


async def _lookup(builder: AccessFilterBuilder, user: UserContext, kind: str, entity_id: str) -> dict[str, dict]:
    store = await _seeded_store()
    response = await store.query(
        filter=builder.build_lookup_filter(user, EntityKind(kind), entity_id), sort=[{"id": "asc"}], size=50
    )
    return {hit.id: builder.project(user, hit.source, hit.inner_hits) for hit in response.hits}


# ---------------------------------------------------------------------------
# Filter shape
# ---------------------------------------------------------------------------

class TestBuildFilter:

    def test_agent_matches_all(self, builder: AccessFilterBuilder) -> None:
        assert builder.build_filter(UserContext.create("agent")) == MATCH_ALL

    def test_unknown_role_matches_none(self, builder: AccessFilterBuilder) -> None:
        assert builder.build_filter(UserContext.create("admin", "S1")) == MATCH_NONE

    def test_empty_account_matches_none(self, builder: AccessFilterBuilder) -> None:
        assert builder.build_filter(UserContext.create("seller", "")) == MATCH_NONE

    def test_seller_is_term_on_seller_id(self, builder: AccessFilterBuilder) -> None:
        assert builder.build_filter(UserContext.create("seller", "S1")) == {"term": {"sellerId": "S1"}}

    def test_buyer_is_nested_with_inner_hits(self, builder: AccessFilterBuilder) -> None:
        nested = builder.build_filter(UserContext.create("buyer", "B1"))["nested"]
        assert nested["path"] == "purchases"
        assert nested["inner_hits"] == {"name": VISIBLE_PURCHASES, "size": 10}
        assert {"exists": {"field": "purchases.offerId"}} in nested["query"]["bool"]["filter"]

    def test_carrier_requires_purchase_reference(self, builder: AccessFilterBuilder) -> None:
        nested = builder.build_filter(UserContext.create("carrier", "C1"))["nested"]
        assert nested["path"] == "transports"
        assert nested["inner_hits"]["name"] == VISIBLE_TRANSPORTS
        assert {"exists": {"field": "transports.purchaseId"}} in nested["query"]["bool"]["filter"]

    def test_filter_is_deterministic(self, builder: AccessFilterBuilder) -> None:
        user = UserContext.create("buyer", "B1")
        assert builder.build_filter(user) == builder.build_filter(user)


class TestComposition:

    def test_combine_ignores_none(self) -> None:
        clause = {"term": {"status": "active"}}
        assert AccessFilterBuilder.combine(None, clause) == clause
        assert AccessFilterBuilder.combine(None, None) is None

    def test_combine_ands_filters(self) -> None:
        a, b = {"term": {"a": 1}}, {"term": {"b": 2}}
        assert AccessFilterBuilder.combine(a, b) == {"bool": {"filter": [a, b]}}

    def test_any_of_ors_filters(self) -> None:
        a, b = {"term": {"a": 1}}, {"term": {"b": 2}}
        assert AccessFilterBuilder.any_of(a, b) == {"bool": {"should": [a, b], "minimum_should_match": 1}}


# ---------------------------------------------------------------------------
# Visibility against a store
# ---------------------------------------------------------------------------

class TestVisibility:

    @pytest.mark.asyncio
    async def test_agent_sees_everything(self, builder: AccessFilterBuilder) -> None:
        visible = await _visible(builder, UserContext.create("agent", "A1"))
        assert set(visible) == {"O1", "O2", "O3"}
        assert len(visible["O1"]["purchases"]) == 2

    @pytest.mark.asyncio
    async def test_seller_sees_own_offers_only(self, builder: AccessFilterBuilder) -> None:
        assert set(await _visible(builder, UserContext.create("seller", "S1"))) == {"O1"}
        assert set(await _visible(builder, UserContext.create("seller", "S2"))) == {"O2"}

    @pytest.mark.asyncio
    async def test_buyer_excludes_orphaned_purchases(self, builder: AccessFilterBuilder) -> None:
        visible = await _visible(builder, UserContext.create("buyer", "B1"))
        assert set(visible) == {"O1", "O2"}

    @pytest.mark.asyncio
    async def test_buyer_projection_hides_other_buyers(self, builder: AccessFilterBuilder) -> None:
        visible = await _visible(builder, UserContext.create("buyer", "B1"))
        assert [p["id"] for p in visible["O1"]["purchases"]] == ["P1"]
        assert [t["id"] for t in visible["O1"]["transports"]] == ["T1"]

    @pytest.mark.asyncio
    async def test_carrier_sees_only_own_transports(self, builder: AccessFilterBuilder) -> None:
        visible = await _visible(builder, UserContext.create("carrier", "C1"))
        assert set(visible) == {"O1"}
        assert visible["O1"]["purchases"] == []
        assert [t["id"] for t in visible["O1"]["transports"]] == ["T1"]

    @pytest.mark.asyncio
    async def test_unknown_role_sees_nothing(self, builder: AccessFilterBuilder) -> None:
        assert await _visible(builder, UserContext.create("guest", "B1")) == {}

    @pytest.mark.asyncio
    async def test_buyer_without_account_sees_nothing(self, builder: AccessFilterBuilder) -> None:
        assert await _visible(builder, UserContext.create("buyer", "")) == {}


class TestProjection:

    def test_seller_source_is_untouched(self) -> None:
        source = DOCUMENTS["O1"]
        assert AccessFilterBuilder.project(UserContext.create("seller", "S1"), source, {}) is source

    def test_projection_does_not_mutate_source(self) -> None:
        source = DOCUMENTS["O1"]
        AccessFilterBuilder.project(UserContext.create("carrier", "C1"), source, {VISIBLE_TRANSPORTS: []})
        assert len(source["purchases"]) == 2

    @pytest.mark.parametrize("role,account", [("buyer", "B1"), ("carrier", "C1")])
    def test_buyer_and_carrier_lose_seller_profile(self, role: str, account: str) -> None:
        projected = AccessFilterBuilder.project(UserContext.create(role, account), DOCUMENTS["O1"], {})
        assert projected["seller"] is None
        assert projected["sellerId"] == "S1"

    @pytest.mark.asyncio
    async def test_carrier_offer_lookup_hides_seller_email(self, builder: AccessFilterBuilder) -> None:
        visible = await _lookup(builder, UserContext.create("carrier", "C1"), "offer", "O1")
        assert visible["O1"]["seller"] is None


# ---------------------------------------------------------------------------
# Entity lookups
# ---------------------------------------------------------------------------

class TestLookupFilter:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role,account,kind,entity_id,expected", [
        # Buyer B1 shares O1 with buyer B2.
        ("buyer", "B1", "buyer", "B2", []),
        ("buyer", "B1", "purchase", "P2", []),
        ("buyer", "B1", "purchase", "P1", ["O1"]),
        ("buyer", "B1", "buyer", "B1", ["O1", "O2"]),
        ("buyer", "B1", "offer", "O1", ["O1"]),
        ("buyer", "B1", "transport", "T1", []),
        ("buyer", "B1", "seller", "S1", []),
        ("buyer", "B1", "carrier", "C1", []),
        # Carrier C1 transports P1 on O1, next to P2 and T2 of others.
        ("carrier", "C1", "buyer", "B1", []),
        ("carrier", "C1", "purchase", "P1", ["O1"]),
        ("carrier", "C1", "purchase", "P2", []),
        ("carrier", "C1", "transport", "T1", ["O1"]),
        ("carrier", "C1", "transport", "T2", []),
        ("carrier", "C1", "carrier", "C2", []),
        ("carrier", "C1", "carrier", "C1", ["O1"]),
        ("carrier", "C1", "seller", "S1", []),
        ("agent", "", "buyer", "B2", ["O1"]),
        ("seller", "S1", "purchase", "P3", []),
        ("seller", "S2", "purchase", "P3", ["O2"]),
        ("guest", "B1", "purchase", "P1", []),
    ])
    async def test_lookup_never_confirms_foreign_entities(
        self, builder: AccessFilterBuilder, role: str, account: str, kind: str, entity_id: str, expected: list[str]
    ) -> None:
        visible = await _lookup(builder, UserContext.create(role, account), kind, entity_id)
        assert sorted(visible) == expected

    @pytest.mark.asyncio
    async def test_buyer_purchase_lookup_projects_that_purchase(self, builder: AccessFilterBuilder) -> None:
        visible = await _lookup(builder, UserContext.create("buyer", "B1"), "purchase", "P1")
        assert [p["id"] for p in visible["O1"]["purchases"]] == ["P1"]
        assert [t["id"] for t in visible["O1"]["transports"]] == ["T1"]

    def test_buyer_entity_condition_shares_the_nested_element(self, builder: AccessFilterBuilder) -> None:
        clause = builder.build_lookup_filter(UserContext.create("buyer", "B1"), EntityKind.PURCHASE, "P1")
        conditions = clause["nested"]["query"]["bool"]["filter"]
        assert {"term": {"purchases.buyerId": "B1"}} in conditions
        assert {"term": {"purchases.id": "P1"}} in conditions
