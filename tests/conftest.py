"""Shared fixtures for all test suites."""
from __future__ import annotations

import os

import pytest

from offer_search.domain.value_objects import UserContext
from offer_search.infrastructure.document_store.memory import InMemoryDocumentStore
from offer_search.search import AccessFilterBuilder, SearchOrchestrator
from offer_search.sync import ViewSynchronizer
from tests.fixtures.factories import FakeEntityDataProvider

# Force testing environment
os.environ["OFFER_SEARCH_ENVIRONMENT"] = "testing"
os.environ["OFFER_SEARCH_STORE_BACKEND"] = "memory"
os.environ["OFFER_SEARCH_SYNC_INGRESS_ENABLED"] = "false"


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def provider() -> FakeEntityDataProvider:
    return FakeEntityDataProvider()


@pytest.fixture
def synchronizer(store: InMemoryDocumentStore, provider: FakeEntityDataProvider) -> ViewSynchronizer:
    return ViewSynchronizer(store, provider, fanout_page_size=2)


@pytest.fixture
def orchestrator(store: InMemoryDocumentStore) -> SearchOrchestrator:
    return SearchOrchestrator(store, AccessFilterBuilder())


@pytest.fixture
def agent() -> UserContext:
    return UserContext.create("agent", "AG1")


@pytest.fixture
def seller() -> UserContext:
    return UserContext.create("seller", "S1")


@pytest.fixture
def buyer() -> UserContext:
    return UserContext.create("buyer", "B1")


@pytest.fixture
def carrier() -> UserContext:
    return UserContext.create("carrier", "C1")
