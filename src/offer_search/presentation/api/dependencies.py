"""FastAPI dependency injection providers.

Centralised DI for the service graph (store, provider, synchronizer,
orchestrator), the caller's identity and read-path cancellation.
"""
from __future__ import annotations

import asyncio
from typing import AsyncGenerator

import structlog
from fastapi import Query, Request

from offer_search.config import Settings
from offer_search.domain.value_objects import UserContext
from offer_search.infrastructure.document_store import DocumentStore
from offer_search.infrastructure.document_store.elasticsearch import ElasticsearchDocumentStore
from offer_search.infrastructure.document_store.memory import InMemoryDocumentStore
from offer_search.infrastructure.external import EntityDataProvider, HttpEntityDataProvider
from offer_search.infrastructure.messaging import RedisStreamIngress
from offer_search.search import AccessFilterBuilder, AutocompleteService, SearchOrchestrator
from offer_search.shared.exceptions import ConfigurationError
from offer_search.sync import SyncWorkerPool, ViewSynchronizer

logger = structlog.get_logger(__name__)

_DISCONNECT_POLL_SECONDS = 0.1


# ---------------------------------------------------------------------------
# Service graph
# ---------------------------------------------------------------------------

class Services:
    """Every long-lived collaborator of one process, wired from settings."""

    def __init__(self, settings: Settings, store: DocumentStore, provider: EntityDataProvider) -> None:
        self.settings = settings
        self.store = store
        self.provider = provider

        access = AccessFilterBuilder(inner_hits_size=settings.inner_hits_size)
        self.synchronizer = ViewSynchronizer(store, provider, fanout_page_size=settings.sync_fanout_page_size)
        self.sync_pool = SyncWorkerPool(
            self.synchronizer,
            partitions=settings.sync_partitions,
            queue_size=settings.sync_queue_size,
        )
        self.orchestrator = SearchOrchestrator(
            store,
            access,
            default_page_size=settings.search_default_page_size,
            max_page_size=settings.search_max_page_size,
        )
        self.autocomplete = AutocompleteService(store, access, max_results=settings.autocomplete_max_results)
        self.ingress: RedisStreamIngress | None = None
        if settings.sync_ingress_enabled:
            self.ingress = RedisStreamIngress.from_settings(settings, self.sync_pool)

    @classmethod
    def from_settings(cls, settings: Settings) -> Services:
        store: DocumentStore
        if settings.store_backend == "elasticsearch":
            store = ElasticsearchDocumentStore.from_settings(settings)
        elif settings.store_backend == "memory":
            store = InMemoryDocumentStore()
        else:
            raise ConfigurationError(
                f"Unknown store backend: {settings.store_backend}",
                context={"store_backend": settings.store_backend},
            )
        return cls(settings, store, HttpEntityDataProvider.from_settings(settings))

    async def start(self) -> None:
        await self.sync_pool.start()
        if self.ingress is not None:
            await self.ingress.start()

    async def close(self) -> None:
        if self.ingress is not None:
            await self.ingress.stop()
        await self.sync_pool.stop()
        if self.ingress is not None:
            await self.ingress.close()
        await self.provider.close()
        await self.store.close()


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

def get_services(request: Request) -> Services:
    return request.app.state.services


def get_orchestrator(request: Request) -> SearchOrchestrator:
    return get_services(request).orchestrator


def get_autocomplete(request: Request) -> AutocompleteService:
    return get_services(request).autocomplete


def get_store(request: Request) -> DocumentStore:
    return get_services(request).store


def get_user_context(
    role: str | None = Query(default=None),
    account_id: str | None = Query(default=None, alias="accountId"),
    user_id: str | None = Query(default=None, alias="userId"),
) -> UserContext:
    """Caller identity from query parameters. Unknown roles see nothing."""
    return UserContext.create(role, account_id, user_id)


async def request_cancellation(request: Request) -> AsyncGenerator[asyncio.Event, None]:
    """Yield an event that is set when the client disconnects."""
    event = asyncio.Event()

    async def watch() -> None:
        while not event.is_set():
            await asyncio.sleep(_DISCONNECT_POLL_SECONDS)
            if await request.is_disconnected():
                logger.info("client_disconnected", path=request.url.path)
                event.set()

    watcher = asyncio.create_task(watch())
    try:
        yield event
    finally:
        watcher.cancel()


__all__ = [
    "Services",
    "get_autocomplete",
    "get_orchestrator",
    "get_services",
    "get_store",
    "get_user_context",
    "request_cancellation",
]
