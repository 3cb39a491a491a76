"""External service clients -- entity data provider over the upstream HTTP APIs."""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog

from offer_search.config import Settings
from offer_search.domain.value_objects import EntityKind
from offer_search.shared.exceptions import EntityProviderError

logger = structlog.get_logger(__name__)


class EntityDataProvider(ABC):
    """Read-only access to the systems of record for each entity kind."""

    @abstractmethod
    async def get(self, kind: EntityKind, entity_id: str) -> dict[str, Any] | None:
        """Fetch one entity snapshot; ``None`` when the owner does not know it."""

    @abstractmethod
    async def list_by_foreign_key(self, kind: EntityKind, field: str, value: str) -> list[dict[str, Any]]:
        """List entities of *kind* whose *field* references *value*.

        Supported pairs: purchases by ``offer``; transports by ``offer`` or
        ``purchase``.
        """

    async def close(self) -> None:
        return None


class HttpEntityDataProvider(EntityDataProvider):
    """Async HTTP client with retry for the seller, buyer, carrier and transport services.

    Offers are owned by the seller service, purchases by the buyer service.
    """

    _RESOURCES: dict[EntityKind, tuple[str, str]] = {
        EntityKind.SELLER: ("seller", "sellers"),
        EntityKind.OFFER: ("seller", "offers"),
        EntityKind.BUYER: ("buyer", "buyers"),
        EntityKind.PURCHASE: ("buyer", "purchases"),
        EntityKind.CARRIER: ("carrier", "carriers"),
        EntityKind.TRANSPORT: ("transport", "transports"),
    }

    _FOREIGN_KEYS: frozenset[tuple[EntityKind, str]] = frozenset({
        (EntityKind.PURCHASE, "offer"),
        (EntityKind.TRANSPORT, "offer"),
        (EntityKind.TRANSPORT, "purchase"),
    })

    def __init__(
        self,
        base_urls: dict[str, str],
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_seconds: float = 0.2,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_urls = {service: url.rstrip("/") for service, url in base_urls.items()}
        self._max_retries = max(1, max_retries)
        self._backoff_seconds = backoff_seconds
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> HttpEntityDataProvider:
        return cls(
            base_urls={
                "seller": settings.seller_service_url,
                "buyer": settings.buyer_service_url,
                "carrier": settings.carrier_service_url,
                "transport": settings.transport_service_url,
            },
            timeout=settings.http_timeout_seconds,
            max_retries=settings.http_max_retries,
        )

    def _url(self, kind: EntityKind, *segments: str) -> str:
        service, resource = self._RESOURCES[kind]
        path = "/".join([resource, *segments])
        return f"{self._base_urls[service]}/api/{path}"

    async def get(self, kind: EntityKind, entity_id: str) -> dict[str, Any] | None:
        return await self._fetch(self._url(kind, entity_id), kind=kind.value, entity_id=entity_id)

    async def list_by_foreign_key(self, kind: EntityKind, field: str, value: str) -> list[dict[str, Any]]:
        if (kind, field) not in self._FOREIGN_KEYS:
            raise ValueError(f"No listing of {kind.value} by {field}")
        result = await self._fetch(self._url(kind, f"by-{field}", value), kind=kind.value, entity_id=value)
        if result is None:
            return []
        return list(result) if isinstance(result, list) else [result]

    async def _fetch(self, url: str, **context: Any) -> Any:
        for attempt in range(self._max_retries):
            last_attempt = attempt == self._max_retries - 1
            try:
                response = await self._client.get(url)
                if response.status_code == 404:
                    return None
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                logger.warning("http_error", url=url, status=status, attempt=attempt + 1)
                if status < 500 or last_attempt:
                    raise EntityProviderError(
                        f"Upstream returned {status} for {url}",
                        context={"url": url, "status": status, **context},
                    ) from e
            except httpx.RequestError as e:
                logger.warning("http_request_error", url=url, error=str(e), attempt=attempt + 1)
                if last_attempt:
                    raise EntityProviderError(
                        f"Upstream unreachable: {url}",
                        context={"url": url, "error": str(e), **context},
                    ) from e
            if self._backoff_seconds:
                await asyncio.sleep(self._backoff_seconds * (2 ** attempt))
        return None

    async def close(self) -> None:
        await self._client.aclose()


__all__ = ["EntityDataProvider", "HttpEntityDataProvider"]
