"""Search-as-you-type suggestions over the offer index."""
from __future__ import annotations

import asyncio
import functools
from typing import Any

import structlog
from pydantic import Field

from offer_search.domain.value_objects import UserContext
from offer_search.infrastructure.document_store import DocumentStore
from offer_search.search.access_filter import AccessFilterBuilder
from offer_search.search.searcher import CamelModel, run_cancellable
from offer_search.shared.exceptions import DocumentStoreError

logger = structlog.get_logger(__name__)


class AutocompleteRequest(CamelModel):
    term: str = ""
    max_results: int = Field(default=10, ge=1)


class AutocompleteSuggestion(CamelModel):
    value: str
    label: str
    id: str
    category: str = "offer"


class AutocompleteResult(CamelModel):
    success: bool = True
    suggestions: list[AutocompleteSuggestion] = Field(default_factory=list)
    error: str | None = None


class AutocompleteService:
    """Prefix-matches make, model, VIN and seller name for the caller."""

    FIELDS = [
        "vehicleMake.autocomplete",
        "vehicleModel.autocomplete",
        "vin.autocomplete",
        "sellerName.autocomplete",
    ]
    SOURCE_FIELDS = ["id", "vehicleYear", "vehicleMake", "vehicleModel", "vin"]

    def __init__(
        self,
        store: DocumentStore,
        access_filters: AccessFilterBuilder | None = None,
        max_results: int = 25,
    ) -> None:
        self._store = store
        self._access = access_filters or AccessFilterBuilder()
        self._max_results = max_results

    async def suggest(
        self,
        request: AutocompleteRequest,
        user: UserContext,
        cancel_event: asyncio.Event | None = None,
    ) -> AutocompleteResult:
        term = request.term.strip()
        if not term:
            return AutocompleteResult()

        query = functools.partial(
            self._store.query,
            filter=self._access.build_filter(user),
            full_text={
                "multi_match": {
                    "query": term,
                    "fields": list(self.FIELDS),
                    "type": "bool_prefix",
                    "fuzziness": "AUTO",
                }
            },
            size=min(request.max_results, self._max_results),
            source_includes=list(self.SOURCE_FIELDS),
        )
        try:
            response = await run_cancellable(query, cancel_event)
        except DocumentStoreError as exc:
            logger.error("autocomplete_failed", term=term, error=exc.message)
            return AutocompleteResult(success=False, error=exc.message)

        suggestions = [self._suggestion(hit.id, hit.source) for hit in response.hits]
        logger.debug("autocomplete_completed", term=term, returned=len(suggestions))
        return AutocompleteResult(suggestions=suggestions)

    @staticmethod
    def _suggestion(document_id: str, source: dict[str, Any]) -> AutocompleteSuggestion:
        make = source.get("vehicleMake") or ""
        model = source.get("vehicleModel") or ""
        year = source.get("vehicleYear") or ""
        vin = source.get("vin") or ""
        return AutocompleteSuggestion(
            value=f"{make} {model} - {vin}".strip(),
            label=" ".join(p for p in (year, make, model) if p),
            id=document_id,
        )


__all__ = [
    "AutocompleteRequest",
    "AutocompleteResult",
    "AutocompleteService",
    "AutocompleteSuggestion",
]
