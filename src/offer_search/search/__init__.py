"""Read path: access filters, query planning and autocomplete."""
from __future__ import annotations

from offer_search.search.access_filter import AccessFilterBuilder
from offer_search.search.autocomplete import (
    AutocompleteRequest,
    AutocompleteResult,
    AutocompleteService,
    AutocompleteSuggestion,
)
from offer_search.search.entity_detection import EntityDetector
from offer_search.search.searcher import (
    SearchOrchestrator,
    SearchRequest,
    SearchResult,
    SearchResultItem,
    SortField,
    SortOrder,
)
from offer_search.search.synonyms import SynonymExpander

__all__ = [
    "AccessFilterBuilder",
    "AutocompleteRequest",
    "AutocompleteResult",
    "AutocompleteService",
    "AutocompleteSuggestion",
    "EntityDetector",
    "SearchOrchestrator",
    "SearchRequest",
    "SearchResult",
    "SearchResultItem",
    "SortField",
    "SortOrder",
    "SynonymExpander",
]
