"""Static synonym expansion for search queries."""
from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

SYNONYMS: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "car": ("vehicle", "automobile", "auto"),
    "vehicle": ("car", "automobile", "auto"),
    "truck": ("pickup", "lorry"),
    "suv": ("sport utility vehicle", "sport-utility"),
})


class SynonymExpander:
    """Expands each query term with its synonyms.

    Output order: each term, then its synonyms, then the next term.
    Duplicates are dropped case-insensitively, keeping the first occurrence.
    """

    def __init__(self, table: Mapping[str, tuple[str, ...]] = SYNONYMS) -> None:
        self._table = table

    def expand(self, text: str) -> list[str]:
        seen: set[str] = set()
        expanded: list[str] = []
        for term in text.split():
            for candidate in (term, *self._table.get(term.lower(), ())):
                key = candidate.casefold()
                if key not in seen:
                    seen.add(key)
                    expanded.append(candidate)
        return expanded

    def expand_query(self, text: str) -> str:
        return " ".join(self.expand(text))


__all__ = ["SYNONYMS", "SynonymExpander"]
