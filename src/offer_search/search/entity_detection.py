"""Recognises VINs, phone numbers and ids typed into the search box.

Detection only produces hints for the caller; it never changes scoring.
"""
from __future__ import annotations

import re
from enum import StrEnum


class EntityPattern(StrEnum):
    VIN = "vin"
    PHONE = "phone"
    ID = "id"


PATTERNS: tuple[tuple[EntityPattern, re.Pattern[str]], ...] = (
    (EntityPattern.VIN, re.compile(r"^[A-HJ-NPR-Z0-9]{17}$", re.IGNORECASE)),
    (EntityPattern.PHONE, re.compile(r"^\+?[\d\s\-()]{10,}$")),
    (EntityPattern.ID, re.compile(r"^[A-Z0-9\-]{8,}$", re.IGNORECASE)),
)


class EntityDetector:
    """Matches the whole trimmed query against each pattern."""

    def detect(self, query: str) -> dict[str, str]:
        text = (query or "").strip()
        if not text:
            return {}
        return {pattern.value: text for pattern, regex in PATTERNS if regex.match(text)}

    def is_vin(self, query: str) -> bool:
        return EntityPattern.VIN.value in self.detect(query)

    def is_phone(self, query: str) -> bool:
        return EntityPattern.PHONE.value in self.detect(query)

    def is_id(self, query: str) -> bool:
        return EntityPattern.ID.value in self.detect(query)


__all__ = ["PATTERNS", "EntityDetector", "EntityPattern"]
