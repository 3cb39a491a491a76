"""Sync command value objects -- one command per upstream entity change."""
from __future__ import annotations

import json
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class EntityKind(StrEnum):
    """Entity streams that feed the offer document."""

    OFFER = "offer"
    PURCHASE = "purchase"
    TRANSPORT = "transport"
    SELLER = "seller"
    BUYER = "buyer"
    CARRIER = "carrier"


class SyncOperation(StrEnum):
    """Change applied to the upstream entity."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncCommand(BaseModel):
    """A single change event addressed to the offer view.

    Attributes:
        document_id: Offer document the producer associates with the change.
            For offers this is the id the document is stored under.
        entity_kind: Which entity stream the change belongs to.
        operation: Create, update or delete.
        payload: Decoded entity snapshot. Producers may send it as an object
            or as a JSON-encoded string.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    document_id: str = Field(
        default="",
        validation_alias=AliasChoices("documentId", "elasticSearchId", "ElasticSearchId", "document_id"),
    )
    entity_kind: EntityKind = Field(
        validation_alias=AliasChoices("entityKind", "objectType", "ObjectType", "entity_kind"),
    )
    operation: SyncOperation = Field(
        validation_alias=AliasChoices("operation", "Operation"),
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("payload", "Payload"),
    )

    @field_validator("entity_kind", "operation", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("document_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return "" if value is None else str(value)

    @field_validator("payload", mode="before")
    @classmethod
    def _decode_payload(cls, value: Any) -> Any:
        if value is None or value == "":
            return {}
        if isinstance(value, (str, bytes)):
            return json.loads(value)
        return value

    @property
    def partition_key(self) -> str:
        """Key used to keep per-entity ordering in the consumer pool."""
        return self.document_id or str(self.payload.get("id", ""))
