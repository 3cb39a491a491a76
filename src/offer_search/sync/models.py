"""Result types reported by the view synchronizer."""
from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from offer_search.domain.value_objects import EntityKind, SyncCommand, SyncOperation


class SyncStatus(StrEnum):
    """What a command did to the view."""

    APPLIED = "applied"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    DELETED = "deleted"


class SyncOutcome(BaseModel):
    """Summary of one applied command.

    Attributes:
        kind: Entity stream of the command.
        operation: Create, update or delete.
        document_id: ``documentId`` carried by the command (may be empty).
        status: ``skipped`` means a referential gap (the parent document was
            not materialized); ``unchanged`` means every target already held
            the resulting state.
        touched: Ids of the documents that were written or deleted.
    """

    kind: EntityKind
    operation: SyncOperation
    document_id: str = ""
    status: SyncStatus
    touched: list[str] = Field(default_factory=list)

    @classmethod
    def for_command(
        cls,
        command: SyncCommand,
        status: SyncStatus,
        touched: list[str] | None = None,
    ) -> SyncOutcome:
        return cls(
            kind=command.entity_kind,
            operation=command.operation,
            document_id=command.document_id,
            status=status,
            touched=touched or [],
        )


__all__ = ["SyncOutcome", "SyncStatus"]
