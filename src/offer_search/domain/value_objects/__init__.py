"""Value objects: caller identity and sync commands."""
from __future__ import annotations

from offer_search.domain.value_objects.sync_command import EntityKind, SyncCommand, SyncOperation
from offer_search.domain.value_objects.user_context import UserContext, UserRole

__all__ = [
    "EntityKind",
    "SyncCommand",
    "SyncOperation",
    "UserContext",
    "UserRole",
]
