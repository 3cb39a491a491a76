"""View synchronizer -- applies sync commands to the offer view."""
from __future__ import annotations

from collections.abc import Mapping

import structlog

from offer_search.domain.value_objects import EntityKind, SyncCommand
from offer_search.infrastructure.document_store import DocumentStore
from offer_search.infrastructure.external import EntityDataProvider
from offer_search.shared.exceptions import MalformedCommandError
from offer_search.sync.handlers import HANDLER_TYPES, EntityHandler
from offer_search.sync.models import SyncOutcome

logger = structlog.get_logger(__name__)


class ViewSynchronizer:
    """Routes each command to the handler registered for its entity kind.

    Holds no mutable state of its own; concurrent ``apply`` calls only
    meet at the document store, where the last writer wins.
    """

    def __init__(
        self,
        store: DocumentStore,
        provider: EntityDataProvider,
        fanout_page_size: int = 1000,
        handler_types: Mapping[EntityKind, type[EntityHandler]] | None = None,
    ) -> None:
        self._handlers: dict[EntityKind, EntityHandler] = {
            kind: handler_type(store, provider, fanout_page_size)
            for kind, handler_type in (handler_types or HANDLER_TYPES).items()
        }

    def handler_for(self, kind: EntityKind) -> EntityHandler:
        handler = self._handlers.get(kind)
        if handler is None:
            raise MalformedCommandError(
                f"No handler registered for entity kind {kind.value!r}",
                context={"entity_kind": kind.value},
            )
        return handler

    async def apply(self, command: SyncCommand) -> SyncOutcome:
        """Apply one command. Safe to call again with the same command.

        Raises:
            MalformedCommandError: The payload cannot be decoded.
            DocumentStoreError: The store is unavailable.
            EntityProviderError: An upstream lookup failed.
        """
        handler = self.handler_for(command.entity_kind)
        logger.debug(
            "sync_command_received",
            entity_kind=command.entity_kind.value,
            operation=command.operation.value,
            document_id=command.document_id,
        )
        outcome = await handler.handle(command)
        logger.info(
            "sync_command_applied",
            entity_kind=outcome.kind.value,
            operation=outcome.operation.value,
            document_id=outcome.document_id,
            status=outcome.status.value,
            touched=len(outcome.touched),
        )
        return outcome


__all__ = ["ViewSynchronizer"]
