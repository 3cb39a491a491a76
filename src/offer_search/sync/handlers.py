"""Per-entity-kind merge logic for the offer view.

Each :class:`EntityHandler` subclass owns one entity stream and implements
``create`` / ``update`` / ``delete``.  Handlers never overwrite a whole
document blindly: every target is re-fetched by id, mutated field by field,
checked against the containment rules and written back only when its stored
form actually changed.  That makes every operation idempotent under
at-least-once delivery.

Reverse lookups ("which documents embed buyer B?") are store queries on the
embedding field, paged by ``fanout_page_size``.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, ClassVar, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from offer_search.domain.entities import (
    BuyerProfile,
    CarrierProfile,
    Offer,
    OfferDocument,
    Purchase,
    PurchaseRecord,
    SellerProfile,
    Transport,
    TransportRecord,
)
from offer_search.domain.value_objects import EntityKind, SyncCommand, SyncOperation
from offer_search.infrastructure.document_store import DocumentStore, nested_term_filter, term_filter
from offer_search.infrastructure.external import EntityDataProvider
from offer_search.shared.exceptions import MalformedCommandError
from offer_search.sync.models import SyncOutcome, SyncStatus

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


# ---------------------------------------------------------------------------
# Base handler
# ---------------------------------------------------------------------------

class EntityHandler(ABC):
    """Applies the commands of one entity stream to the offer view."""

    kind: ClassVar[EntityKind]

    def __init__(
        self,
        store: DocumentStore,
        provider: EntityDataProvider,
        fanout_page_size: int = 1000,
    ) -> None:
        self._store = store
        self._provider = provider
        self._page_size = fanout_page_size

    async def handle(self, command: SyncCommand) -> SyncOutcome:
        if command.operation is SyncOperation.CREATE:
            return await self.create(command)
        if command.operation is SyncOperation.UPDATE:
            return await self.update(command)
        return await self.delete(command)

    @abstractmethod
    async def create(self, command: SyncCommand) -> SyncOutcome: ...

    @abstractmethod
    async def update(self, command: SyncCommand) -> SyncOutcome: ...

    @abstractmethod
    async def delete(self, command: SyncCommand) -> SyncOutcome: ...

    # -- decoding -----------------------------------------------------------

    def _decode(self, model: type[M], command: SyncCommand) -> M:
        try:
            return model.model_validate(command.payload)
        except ValidationError as exc:
            raise MalformedCommandError(
                f"Undecodable {self.kind.value} payload",
                context={
                    "entity_kind": self.kind.value,
                    "document_id": command.document_id,
                    "errors": exc.errors(include_url=False, include_input=False),
                },
            ) from exc

    def _entity_id(self, command: SyncCommand, *keys: str) -> str:
        for key in ("id", *keys):
            value = command.payload.get(key)
            if value not in (None, ""):
                return str(value)
        raise MalformedCommandError(
            f"{self.kind.value} {command.operation.value} carries no entity id",
            context={"entity_kind": self.kind.value, "document_id": command.document_id},
        )

    # -- provider -----------------------------------------------------------

    async def _fetch_profile(self, kind: EntityKind, model: type[M], entity_id: str | None) -> M | None:
        if not entity_id:
            return None
        raw = await self._provider.get(kind, entity_id)
        if raw is None:
            return None
        return _snapshot(model, raw, kind=kind.value, entity_id=entity_id)

    # -- store --------------------------------------------------------------

    async def _load(self, document_id: str) -> OfferDocument | None:
        source = await self._store.get(document_id)
        return OfferDocument.from_source(source) if source is not None else None

    async def _save(self, document: OfferDocument) -> None:
        # A write that has been issued completes even if the caller is cancelled.
        await asyncio.shield(self._store.upsert(document.id, document.to_source()))

    async def _find(self, filter: dict[str, Any]) -> list[str]:
        """Return the ids of every document matching *filter*, page by page."""
        document_ids: list[str] = []
        offset = 0
        while True:
            response = await self._store.query(
                filter=filter,
                sort=[{"id": {"order": "asc"}}],
                from_=offset,
                size=self._page_size,
                source_includes=["id"],
            )
            document_ids.extend(hit.id for hit in response.hits)
            offset += len(response.hits)
            if not response.hits or offset >= response.total:
                return document_ids

    async def _mutate(
        self,
        document_ids: list[str],
        mutation: Callable[[OfferDocument], None],
    ) -> list[str]:
        """Re-fetch, mutate and conditionally write each document.

        Returns:
            Ids of the documents that were written.
        """
        changed: list[str] = []
        for document_id in document_ids:
            document = await self._load(document_id)
            if document is None:
                continue
            before = document.to_source()
            mutation(document)
            dropped = document.enforce_containment()
            if dropped:
                logger.warning("containment_violation_dropped", document_id=document_id, dropped=dropped)
            if document.to_source() == before:
                continue
            await self._save(document)
            changed.append(document_id)
        return changed

    def _outcome(self, command: SyncCommand, changed: list[str], success: SyncStatus = SyncStatus.APPLIED) -> SyncOutcome:
        status = success if changed else SyncStatus.UNCHANGED
        return SyncOutcome.for_command(command, status, changed)

    def _gap(self, command: SyncCommand, **context: Any) -> SyncOutcome:
        logger.warning(
            "referential_gap",
            entity_kind=self.kind.value,
            operation=command.operation.value,
            document_id=command.document_id,
            **context,
        )
        return SyncOutcome.for_command(command, SyncStatus.SKIPPED)


def _snapshot(model: type[M], raw: dict[str, Any], **context: Any) -> M | None:
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        logger.warning("provider_snapshot_invalid", model=model.__name__, error=str(exc), **context)
        return None


def _purchase_record(purchase: Purchase, buyer: BuyerProfile | None, existing: PurchaseRecord | None) -> PurchaseRecord:
    if buyer is None and existing is not None and existing.buyer is not None:
        if existing.buyer.id == purchase.buyer_id:
            buyer = existing.buyer
    return PurchaseRecord.model_validate({**purchase.model_dump(), "buyer": buyer})


def _transport_record(transport: Transport, existing: TransportRecord | None) -> TransportRecord:
    carrier = None
    if existing is not None and existing.carrier is not None and existing.carrier.id == transport.carrier_id:
        carrier = existing.carrier
    return TransportRecord.model_validate({**transport.model_dump(), "carrier": carrier})


# ---------------------------------------------------------------------------
# Offer
# ---------------------------------------------------------------------------

class OfferHandler(EntityHandler):
    """Materializes the document from the offer payload and its related records."""

    kind = EntityKind.OFFER

    async def create(self, command: SyncCommand) -> SyncOutcome:
        return await self._materialize(command)

    async def update(self, command: SyncCommand) -> SyncOutcome:
        return await self._materialize(command)

    async def delete(self, command: SyncCommand) -> SyncOutcome:
        document_id = command.document_id or self._entity_id(command, "offerId")
        removed = await asyncio.shield(self._store.delete(document_id))
        if not removed:
            logger.info("offer_document_already_absent", document_id=document_id)
            return SyncOutcome.for_command(command, SyncStatus.UNCHANGED)
        return SyncOutcome.for_command(command, SyncStatus.DELETED, [document_id])

    async def _materialize(self, command: SyncCommand) -> SyncOutcome:
        offer = self._decode(Offer, command)
        document_id = command.document_id
        if not document_id:
            raise MalformedCommandError(
                "Offer command carries no documentId",
                context={"offer_id": offer.offer_id},
            )

        stored = await self._load(document_id)
        before = stored.to_source() if stored is not None else None
        document = stored or OfferDocument(id=document_id, offer_id=offer.offer_id)
        document.apply_offer(offer)

        await self._merge_seller(document)
        await self._merge_purchases(document)
        await self._merge_transports(document)

        dropped = document.enforce_containment()
        if dropped:
            logger.warning("containment_violation_dropped", document_id=document_id, dropped=dropped)
        document.refresh_searchable_text()

        if document.to_source() == before:
            return SyncOutcome.for_command(command, SyncStatus.UNCHANGED)
        await self._save(document)
        return SyncOutcome.for_command(command, SyncStatus.APPLIED, [document_id])

    async def _merge_seller(self, document: OfferDocument) -> None:
        seller = await self._fetch_profile(EntityKind.SELLER, SellerProfile, document.seller_id)
        if seller is not None:
            document.set_seller(seller)

    async def _merge_purchases(self, document: OfferDocument) -> None:
        raws = await self._provider.list_by_foreign_key(EntityKind.PURCHASE, "offer", document.offer_id)
        for raw in raws:
            purchase = _snapshot(Purchase, raw, document_id=document.id)
            if purchase is None:
                continue
            if purchase.offer_id is None:
                purchase = purchase.model_copy(update={"offer_id": document.offer_id})
            if purchase.offer_id != document.offer_id:
                logger.warning(
                    "provider_purchase_foreign",
                    document_id=document.id,
                    purchase_id=purchase.id,
                    offer_id=purchase.offer_id,
                )
                continue
            buyer = await self._fetch_profile(EntityKind.BUYER, BuyerProfile, purchase.buyer_id)
            document.upsert_purchase(_purchase_record(purchase, buyer, document.find_purchase(purchase.id)))

    async def _merge_transports(self, document: OfferDocument) -> None:
        raws = await self._provider.list_by_foreign_key(EntityKind.TRANSPORT, "offer", document.offer_id)
        for raw in raws:
            transport = _snapshot(Transport, raw, document_id=document.id)
            if transport is None:
                continue
            if transport.purchase_id is None or document.find_purchase(transport.purchase_id) is None:
                logger.warning(
                    "referential_gap",
                    entity_kind=EntityKind.TRANSPORT.value,
                    document_id=document.id,
                    transport_id=transport.id,
                    purchase_id=transport.purchase_id,
                )
                continue
            document.upsert_transport(_transport_record(transport, document.find_transport(transport.id)))


# ---------------------------------------------------------------------------
# Purchase
# ---------------------------------------------------------------------------

class PurchaseHandler(EntityHandler):
    """Places purchases into the document of their offer."""

    kind = EntityKind.PURCHASE

    async def create(self, command: SyncCommand) -> SyncOutcome:
        purchase = self._decode(Purchase, command)
        if not purchase.offer_id:
            return self._gap(command, purchase_id=purchase.id, reason="missing offerId")
        owners = await self._find(term_filter("offerId", purchase.offer_id))
        if not owners:
            return self._gap(command, purchase_id=purchase.id, offer_id=purchase.offer_id)

        buyer = await self._fetch_profile(EntityKind.BUYER, BuyerProfile, purchase.buyer_id)
        changed = await self._mutate(
            owners,
            lambda doc: doc.upsert_purchase(_purchase_record(purchase, buyer, doc.find_purchase(purchase.id))),
        )
        return self._outcome(command, changed)

    async def update(self, command: SyncCommand) -> SyncOutcome:
        purchase = self._decode(Purchase, command)
        holders = await self._find(nested_term_filter("purchases", "id", purchase.id))
        if not holders:
            logger.info("purchase_not_embedded", purchase_id=purchase.id, offer_id=purchase.offer_id)
            return SyncOutcome.for_command(command, SyncStatus.SKIPPED)

        buyer = await self._fetch_profile(EntityKind.BUYER, BuyerProfile, purchase.buyer_id)
        moved: list[tuple[PurchaseRecord, list[TransportRecord]]] = []

        def replace(doc: OfferDocument) -> None:
            existing = doc.find_purchase(purchase.id)
            if purchase.offer_id and purchase.offer_id != doc.offer_id:
                carried = [t for t in doc.transports if t.purchase_id == purchase.id]
                doc.remove_purchase(purchase.id)
                moved.append((_purchase_record(purchase, buyer, existing), carried))
                return
            update = purchase if purchase.offer_id else purchase.model_copy(update={"offer_id": doc.offer_id})
            doc.upsert_purchase(_purchase_record(update, buyer, existing))

        changed = await self._mutate(holders, replace)
        if moved:
            changed += await self._reparent(command, moved)
        return self._outcome(command, changed)

    async def _reparent(
        self,
        command: SyncCommand,
        moved: list[tuple[PurchaseRecord, list[TransportRecord]]],
    ) -> list[str]:
        record, transports = moved[0]
        owners = await self._find(term_filter("offerId", record.offer_id))
        if not owners:
            self._gap(command, purchase_id=record.id, offer_id=record.offer_id, reason="moved to unmaterialized offer")
            return []

        def place(doc: OfferDocument) -> None:
            doc.upsert_purchase(record)
            for transport in transports:
                doc.upsert_transport(transport)

        logger.info("purchase_reparented", purchase_id=record.id, offer_id=record.offer_id)
        return await self._mutate(owners, place)

    async def delete(self, command: SyncCommand) -> SyncOutcome:
        purchase_id = self._entity_id(command, "purchaseId")
        holders = await self._find(nested_term_filter("purchases", "id", purchase_id))

        def remove(doc: OfferDocument) -> None:
            dropped = doc.remove_purchase(purchase_id)
            if dropped:
                logger.info("transports_cascaded", document_id=doc.id, purchase_id=purchase_id, transports=dropped)

        changed = await self._mutate(holders, remove)
        return self._outcome(command, changed, SyncStatus.DELETED)


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class TransportHandler(EntityHandler):
    """Places transports next to their purchase.

    Carriers are not fetched here; the carrier stream fills them in.
    """

    kind = EntityKind.TRANSPORT

    async def create(self, command: SyncCommand) -> SyncOutcome:
        transport = self._decode(Transport, command)
        if not transport.purchase_id:
            return self._gap(command, transport_id=transport.id, reason="missing purchaseId")
        holders = await self._find(nested_term_filter("purchases", "id", transport.purchase_id))
        if not holders:
            return self._gap(command, transport_id=transport.id, purchase_id=transport.purchase_id)

        changed = await self._mutate(
            holders,
            lambda doc: doc.upsert_transport(_transport_record(transport, doc.find_transport(transport.id))),
        )
        return self._outcome(command, changed)

    async def update(self, command: SyncCommand) -> SyncOutcome:
        transport = self._decode(Transport, command)
        holders = await self._find(nested_term_filter("transports", "id", transport.id))
        if not holders:
            logger.info("transport_not_embedded", transport_id=transport.id, purchase_id=transport.purchase_id)
            return SyncOutcome.for_command(command, SyncStatus.SKIPPED)

        moved: list[TransportRecord] = []

        def replace(doc: OfferDocument) -> None:
            existing = doc.find_transport(transport.id)
            if transport.purchase_id and doc.find_purchase(transport.purchase_id) is None:
                doc.remove_transport(transport.id)
                moved.append(_transport_record(transport, existing))
                return
            update = transport
            if not transport.purchase_id and existing is not None:
                update = transport.model_copy(update={"purchase_id": existing.purchase_id})
            doc.upsert_transport(_transport_record(update, existing))

        changed = await self._mutate(holders, replace)
        if moved:
            record = moved[0]
            owners = await self._find(nested_term_filter("purchases", "id", record.purchase_id))
            if owners:
                logger.info("transport_reparented", transport_id=record.id, purchase_id=record.purchase_id)
                changed += await self._mutate(owners, lambda doc: doc.upsert_transport(record))
            else:
                self._gap(command, transport_id=record.id, purchase_id=record.purchase_id, reason="moved")
        return self._outcome(command, changed)

    async def delete(self, command: SyncCommand) -> SyncOutcome:
        transport_id = self._entity_id(command, "transportId")
        holders = await self._find(nested_term_filter("transports", "id", transport_id))
        changed = await self._mutate(holders, lambda doc: doc.remove_transport(transport_id))
        return self._outcome(command, changed, SyncStatus.DELETED)


# ---------------------------------------------------------------------------
# Profiles (fan-out)
# ---------------------------------------------------------------------------

class ProfileHandler(EntityHandler):
    """Fans a profile snapshot out to every document that caches it.

    Create and update overwrite the cached snapshot; delete nulls it and
    keeps the purchase or transport that referenced the profile.
    """

    profile_model: ClassVar[type[BaseModel]]
    id_keys: ClassVar[tuple[str, ...]] = ()

    @abstractmethod
    def lookup_filter(self, entity_id: str) -> dict[str, Any]: ...

    @abstractmethod
    def assign(self, document: OfferDocument, entity_id: str, profile: Any | None) -> None: ...

    async def create(self, command: SyncCommand) -> SyncOutcome:
        return await self._refresh(command)

    async def update(self, command: SyncCommand) -> SyncOutcome:
        return await self._refresh(command)

    async def delete(self, command: SyncCommand) -> SyncOutcome:
        entity_id = self._entity_id(command, *self.id_keys)
        targets = await self._find(self.lookup_filter(entity_id))
        changed = await self._mutate(targets, lambda doc: self.assign(doc, entity_id, None))
        return self._outcome(command, changed)

    async def _refresh(self, command: SyncCommand) -> SyncOutcome:
        profile = self._decode(self.profile_model, command)
        entity_id = profile.id
        targets = await self._find(self.lookup_filter(entity_id))
        changed = await self._mutate(targets, lambda doc: self.assign(doc, entity_id, profile))
        logger.info(
            "profile_fanned_out",
            entity_kind=self.kind.value,
            entity_id=entity_id,
            matched=len(targets),
            changed=len(changed),
        )
        return self._outcome(command, changed)


class SellerHandler(ProfileHandler):
    kind = EntityKind.SELLER
    profile_model = SellerProfile
    id_keys = ("sellerId",)

    def lookup_filter(self, entity_id: str) -> dict[str, Any]:
        return term_filter("sellerId", entity_id)

    def assign(self, document: OfferDocument, entity_id: str, profile: SellerProfile | None) -> None:
        if document.seller_id == entity_id:
            document.set_seller(profile)


class BuyerHandler(ProfileHandler):
    kind = EntityKind.BUYER
    profile_model = BuyerProfile
    id_keys = ("buyerId",)

    def lookup_filter(self, entity_id: str) -> dict[str, Any]:
        return nested_term_filter("purchases", "buyerId", entity_id)

    def assign(self, document: OfferDocument, entity_id: str, profile: BuyerProfile | None) -> None:
        for purchase in document.purchases:
            if purchase.buyer_id == entity_id:
                purchase.buyer = profile


class CarrierHandler(ProfileHandler):
    kind = EntityKind.CARRIER
    profile_model = CarrierProfile
    id_keys = ("carrierId",)

    def lookup_filter(self, entity_id: str) -> dict[str, Any]:
        return nested_term_filter("transports", "carrierId", entity_id)

    def assign(self, document: OfferDocument, entity_id: str, profile: CarrierProfile | None) -> None:
        for transport in document.transports:
            if transport.carrier_id == entity_id:
                transport.carrier = profile


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

HANDLER_TYPES: dict[EntityKind, type[EntityHandler]] = {
    handler.kind: handler
    for handler in (
        OfferHandler,
        PurchaseHandler,
        TransportHandler,
        SellerHandler,
        BuyerHandler,
        CarrierHandler,
    )
}


__all__ = [
    "HANDLER_TYPES",
    "BuyerHandler",
    "CarrierHandler",
    "EntityHandler",
    "OfferHandler",
    "ProfileHandler",
    "PurchaseHandler",
    "SellerHandler",
    "TransportHandler",
]
