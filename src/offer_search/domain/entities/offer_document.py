"""The offer document -- unit of storage and of access control.

One document exists per offer.  It flattens the offer -> purchase ->
transport graph into a single aggregate and carries cached snapshots of the
seller, buyers and carriers.  All mutation helpers here are pure and
idempotent; I/O lives in :mod:`offer_search.sync`.

Containment rules enforced by the helpers:

* every purchase's ``offerId`` equals the document's ``offerId``;
* every transport's ``purchaseId`` names a purchase of the same document;
* purchases and transports are unique by id.
"""
from __future__ import annotations

from typing import Any

import structlog
from pydantic import Field

from offer_search.domain.entities.payloads import (
    Offer,
    OfferAttributes,
    PurchaseRecord,
    SellerProfile,
    TransportRecord,
)

logger = structlog.get_logger(__name__)


class OfferDocument(OfferAttributes):
    """Denormalized offer view stored in the document store.

    Attributes:
        id: Document id assigned by the producer; never changes.
        seller: Cached seller snapshot, ``None`` until the seller stream
            delivers one.
        purchases: Embedded purchases in arrival order.
        transports: Embedded transports in arrival order.
        searchable_text: Flattened text used for full-text ranking.
        tags: Free-form labels for filtering.
    """

    id: str
    seller: SellerProfile | None = None
    purchases: list[PurchaseRecord] = Field(default_factory=list)
    transports: list[TransportRecord] = Field(default_factory=list)
    searchable_text: list[str] = Field(default_factory=list)
    tags: dict[str, str] = Field(default_factory=dict)

    # -- construction -------------------------------------------------------

    @classmethod
    def from_offer(cls, document_id: str, offer: Offer) -> OfferDocument:
        """Build a document holding only the offer scalars."""
        document = cls(id=document_id, offer_id=offer.offer_id)
        document.apply_offer(offer)
        return document

    @classmethod
    def from_source(cls, source: dict[str, Any]) -> OfferDocument:
        return cls.model_validate(source)

    def to_source(self) -> dict[str, Any]:
        return self.to_wire()

    # -- scalar fields ------------------------------------------------------

    def apply_offer(self, offer: Offer) -> None:
        """Overwrite every scalar offer field and refresh derived text."""
        for name in OfferAttributes.model_fields:
            setattr(self, name, getattr(offer, name))
        if self.seller is not None and self.seller.id != self.seller_id:
            self.seller = None
        self.refresh_searchable_text()

    def refresh_searchable_text(self) -> None:
        headline = " ".join(p for p in (self.vehicle_year, self.vehicle_make, self.vehicle_model) if p)
        parts = [
            headline,
            self.vin,
            self.seller_name,
            self.vehicle_body_type,
            self.vehicle_fuel_type,
            self.status,
        ]
        self.searchable_text = [p for p in parts if p]

    def set_seller(self, seller: SellerProfile | None) -> None:
        """Replace the seller cache; a snapshot for another seller is ignored."""
        if seller is not None and seller.id != self.seller_id:
            logger.warning(
                "seller_snapshot_mismatch",
                document_id=self.id,
                seller_id=self.seller_id,
                snapshot_id=seller.id,
            )
            return
        self.seller = seller
        if seller is not None and seller.name:
            self.seller_name = seller.name
        self.refresh_searchable_text()

    # -- purchases ----------------------------------------------------------

    def find_purchase(self, purchase_id: str) -> PurchaseRecord | None:
        return next((p for p in self.purchases if p.id == purchase_id), None)

    def upsert_purchase(self, record: PurchaseRecord) -> None:
        """Replace the purchase with the same id in place, or append it."""
        if record.offer_id != self.offer_id:
            raise ValueError(
                f"purchase {record.id} belongs to offer {record.offer_id}, not {self.offer_id}"
            )
        for index, existing in enumerate(self.purchases):
            if existing.id == record.id:
                self.purchases[index] = record
                return
        self.purchases.append(record)

    def remove_purchase(self, purchase_id: str) -> list[str]:
        """Remove a purchase and the transports that referenced it.

        Returns:
            Ids of the transports dropped along with the purchase.
        """
        self.purchases = [p for p in self.purchases if p.id != purchase_id]
        dropped = [t.id for t in self.transports if t.purchase_id == purchase_id]
        if dropped:
            self.transports = [t for t in self.transports if t.purchase_id != purchase_id]
        return dropped

    # -- transports ---------------------------------------------------------

    def find_transport(self, transport_id: str) -> TransportRecord | None:
        return next((t for t in self.transports if t.id == transport_id), None)

    def upsert_transport(self, record: TransportRecord) -> None:
        """Replace the transport with the same id in place, or append it."""
        if record.purchase_id is None or self.find_purchase(record.purchase_id) is None:
            raise ValueError(
                f"transport {record.id} references purchase {record.purchase_id} "
                f"which is not part of document {self.id}"
            )
        for index, existing in enumerate(self.transports):
            if existing.id == record.id:
                self.transports[index] = record
                return
        self.transports.append(record)

    def remove_transport(self, transport_id: str) -> None:
        self.transports = [t for t in self.transports if t.id != transport_id]

    # -- invariants ---------------------------------------------------------

    def enforce_containment(self) -> list[str]:
        """Drop duplicate, foreign and orphaned sub-records.

        Returns:
            Ids of every purchase and transport that was dropped.
        """
        dropped: list[str] = []

        purchases: list[PurchaseRecord] = []
        seen: set[str] = set()
        for purchase in self.purchases:
            if purchase.offer_id != self.offer_id or purchase.id in seen:
                dropped.append(purchase.id)
                continue
            seen.add(purchase.id)
            purchases.append(purchase)

        transports: list[TransportRecord] = []
        seen_transports: set[str] = set()
        for transport in self.transports:
            if transport.purchase_id not in seen or transport.id in seen_transports:
                dropped.append(transport.id)
                continue
            seen_transports.add(transport.id)
            transports.append(transport)

        self.purchases = purchases
        self.transports = transports
        return dropped


__all__ = ["OfferDocument"]
