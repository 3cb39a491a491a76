"""Domain entities: upstream payloads and the offer document."""
from __future__ import annotations

from offer_search.domain.entities.offer_document import OfferDocument
from offer_search.domain.entities.payloads import (
    BuyerProfile,
    CarrierProfile,
    Offer,
    OfferAttributes,
    Purchase,
    PurchaseRecord,
    SellerProfile,
    Transport,
    TransportRecord,
    WireModel,
)

__all__ = [
    "BuyerProfile",
    "CarrierProfile",
    "Offer",
    "OfferAttributes",
    "OfferDocument",
    "Purchase",
    "PurchaseRecord",
    "SellerProfile",
    "Transport",
    "TransportRecord",
    "WireModel",
]
