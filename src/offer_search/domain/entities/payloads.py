"""Upstream entity snapshots as they arrive on the sync stream.

The same models are embedded inside the offer document, so they double as
the stored shape of the seller / buyer / carrier caches and of the purchase
and transport records.  Field names are camelCase on the wire and in the
store; numeric ids are coerced to strings because ids are opaque here.
"""
from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for every model that is read from or written to JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Profiles (cached as snapshots)
# ---------------------------------------------------------------------------

class SellerProfile(WireModel):
    """Seller snapshot. Credentials sent by the producer are ignored."""

    id: str = Field(validation_alias=AliasChoices("id", "sellerId", "SellerId"))
    name: str = ""
    email: str = ""
    created_at: datetime | None = None
    last_modified_at: datetime | None = None


class BuyerProfile(WireModel):
    id: str = Field(validation_alias=AliasChoices("id", "buyerId", "BuyerId"))
    name: str = ""
    email: str = ""
    phone: str = ""
    company: str = ""
    created_at: datetime | None = None
    last_modified_at: datetime | None = None


class CarrierProfile(WireModel):
    id: str = Field(validation_alias=AliasChoices("id", "carrierId", "CarrierId"))
    name: str = ""
    email: str = ""
    phone: str = ""
    created_at: datetime | None = None
    last_modified_at: datetime | None = None


# ---------------------------------------------------------------------------
# Graph entities
# ---------------------------------------------------------------------------

class Purchase(WireModel):
    """A buyer's purchase of an offer."""

    id: str
    buyer_id: str | None = None
    offer_id: str | None = None
    purchase_date: datetime | None = None
    amount: float | None = None
    buyer_info: str = ""
    status: str = ""
    created_at: datetime | None = None
    last_modified_at: datetime | None = None


class PurchaseRecord(Purchase):
    """Purchase as embedded in an offer document, with its buyer cache."""

    buyer: BuyerProfile | None = None


class Transport(WireModel):
    """A carrier's transport job for a purchased vehicle."""

    id: str
    carrier_id: str | None = None
    purchase_id: str | None = None
    pickup_location: str = ""
    delivery_location: str = ""
    schedule_date: datetime | None = None
    vehicle_details: str = ""
    status: str = ""
    created_at: datetime | None = None
    last_modified_at: datetime | None = None


class TransportRecord(Transport):
    """Transport as embedded in an offer document, with its carrier cache."""

    carrier: CarrierProfile | None = None


class OfferAttributes(WireModel):
    """Scalar offer fields shared by the offer payload and the document."""

    offer_id: str
    seller_id: str | None = None
    seller_network_id: str = ""
    seller_name: str = ""
    vin: str = ""

    vehicle_year: str = ""
    vehicle_make: str = ""
    vehicle_model: str = ""
    vehicle_trim: str = ""
    vehicle_body_type: str = ""
    vehicle_cab_type: str = ""
    vehicle_door_count: int | None = None
    vehicle_fuel_type: str = ""
    vehicle_body_style: str = ""
    vehicle_usage: str = ""
    vehicle_zip_code: str = ""

    ownership_type: str = ""
    ownership_title_type: str = ""

    mileage: int | None = None
    is_mileage_unverifiable: bool = False
    drivetrain_condition: str = ""
    key_or_fob_available: str = ""
    working_battery_installed: str = ""
    all_tires_inflated: str = ""
    wheels_removed: str = ""
    body_panels_intact: str = ""
    body_damage_free: str = ""
    mirrors_lights_glass_intact: str = ""
    interior_intact: str = ""
    flood_fire_damage_free: str = ""
    engine_transmission_condition: str = ""
    airbags_deployed: str = ""

    status: str = ""
    created_at: datetime | None = None
    last_modified_at: datetime | None = None


class Offer(OfferAttributes):
    """Offer payload from the offer stream."""


__all__ = [
    "BuyerProfile",
    "CarrierProfile",
    "Offer",
    "OfferAttributes",
    "Purchase",
    "PurchaseRecord",
    "SellerProfile",
    "Transport",
    "TransportRecord",
    "WireModel",
]
