"""Payload builders and an in-process entity provider for the test suites."""
from __future__ import annotations

from typing import Any

from offer_search.domain.value_objects import EntityKind, SyncCommand
from offer_search.infrastructure.external import EntityDataProvider


def offer_payload(offer_id: str = "O1", seller_id: str = "S1", **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "offerId": offer_id,
        "sellerId": seller_id,
        "sellerName": "Acme Motors",
        "vin": "1HGCM82633A004352",
        "vehicleYear": "2019",
        "vehicleMake": "Toyota",
        "vehicleModel": "Camry",
        "vehicleBodyType": "Sedan",
        "mileage": 42000,
        "status": "active",
        "createdAt": "2024-01-10T12:00:00Z",
    }
    payload.update(overrides)
    return payload


def purchase_payload(
    purchase_id: str = "P1",
    offer_id: str | None = "O1",
    buyer_id: str = "B1",
    **overrides: Any,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": purchase_id,
        "offerId": offer_id,
        "buyerId": buyer_id,
        "amount": 1500.0,
        "status": "pending",
    }
    payload.update(overrides)
    return payload


def transport_payload(
    transport_id: str = "T1",
    purchase_id: str | None = "P1",
    carrier_id: str = "C1",
    **overrides: Any,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": transport_id,
        "purchaseId": purchase_id,
        "carrierId": carrier_id,
        "pickupLocation": "Austin, TX",
        "deliveryLocation": "Dallas, TX",
        "status": "scheduled",
    }
    payload.update(overrides)
    return payload


def profile_payload(entity_id: str, name: str = "", **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"id": entity_id, "name": name or f"Profile {entity_id}", "email": f"{entity_id.lower()}@example.com"}
    payload.update(overrides)
    return payload


def command(kind: str, operation: str, payload: dict[str, Any], document_id: str = "") -> SyncCommand:
    return SyncCommand.model_validate(
        {
            "documentId": document_id,
            "entityKind": kind,
            "operation": operation,
            "payload": payload,
        }
    )


class FakeEntityDataProvider(EntityDataProvider):
    """Dict-backed :class:`EntityDataProvider` that records every lookup."""

    def __init__(self) -> None:
        self.entities: dict[EntityKind, dict[str, dict[str, Any]]] = {kind: {} for kind in EntityKind}
        self.calls: list[tuple[str, EntityKind, str]] = []
        self.closed = False

    def add(self, kind: EntityKind, payload: dict[str, Any]) -> None:
        self.entities[kind][str(payload["id"])] = payload

    async def get(self, kind: EntityKind, entity_id: str) -> dict[str, Any] | None:
        self.calls.append(("get", kind, entity_id))
        return self.entities[kind].get(entity_id)

    async def list_by_foreign_key(self, kind: EntityKind, field: str, value: str) -> list[dict[str, Any]]:
        self.calls.append(("list", kind, value))
        if kind is EntityKind.PURCHASE and field == "offer":
            return [p for p in self.entities[kind].values() if p.get("offerId") == value]
        if kind is EntityKind.TRANSPORT and field == "purchase":
            return [t for t in self.entities[kind].values() if t.get("purchaseId") == value]
        if kind is EntityKind.TRANSPORT and field == "offer":
            purchases = {
                p["id"]
                for p in self.entities[EntityKind.PURCHASE].values()
                if p.get("offerId") == value
            }
            return [t for t in self.entities[kind].values() if t.get("purchaseId") in purchases]
        raise ValueError(f"No listing of {kind.value} by {field}")

    async def close(self) -> None:
        self.closed = True
