"""Role-based access filters for the offer index.

:meth:`AccessFilterBuilder.build_filter` is a pure function of the caller's
role and account id.  The filter it returns always goes into the store
query's ``bool.filter``, next to the user's own filters, so totals and
aggregations only ever count what the caller may see.

Role -> filter:

* ``agent``   -- ``match_all``
* ``seller``  -- ``term sellerId``
* ``buyer``   -- nested purchase of this buyer that references an offer;
  matching purchases come back as inner hits ``visible_purchases``
* ``carrier`` -- nested transport of this carrier that references a
  purchase; matching transports come back as inner hits
  ``visible_transports``
* anything else, or an empty account id -- ``match_none``

Buyers and carriers never see a document as a whole: entity lookups are
matched inside their own nested element, and returned documents are
projected down to their own sub-entities.
"""
from __future__ import annotations

import copy
from typing import Any

from offer_search.domain.value_objects import EntityKind, UserContext, UserRole
from offer_search.infrastructure.document_store import nested_term_filter, term_filter

VISIBLE_PURCHASES = "visible_purchases"
VISIBLE_TRANSPORTS = "visible_transports"

MATCH_ALL: dict[str, Any] = {"match_all": {}}
MATCH_NONE: dict[str, Any] = {"match_none": {}}


def entity_filter(kind: EntityKind, entity_id: str) -> dict[str, Any]:
    """Documents embedding one entity, before any visibility rule."""
    lookups: dict[EntityKind, dict[str, Any]] = {
        EntityKind.OFFER: term_filter("offerId", entity_id),
        EntityKind.SELLER: term_filter("sellerId", entity_id),
        EntityKind.PURCHASE: nested_term_filter("purchases", "id", entity_id),
        EntityKind.BUYER: nested_term_filter("purchases", "buyerId", entity_id),
        EntityKind.TRANSPORT: nested_term_filter("transports", "id", entity_id),
        EntityKind.CARRIER: nested_term_filter("transports", "carrierId", entity_id),
    }
    return lookups[kind]


class AccessFilterBuilder:
    """Builds the visibility filter for a caller and projects hits to it."""

    def __init__(self, inner_hits_size: int = 100) -> None:
        self._inner_hits_size = inner_hits_size

    def build_filter(self, user: UserContext) -> dict[str, Any]:
        if user.role is UserRole.AGENT:
            return dict(MATCH_ALL)
        if not user.account_id:
            return dict(MATCH_NONE)
        if user.role is UserRole.SELLER:
            return term_filter("sellerId", user.account_id)
        if user.role is UserRole.BUYER:
            return self._buyer_filter(user.account_id)
        if user.role is UserRole.CARRIER:
            return self._carrier_filter(user.account_id)
        return dict(MATCH_NONE)

    def build_lookup_filter(self, user: UserContext, kind: EntityKind, entity_id: str) -> dict[str, Any]:
        """Visible documents that embed one entity.

        For buyers and carriers the entity condition sits in the same nested
        element as the access condition, so a co-located purchase or
        transport of someone else never satisfies it.  Kinds a buyer or
        carrier cannot own match nothing:

        * buyer: offer, own purchases, itself
        * carrier: offer, own transports, purchases its transports serve,
          itself
        """
        account = user.account_id
        if user.role is UserRole.BUYER and account:
            if kind is EntityKind.OFFER:
                return self.combine(entity_filter(kind, entity_id), self._buyer_filter(account))
            if kind is EntityKind.PURCHASE:
                return self._buyer_filter(account, term_filter("purchases.id", entity_id))
            if kind is EntityKind.BUYER and entity_id == account:
                return self._buyer_filter(account)
            return dict(MATCH_NONE)
        if user.role is UserRole.CARRIER and account:
            if kind is EntityKind.OFFER:
                return self.combine(entity_filter(kind, entity_id), self._carrier_filter(account))
            if kind is EntityKind.TRANSPORT:
                return self._carrier_filter(account, term_filter("transports.id", entity_id))
            if kind is EntityKind.PURCHASE:
                return self._carrier_filter(account, term_filter("transports.purchaseId", entity_id))
            if kind is EntityKind.CARRIER and entity_id == account:
                return self._carrier_filter(account)
            return dict(MATCH_NONE)
        return self.combine(entity_filter(kind, entity_id), self.build_filter(user))

    def _buyer_filter(self, account_id: str, *conditions: dict[str, Any]) -> dict[str, Any]:
        return self._nested(
            "purchases",
            term_filter("purchases.buyerId", account_id),
            {"exists": {"field": "purchases.offerId"}},
            *conditions,
            name=VISIBLE_PURCHASES,
        )

    def _carrier_filter(self, account_id: str, *conditions: dict[str, Any]) -> dict[str, Any]:
        return self._nested(
            "transports",
            term_filter("transports.carrierId", account_id),
            {"exists": {"field": "transports.purchaseId"}},
            *conditions,
            name=VISIBLE_TRANSPORTS,
        )

    def _nested(self, path: str, *conditions: dict[str, Any], name: str) -> dict[str, Any]:
        return {
            "nested": {
                "path": path,
                "query": {"bool": {"filter": list(conditions)}},
                "inner_hits": {"name": name, "size": self._inner_hits_size},
            }
        }

    # -- composition --------------------------------------------------------

    @staticmethod
    def combine(*filters: dict[str, Any] | None) -> dict[str, Any] | None:
        """AND the given filters; ``None`` entries are ignored."""
        present = [f for f in filters if f is not None]
        if not present:
            return None
        if len(present) == 1:
            return present[0]
        return {"bool": {"filter": present}}

    @staticmethod
    def any_of(*filters: dict[str, Any] | None) -> dict[str, Any] | None:
        """OR the given filters; ``None`` entries are ignored."""
        present = [f for f in filters if f is not None]
        if not present:
            return None
        if len(present) == 1:
            return present[0]
        return {"bool": {"should": present, "minimum_should_match": 1}}

    # -- projection ---------------------------------------------------------

    @staticmethod
    def project(user: UserContext, source: dict[str, Any], inner_hits: dict[str, list[dict[str, Any]]]) -> dict[str, Any]:
        """Strip what the caller may not see from a returned document.

        Buyers keep their own purchases and the transports of those
        purchases.  Carriers keep their own transports; purchases are
        removed because they carry buyer details.  Neither keeps the cached
        seller profile.
        """
        if user.role not in (UserRole.BUYER, UserRole.CARRIER):
            return source
        projected = copy.deepcopy(source)
        projected["seller"] = None
        if user.role is UserRole.BUYER:
            purchases = inner_hits.get(VISIBLE_PURCHASES, [])
            visible = {p.get("id") for p in purchases}
            projected["purchases"] = purchases
            projected["transports"] = [
                t for t in projected.get("transports", []) if t.get("purchaseId") in visible
            ]
        else:
            projected["purchases"] = []
            projected["transports"] = inner_hits.get(VISIBLE_TRANSPORTS, [])
        return projected


__all__ = [
    "MATCH_ALL",
    "MATCH_NONE",
    "VISIBLE_PURCHASES",
    "VISIBLE_TRANSPORTS",
    "AccessFilterBuilder",
    "entity_filter",
]
