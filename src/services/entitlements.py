# -*- coding: utf-8 -*-
"""
Entitlement state machine.

Functions in this module mutate a customer dict in place and are meant to
run inside ``CustomerStore.transaction()``. A customer's grants live in one
of two maps: ``entitlements`` while the account is in good standing and
``suspendedEntitlements`` while a subscription payment is failing. The set
moves wholesale between them, so at most one of the maps is non-empty.

Two watermarks order the provider events. ``entitlementsEventAt`` covers
the granted set (summaries and revocation); ``paymentEventAt`` covers the
suspension state (suspend and restore). Suspension only moves grants
between the maps, never changes the set, so the two families are ordered
independently. Events older than their family's watermark are stale and
must be skipped by the caller.
"""
from typing import Any, Dict, Optional

from src.services.storage import utcnow_iso
from src.services.stripe_client import field

WATERMARK = "entitlementsEventAt"
PAYMENT_WATERMARK = "paymentEventAt"


class InvariantViolation(Exception):
    """Raised when a customer holds both active and parked entitlements."""


def is_stale(last_applied_at: Optional[int], event_created: Optional[int]) -> bool:
    """True when an event is strictly older than the last applied one."""
    if last_applied_at is None or event_created is None:
        return False
    return int(event_created) < int(last_applied_at)


def _advance(customer: Dict[str, Any], key: str, event_created: Optional[int]) -> None:
    if event_created is None:
        return
    current = customer.get(key)
    if current is None or int(event_created) > int(current):
        customer[key] = int(event_created)


def build_entitlement(entitlement: Any, feature: Any = None) -> Dict[str, Any]:
    """Describe one active entitlement for storage.

    ``feature`` is the provider's feature object when it could be retrieved.
    """
    lookup_key = field(entitlement, "lookup_key")
    feature_ref = field(entitlement, "feature")
    feature_id = feature_ref if isinstance(feature_ref, str) else field(feature_ref, "id")

    if feature is not None:
        name = field(feature, "name") or field(feature, "lookup_key") or lookup_key
        metadata = dict(field(feature, "metadata", {}))
    else:
        name = lookup_key
        metadata = {}

    return {
        "stripeEntitlementId": field(entitlement, "id"),
        "featureId": feature_id,
        "featureLookupKey": lookup_key,
        "featureName": name or "Unknown Feature",
        "status": "active",
        "type": field(entitlement, "type"),
        "value": field(entitlement, "value"),
        "metadata": metadata,
        "updatedAt": utcnow_iso(),
    }


def apply_entitlement_summary(customer: Dict[str, Any],
                              entitlements: Dict[str, Dict[str, Any]],
                              event_created: Optional[int] = None) -> str:
    """Replace the customer's grants with a provider summary.

    While suspended, the new set is parked instead of granted.
    Returns ``"parked"`` or ``"granted"``.
    """
    _advance(customer, WATERMARK, event_created)
    if customer.get("suspended"):
        customer["suspendedEntitlements"] = dict(entitlements)
        customer["entitlements"] = {}
        return "parked"

    customer["entitlements"] = dict(entitlements)
    customer["suspendedEntitlements"] = {}
    return "granted"


def suspend(customer: Dict[str, Any], invoice: Any,
            event_created: Optional[int] = None,
            reason: str = "payment_failed") -> bool:
    """Suspend a customer after a failed subscription payment.

    Returns True when the customer was not suspended before.
    """
    _advance(customer, PAYMENT_WATERMARK, event_created)
    now = utcnow_iso()
    newly_suspended = not customer.get("suspended")
    info = customer.get("suspensionInfo") or {}

    customer["suspended"] = True
    customer["suspensionInfo"] = {
        "reason": reason,
        "suspendedAt": info.get("suspendedAt") or now,
        "lastFailedAt": now,
        "attemptCount": field(invoice, "attempt_count", (info.get("attemptCount") or 0) + 1),
        "invoiceId": field(invoice, "id", info.get("invoiceId")),
    }

    active = customer.get("entitlements") or {}
    if active:
        customer["suspendedEntitlements"] = dict(active)
        customer["entitlements"] = {}
    else:
        customer.setdefault("suspendedEntitlements", {})
    return newly_suspended


def restore(customer: Dict[str, Any], event_created: Optional[int] = None) -> bool:
    """Lift a suspension and give parked entitlements back.

    A set granted while parked entitlements were pending wins over them.
    Returns True when anything changed.
    """
    _advance(customer, PAYMENT_WATERMARK, event_created)
    if not customer.get("suspended") and not customer.get("suspendedEntitlements"):
        return False

    parked = customer.get("suspendedEntitlements") or {}
    if parked and not customer.get("entitlements"):
        customer["entitlements"] = dict(parked)
    customer["suspendedEntitlements"] = {}
    customer["suspended"] = False
    customer["suspensionInfo"] = None
    return True


def revoke(customer: Dict[str, Any], event_created: Optional[int] = None) -> bool:
    """Drop every grant after the customer's subscription ended.

    Also ends any suspension, so a late payment failure for the ended
    subscription cannot suspend the customer again.
    """
    _advance(customer, WATERMARK, event_created)
    _advance(customer, PAYMENT_WATERMARK, event_created)
    changed = bool(
        customer.get("entitlements")
        or customer.get("suspendedEntitlements")
        or customer.get("suspended")
    )
    customer["entitlements"] = {}
    customer["suspendedEntitlements"] = {}
    customer["suspended"] = False
    customer["suspensionInfo"] = None
    return changed


def has_feature(customer: Optional[Dict[str, Any]], lookup_key: str) -> bool:
    if not customer or customer.get("suspended"):
        return False
    return any(
        ent.get("featureLookupKey") == lookup_key and ent.get("status") == "active"
        for ent in (customer.get("entitlements") or {}).values()
    )


def check_invariant(customer: Dict[str, Any]) -> None:
    if customer.get("entitlements") and customer.get("suspendedEntitlements"):
        raise InvariantViolation(
            f"Customer {customer.get('stripeCustomerId')} holds both active and parked entitlements"
        )
