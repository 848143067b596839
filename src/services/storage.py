# -*- coding: utf-8 -*-
"""
JSON-file customer store.

The whole state lives in one JSON document that is read, modified and
rewritten on every mutation:

    {
      "customers":       {customer_id: {...}},
      "subscriptions":   {subscription_id: {...}},
      "payments":        {payment_intent_id: {...}},
      "processedEvents": {event_id: {"type": ..., "processedAt": ...}}
    }

Writes go to a temporary file that replaces the document, and a
process-wide lock serialises read-modify-write cycles. Keys inside the
document use the provider's camelCase naming so the file can be inspected
next to the Stripe dashboard.
"""
import copy
import json
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from flask import current_app

from src.services.structured_logging import get_logger

logger = get_logger("checkout.storage")

# Fields owned by the webhook state machine; profile saves never touch them
STATE_FIELDS = (
    "entitlements",
    "suspendedEntitlements",
    "suspended",
    "suspensionInfo",
    "subscription",
    "entitlementsEventAt",
    "paymentEventAt",
)

_LOCK = threading.RLock()


class StoreError(Exception):
    """Raised when the data file cannot be read or written."""


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def empty_document() -> Dict[str, Any]:
    return {
        "customers": {},
        "subscriptions": {},
        "payments": {},
        "processedEvents": {},
    }


def new_customer(customer_id: str) -> Dict[str, Any]:
    """Skeleton record for a customer first seen by id."""
    return {
        "stripeCustomerId": customer_id,
        "email": None,
        "name": None,
        "metadata": {},
        "suspended": False,
        "suspensionInfo": None,
        "entitlements": {},
        "suspendedEntitlements": {},
        "subscription": None,
        "updatedAt": utcnow_iso(),
    }


def ensure_customer(doc: Dict[str, Any], customer_id: str) -> Dict[str, Any]:
    """Return the customer record inside ``doc``, creating a skeleton if needed."""
    customers = doc.setdefault("customers", {})
    if customer_id not in customers:
        customers[customer_id] = new_customer(customer_id)
    customer = customers[customer_id]
    # Records written by older versions may lack state fields
    for key, value in new_customer(customer_id).items():
        customer.setdefault(key, value)
    return customer


class CustomerStore:
    """Read-modify-write access to the JSON document."""

    def __init__(self, path: str, processed_events_limit: int = 1000):
        self.path = path
        self.processed_events_limit = processed_events_limit

    # ------------------------------------------------------------------
    # Document I/O
    # ------------------------------------------------------------------

    def read(self) -> Dict[str, Any]:
        """Load the document; a missing file yields an empty skeleton."""
        with _LOCK:
            return self._load()

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return empty_document()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = f.read()
        except OSError as e:
            raise StoreError(f"Could not read data file {self.path}: {e}") from e

        if not raw.strip():
            return empty_document()
        try:
            doc = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StoreError(f"Data file {self.path} is not valid JSON: {e}") from e
        if not isinstance(doc, dict):
            raise StoreError(f"Data file {self.path} does not hold a JSON object")

        for key, value in empty_document().items():
            doc.setdefault(key, value)
        return doc

    def _write(self, doc: Dict[str, Any]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".users-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2, default=str)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StoreError(f"Could not write data file {self.path}: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator[Dict[str, Any]]:
        """Yield the document for in-place mutation and persist it on success.

        Nothing is written when the block raises.
        """
        with _LOCK:
            doc = self._load()
            yield doc
            self._write(doc)

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def save_customer(self, customer_id: str, customer_data: Dict[str, Any]) -> Dict[str, Any]:
        """Merge profile data into a customer, keeping entitlement state."""
        with self.transaction() as doc:
            customer = ensure_customer(doc, customer_id)
            for key, value in customer_data.items():
                if key in STATE_FIELDS:
                    continue
                customer[key] = value
            customer["updatedAt"] = utcnow_iso()
            return copy.deepcopy(customer)

    def get_customer(self, customer_id: str) -> Optional[Dict[str, Any]]:
        return self.read()["customers"].get(customer_id)

    def get_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        if not email:
            return None
        wanted = email.strip().lower()
        for customer in self.read()["customers"].values():
            if (customer.get("email") or "").lower() == wanted:
                return customer
        return None

    def save_customer_entitlements(self, customer_id: str, entitlements: Dict[str, Any]) -> bool:
        """Replace a customer's entitlements (overwrite approach).

        A suspended customer gets the set parked, not granted.
        """
        from src.services import entitlements as ent

        with self.transaction() as doc:
            customer = doc["customers"].get(customer_id)
            if customer is None:
                logger.warning(f"Customer {customer_id} not found when saving entitlements",
                               customer_id=customer_id)
                return False
            change = ent.apply_entitlement_summary(customer, entitlements)
            ent.check_invariant(customer)
            customer["updatedAt"] = utcnow_iso()
        logger.info(f"Saved {len(entitlements)} entitlements for customer {customer_id}",
                    customer_id=customer_id, change=change)
        return True

    def get_active_entitlements(self, customer_id: str) -> List[Dict[str, Any]]:
        customer = self.get_customer(customer_id)
        if not customer:
            return []
        return [
            ent for ent in (customer.get("entitlements") or {}).values()
            if ent.get("status") == "active"
        ]

    def customer_has_feature(self, customer_id: str, feature_lookup_key: str) -> bool:
        """True when the customer holds an active, non-suspended grant."""
        customer = self.get_customer(customer_id)
        if not customer or customer.get("suspended"):
            return False
        return any(
            ent.get("featureLookupKey") == feature_lookup_key
            for ent in self.get_active_entitlements(customer_id)
        )

    def get_customer_features(self, customer_id: str) -> List[Dict[str, Any]]:
        return [
            {
                "lookupKey": ent.get("featureLookupKey"),
                "name": ent.get("featureName"),
                "id": ent.get("featureId"),
            }
            for ent in self.get_active_entitlements(customer_id)
        ]

    def get_customer_with_entitlements(self, customer_id: str) -> Optional[Dict[str, Any]]:
        customer = self.get_customer(customer_id)
        if not customer:
            return None
        result = dict(customer)
        result["entitlements"] = [
            {
                "id": ent.get("stripeEntitlementId"),
                "featureId": ent.get("featureId"),
                "featureLookupKey": ent.get("featureLookupKey"),
                "featureName": ent.get("featureName"),
                "status": ent.get("status"),
            }
            for ent in self.get_active_entitlements(customer_id)
        ]
        return result

    # ------------------------------------------------------------------
    # Subscriptions and payments
    # ------------------------------------------------------------------

    def save_subscription(self, subscription_id: str, subscription_data: Dict[str, Any]) -> Dict[str, Any]:
        with self.transaction() as doc:
            record = doc["subscriptions"].setdefault(subscription_id, {})
            record.update(subscription_data)
            record["updatedAt"] = utcnow_iso()
            return copy.deepcopy(record)

    def get_subscription(self, subscription_id: str) -> Optional[Dict[str, Any]]:
        return self.read()["subscriptions"].get(subscription_id)

    def save_payment(self, payment_id: str, payment_data: Dict[str, Any]) -> Dict[str, Any]:
        with self.transaction() as doc:
            record = doc["payments"].setdefault(payment_id, {})
            record.update(payment_data)
            record["updatedAt"] = utcnow_iso()
            return copy.deepcopy(record)

    # ------------------------------------------------------------------
    # Webhook de-duplication
    # ------------------------------------------------------------------

    def has_processed_event(self, event_id: str) -> bool:
        return event_id in self.read()["processedEvents"]

    def mark_event_processed(self, event_id: str, event_type: str) -> None:
        with self.transaction() as doc:
            processed = doc["processedEvents"]
            processed[event_id] = {"type": event_type, "processedAt": utcnow_iso()}
            overflow = len(processed) - self.processed_events_limit
            if overflow > 0:
                oldest = sorted(processed, key=lambda k: processed[k]["processedAt"])[:overflow]
                for key in oldest:
                    del processed[key]

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def wipe(self) -> None:
        """Reset the document; the only path that deletes customers."""
        with _LOCK:
            self._write(empty_document())
        logger.warning("Local customer store wiped", path=self.path)

    def get_all_data(self) -> Dict[str, Any]:
        return self.read()


def get_store() -> CustomerStore:
    """The store attached to the current app by the factory."""
    return current_app.extensions["customer_store"]
