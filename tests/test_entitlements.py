# -*- coding: utf-8 -*-
"""
Tests for the entitlement state machine (suspend / restore / revoke).
"""

import pytest

from src.services import entitlements as ent
from src.services.storage import new_customer


def _grants(*lookup_keys):
    return {
        f"ent_{key}": {
            "stripeEntitlementId": f"ent_{key}",
            "featureLookupKey": key,
            "featureName": key,
            "status": "active",
        }
        for key in lookup_keys
    }


@pytest.fixture
def customer():
    record = new_customer("cus_1")
    record["entitlements"] = _grants("ai_integration", "priority_support")
    return record


class TestStaleness:

    def test_older_event_is_stale(self):
        assert ent.is_stale(200, 100) is True

    def test_equal_timestamp_is_applied(self):
        assert ent.is_stale(200, 200) is False

    def test_no_watermark_is_never_stale(self):
        assert ent.is_stale(None, 100) is False
        assert ent.is_stale(200, None) is False


class TestBuildEntitlement:

    def test_uses_feature_details(self):
        descriptor = ent.build_entitlement(
            {"id": "ent_1", "feature": "feat_1", "lookup_key": "ai_integration", "type": "boolean"},
            {"id": "feat_1", "name": "AI Integration", "lookup_key": "ai_integration",
             "metadata": {"order": "6"}},
        )

        assert descriptor["stripeEntitlementId"] == "ent_1"
        assert descriptor["featureId"] == "feat_1"
        assert descriptor["featureName"] == "AI Integration"
        assert descriptor["metadata"] == {"order": "6"}
        assert descriptor["status"] == "active"

    def test_falls_back_to_lookup_key(self):
        descriptor = ent.build_entitlement(
            {"id": "ent_1", "feature": "feat_1", "lookup_key": "ai_integration"})

        assert descriptor["featureName"] == "ai_integration"
        assert descriptor["metadata"] == {}

    def test_unknown_feature_name(self):
        descriptor = ent.build_entitlement({"id": "ent_1", "feature": "feat_1"})

        assert descriptor["featureName"] == "Unknown Feature"

    def test_expanded_feature_reference(self):
        descriptor = ent.build_entitlement(
            {"id": "ent_1", "feature": {"id": "feat_9"}, "lookup_key": "x"})

        assert descriptor["featureId"] == "feat_9"


class TestSuspendRestore:

    def test_suspend_parks_entitlements(self, customer):
        newly = ent.suspend(customer, {"id": "in_1", "attempt_count": 1}, event_created=100)

        assert newly is True
        assert customer["suspended"] is True
        assert customer["entitlements"] == {}
        assert set(customer["suspendedEntitlements"]) == {"ent_ai_integration", "ent_priority_support"}
        assert customer["suspensionInfo"]["invoiceId"] == "in_1"
        assert customer["suspensionInfo"]["reason"] == "payment_failed"
        assert customer["paymentEventAt"] == 100
        ent.check_invariant(customer)

    def test_suspension_leaves_granted_set_watermark_alone(self, customer):
        ent.apply_entitlement_summary(customer, _grants("ai_integration"), 300)

        ent.suspend(customer, {"id": "in_1"}, event_created=100)
        ent.restore(customer, event_created=200)

        assert customer["entitlementsEventAt"] == 300
        assert customer["paymentEventAt"] == 200
        assert customer["suspended"] is False
        assert set(customer["entitlements"]) == {"ent_ai_integration"}

    def test_repeated_failure_keeps_parked_set_and_first_suspension_time(self, customer):
        ent.suspend(customer, {"id": "in_1", "attempt_count": 1}, event_created=100)
        first_suspended_at = customer["suspensionInfo"]["suspendedAt"]

        newly = ent.suspend(customer, {"id": "in_1", "attempt_count": 2}, event_created=200)

        assert newly is False
        assert customer["suspensionInfo"]["suspendedAt"] == first_suspended_at
        assert customer["suspensionInfo"]["attemptCount"] == 2
        assert len(customer["suspendedEntitlements"]) == 2

    def test_attempt_count_increments_without_invoice_count(self, customer):
        ent.suspend(customer, {"id": "in_1"})
        ent.suspend(customer, {"id": "in_1"})

        assert customer["suspensionInfo"]["attemptCount"] == 2

    def test_restore_moves_entitlements_back(self, customer):
        ent.suspend(customer, {"id": "in_1"}, event_created=100)

        changed = ent.restore(customer, event_created=200)

        assert changed is True
        assert customer["suspended"] is False
        assert customer["suspensionInfo"] is None
        assert set(customer["entitlements"]) == {"ent_ai_integration", "ent_priority_support"}
        assert customer["suspendedEntitlements"] == {}

    def test_restore_when_not_suspended_changes_nothing(self, customer):
        assert ent.restore(customer, event_created=100) is False
        assert len(customer["entitlements"]) == 2

    def test_restore_prefers_newer_granted_set(self, customer):
        customer["suspended"] = True
        customer["suspendedEntitlements"] = _grants("old_feature")
        customer["entitlements"] = _grants("new_feature")

        ent.restore(customer)

        assert set(customer["entitlements"]) == {"ent_new_feature"}
        assert customer["suspendedEntitlements"] == {}


class TestEntitlementSummary:

    def test_summary_replaces_entitlements(self, customer):
        change = ent.apply_entitlement_summary(customer, _grants("custom_bot_name"), 100)

        assert change == "granted"
        assert set(customer["entitlements"]) == {"ent_custom_bot_name"}

    def test_summary_while_suspended_is_parked(self, customer):
        ent.suspend(customer, {"id": "in_1"}, 100)

        change = ent.apply_entitlement_summary(customer, _grants("custom_bot_name"), 150)

        assert change == "parked"
        assert customer["entitlements"] == {}
        assert set(customer["suspendedEntitlements"]) == {"ent_custom_bot_name"}
        ent.check_invariant(customer)

    def test_empty_summary_clears_grants(self, customer):
        ent.apply_entitlement_summary(customer, {}, 100)

        assert customer["entitlements"] == {}


class TestRevoke:

    def test_revoke_clears_both_maps_and_suspension(self, customer):
        ent.suspend(customer, {"id": "in_1"}, 100)

        assert ent.revoke(customer, 200) is True
        assert customer["entitlements"] == {}
        assert customer["suspendedEntitlements"] == {}
        assert customer["suspended"] is False
        assert customer["entitlementsEventAt"] == 200
        assert customer["paymentEventAt"] == 200

    def test_watermark_never_moves_backwards(self, customer):
        ent.revoke(customer, 200)
        ent.revoke(customer, 100)
        ent.restore(customer, 100)

        assert customer["entitlementsEventAt"] == 200
        assert customer["paymentEventAt"] == 200


class TestFeatureChecks:

    def test_has_feature(self, customer):
        assert ent.has_feature(customer, "ai_integration") is True
        assert ent.has_feature(customer, "custom_bot_name") is False
        assert ent.has_feature(None, "ai_integration") is False

    def test_suspended_customer_is_denied_every_feature(self, customer):
        ent.suspend(customer, {"id": "in_1"})

        assert ent.has_feature(customer, "ai_integration") is False

    def test_check_invariant_detects_both_maps_populated(self, customer):
        customer["suspendedEntitlements"] = _grants("x")

        with pytest.raises(ent.InvariantViolation):
            ent.check_invariant(customer)
