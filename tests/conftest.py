import hashlib
import hmac
import json
import os
import time
import uuid
from unittest.mock import patch

import pytest
from prometheus_client import REGISTRY

# Set test environment variables
os.environ["FLASK_ENV"] = "testing"
os.environ["TESTING"] = "true"

WEBHOOK_SECRET = "whsec_test_secret"
STRIPE_TEST_KEY = "sk_test_dummy_key_for_testing"


@pytest.fixture
def app(tmp_path):
    """Create and configure a new app instance for each test."""
    with patch.dict(os.environ, {
        "STRIPE_SECRET_KEY": STRIPE_TEST_KEY,
        "STRIPE_PUBLISHABLE_KEY": "pk_test_dummy",
        "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
        "CHECKOUT_DATA_FILE": str(tmp_path / "data" / "users.json"),
        "DISCORD_WEBHOOK_URL": "",
        "BILLING_PORTAL_RETURN_URL": "",
        "CHECKOUT_LOG_JSON": "true",
        "CHECKOUT_METRICS_ENABLED": "true",
    }):
        from src.factory import create_app
        app = create_app()
        app.config["TESTING"] = True
        with app.app_context():
            yield app


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def store(app):
    """The customer store backing the app."""
    return app.extensions["customer_store"]


def make_event(event_type, obj, created=None, event_id=None, previous_attributes=None):
    """Build a Stripe event payload."""
    data = {"object": obj}
    if previous_attributes is not None:
        data["previous_attributes"] = previous_attributes
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "data": data,
    }


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Stripe-Signature header for a payload, as Stripe computes it."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def post_event(client, event, secret=WEBHOOK_SECRET):
    """Deliver a signed event to the webhook endpoint."""
    payload = json.dumps(event)
    return client.post(
        "/api/stripe/webhooks",
        data=payload,
        content_type="application/json",
        headers={"Stripe-Signature": sign_payload(payload, secret)},
    )


@pytest.fixture(autouse=True)
def clear_prometheus_registry():
    """Clear the default prometheus registry before each test."""
    collectors = list(REGISTRY._collector_to_names.keys())
    for collector in collectors:
        REGISTRY.unregister(collector)
    yield
