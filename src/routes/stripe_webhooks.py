# -*- coding: utf-8 -*-
"""
Stripe Webhook Handler.

Verifies the provider signature, drops duplicate deliveries and dispatches
the event to ``src.services.webhook_handlers``. Events are only marked as
processed after their handler succeeded, so failed deliveries are retried
by Stripe.
"""
import json

import stripe
from flask import Blueprint, current_app, jsonify, request

from src.services.metrics import get_metrics_service
from src.services.request_context import set_event_context
from src.services.storage import get_store
from src.services.structured_logging import get_logger
from src.services.webhook_handlers import dispatch_event

stripe_webhooks_bp = Blueprint('stripe_webhooks', __name__)

logger = get_logger('checkout.webhooks')


def _record(event_type: str, outcome: str) -> None:
    metrics = get_metrics_service()
    if metrics:
        metrics.record_webhook_event(event_type, outcome)


@stripe_webhooks_bp.route('/api/stripe/webhooks', methods=['POST'])
def stripe_webhook():
    """
    Handle Stripe webhook events.

    Events handled:
    - customer.created / customer.updated: upsert the customer profile
    - entitlements.active_entitlement_summary.updated: grant or park features
    - customer.subscription.*: track the subscription, revoke on deletion
    - invoice.payment_succeeded / invoice.paid: restore a suspended customer
    - invoice.payment_failed: suspend the customer
    - payment_intent.succeeded / payment_intent.payment_failed: record payments
    """
    payload = request.get_data()
    sig_header = request.headers.get('Stripe-Signature')
    webhook_secret = current_app.config.get('STRIPE_WEBHOOK_SECRET')

    if not webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        return jsonify({'error': 'Webhook not configured'}), 500

    try:
        stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.error(f"Webhook signature verification failed: {e}")
        _record('unknown', 'rejected')
        return jsonify({'error': 'Webhook signature verification failed'}), 400

    event = json.loads(payload)
    event_id = event.get('id')
    event_type = event.get('type', 'unknown')
    set_event_context(event_id, event_type)

    store = get_store()
    if event_id and store.has_processed_event(event_id):
        logger.log_webhook_event(event_type, 'duplicate', event_id=event_id)
        _record(event_type, 'duplicate')
        return jsonify({'received': True, 'duplicate': True}), 200

    try:
        outcome = dispatch_event(store, event)
    except Exception as e:
        logger.exception(f"Error handling webhook {event_type}", event_id=event_id)
        _record(event_type, 'error')
        return jsonify({'error': str(e)}), 500

    if event_id:
        store.mark_event_processed(event_id, event_type)
    logger.log_webhook_event(event_type, outcome, event_id=event_id)
    _record(event_type, outcome)
    return jsonify({'received': True, 'outcome': outcome}), 200
