# -*- coding: utf-8 -*-
"""
Billing portal route.

Creates Stripe billing portal sessions so customers can manage their
payment method, invoices and cancellation themselves.
"""

import stripe
from flask import Blueprint, current_app, jsonify, request
from marshmallow import ValidationError

from src.schemas.checkout import BillingPortalRequestSchema
from src.services.checkout import find_customer_id
from src.services.storage import get_store
from src.services.stripe_client import configure_stripe
from src.services.structured_logging import get_logger

logger = get_logger('checkout.subscriptions')

billing_bp = Blueprint('billing', __name__, url_prefix='/api/stripe')


@billing_bp.route('/portal', methods=['POST'])
def create_billing_portal():
    """
    Create a Stripe billing portal session.

    The customer is given either by ``customer_id`` or by ``email``.

    Returns:
        JSON response with billing portal URL or error message
    """
    try:
        data = BillingPortalRequestSchema().load(request.get_json(silent=True) or {})
    except ValidationError as e:
        logger.warning(f"Invalid billing portal request: {e.messages}")
        return jsonify({'error': 'Invalid request data',
                        'details': e.messages}), 400

    configure_stripe()

    customer_id = data.get('customer_id') or find_customer_id(get_store(), data['email'])
    if not customer_id:
        return jsonify({'error': 'Customer not found'}), 404

    return_url = (data.get('return_url')
                  or current_app.config.get('BILLING_PORTAL_RETURN_URL')
                  or request.host_url.rstrip('/') + '/')

    session_params = {
        'customer': customer_id,
        'return_url': return_url
    }
    if data.get('configuration'):
        session_params['configuration'] = data['configuration']

    try:
        session = stripe.billing_portal.Session.create(**session_params)
    except stripe.InvalidRequestError as e:
        logger.warning(
            f"Invalid Stripe request for customer {customer_id}: {str(e)}")
        return jsonify({'error': 'Invalid customer or request'}), 400

    except stripe.AuthenticationError as e:
        logger.error(f"Stripe authentication error: {str(e)}")
        return jsonify(
            {'error': 'Billing service authentication failed'}), 500

    logger.info(f"Created billing portal session for customer {customer_id}",
                customer_id=customer_id)
    return jsonify({
        'url': session.url,
        'session_id': session.id
    }), 200
