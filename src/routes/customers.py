# -*- coding: utf-8 -*-
"""
Customer access API.

Answers "what may this email use right now" from the local store, which
the webhook handlers keep in sync with Stripe.
"""
from flask import Blueprint, jsonify, request
from marshmallow import ValidationError

from src.schemas.checkout import CustomerLookupSchema
from src.services.storage import get_store

customers_bp = Blueprint('customers', __name__, url_prefix='/api/customers')


def _lookup():
    """Customer record for the ``email`` query parameter, or None."""
    data = CustomerLookupSchema().load({'email': request.args.get('email', '').strip()})
    return get_store().get_customer_by_email(data['email'])


@customers_bp.route('/status', methods=['GET'])
def customer_status():
    try:
        customer = _lookup()
    except ValidationError as e:
        return jsonify({'error': 'A valid email is required', 'details': e.messages}), 400

    if customer is None:
        return jsonify({
            'found': False,
            'customerId': None,
            'suspended': False,
            'suspensionInfo': None,
            'subscription': None,
            'features': [],
        }), 200

    suspended = bool(customer.get('suspended'))
    customer_id = customer.get('stripeCustomerId')
    features = [] if suspended else get_store().get_customer_features(customer_id)
    return jsonify({
        'found': True,
        'customerId': customer_id,
        'suspended': suspended,
        'suspensionInfo': customer.get('suspensionInfo'),
        'subscription': customer.get('subscription'),
        'features': features,
    }), 200


@customers_bp.route('/features/<lookup_key>', methods=['GET'])
def customer_feature(lookup_key):
    try:
        customer = _lookup()
    except ValidationError as e:
        return jsonify({'error': 'A valid email is required', 'details': e.messages}), 400

    enabled = bool(customer) and get_store().customer_has_feature(
        customer.get('stripeCustomerId'), lookup_key)
    return jsonify({'feature': lookup_key, 'enabled': enabled}), 200
