# -*- coding: utf-8 -*-

import time

from flask import Blueprint, current_app, jsonify

from src.services.storage import StoreError, get_store

health_bp = Blueprint('health', __name__)

SERVICE_NAME = 'checkout-api'


@health_bp.route('/health', methods=['GET', 'HEAD'])
@health_bp.route('/healthz', methods=['GET', 'HEAD'])
def healthz():
    """Health check endpoint (available at both /health and /healthz)."""
    return jsonify({
        'status': 'healthy',
        'service': SERVICE_NAME,
        'timestamp': time.time()
    }), 200


@health_bp.route('/readyz', methods=['GET', 'HEAD'])
def readyz():
    """Readiness check: the store is readable and Stripe is configured."""
    try:
        get_store().read()
        store_ok = True
    except StoreError:
        store_ok = False

    checks = {
        'store': store_ok,
        'stripe': bool(current_app.config.get('STRIPE_SECRET_KEY')),
        'webhooks': bool(current_app.config.get('STRIPE_WEBHOOK_SECRET')),
    }
    ready = checks['store'] and checks['stripe']
    return jsonify({
        'status': 'ready' if ready else 'not_ready',
        'service': SERVICE_NAME,
        'timestamp': time.time(),
        'checks': checks
    }), 200 if ready else 503
