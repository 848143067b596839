"""
Error Handling Middleware
Maps application and provider exceptions to consistent JSON responses
"""
import stripe
from flask import jsonify
from marshmallow import ValidationError

from src.infra.log import get_logger
from src.services.checkout import SubscriptionConflictError
from src.services.entitlements import InvariantViolation
from src.services.promotions import PromoNotAuthorizedError
from src.services.storage import StoreError
from src.services.stripe_client import BillingNotConfiguredError, error_message, is_resource_missing

logger = get_logger('checkout.errors')


def register_error_handlers(app):
    """Register error handlers for checkout and billing errors"""

    @app.errorhandler(BillingNotConfiguredError)
    def handle_billing_not_configured(e):
        logger.error(f"Billing not configured: {e.message}")
        return jsonify({'error': 'Billing service not configured'}), 501

    @app.errorhandler(SubscriptionConflictError)
    def handle_subscription_conflict(e):
        return jsonify({'error': e.message, 'details': e.details}), 409

    @app.errorhandler(PromoNotAuthorizedError)
    def handle_promo_not_authorized(e):
        return create_validation_error_response(e.message, 'promoCodeId')

    @app.errorhandler(StoreError)
    def handle_store_error(e):
        logger.error(f"Customer store error: {e}")
        return jsonify({'error': 'Customer store unavailable'}), 500

    @app.errorhandler(InvariantViolation)
    def handle_invariant_violation(e):
        logger.critical(f"Entitlement state corrupted: {e}")
        return jsonify({'error': 'Internal server error'}), 500

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return jsonify({'error': 'Invalid request data', 'details': e.messages}), 400

    @app.errorhandler(stripe.StripeError)
    def handle_stripe_error(e):
        """Handle provider errors (missing resources, outages, rejected calls)"""
        if is_resource_missing(e):
            logger.warning(f"Stripe resource missing: {e}")
            return jsonify({'error': error_message(e)}), 404

        if isinstance(e, stripe.APIConnectionError):
            logger.error(f"Stripe API connection error: {e}")
            return jsonify({'error': 'Billing service temporarily unavailable'}), 503

        logger.error(f"Stripe error: {e}")
        return jsonify({'error': error_message(e)}), 502


def create_validation_error_response(message: str, field: str = None):
    """Create a consistent validation error response"""
    response = {
        'error': message,
    }
    if field:
        response['field'] = field

    return jsonify(response), 400
