"""
Stripe checkout API routes used by the checkout page.
"""
import stripe
from flask import Blueprint, jsonify, request
from marshmallow import ValidationError

from src.schemas.checkout import CreateSubscriptionSchema, ValidatePromoSchema
from src.services.catalog import list_products
from src.services.checkout import SubscriptionConflictError, create_or_resume_subscription
from src.services.metrics import get_metrics_service
from src.services.promotions import PromoNotAuthorizedError, validate_promo_code
from src.services.storage import get_store
from src.services.stripe_client import configure_stripe, field, is_resource_missing
from src.services.structured_logging import get_logger

stripe_api_bp = Blueprint("stripe_api", __name__)

logger = get_logger("checkout.subscriptions")


def _json():
    """Safely parse JSON body or return empty dict."""
    return (request.get_json(silent=True) or {}) if request.data else {}


def _record_attempt(result):
    metrics = get_metrics_service()
    if metrics:
        metrics.record_subscription_attempt(result)


@stripe_api_bp.route("/api/stripe/products", methods=["GET"])
def products():
    """Active products with monthly/yearly prices and their features."""
    configure_stripe()
    try:
        return jsonify({"products": list_products()}), 200
    except stripe.StripeError as e:
        logger.error(f"Error fetching products: {e}")
        return jsonify({"error": "Failed to fetch products"}), 500


@stripe_api_bp.route("/api/stripe/validate-promo", methods=["POST"])
def validate_promo():
    """Check a promotion code for the email entered on the checkout page."""
    try:
        data = ValidatePromoSchema().load(_json())
    except ValidationError as e:
        return jsonify({
            "valid": False,
            "error": "Promo code and email are required",
            "details": e.messages,
        }), 400

    configure_stripe()
    try:
        result = validate_promo_code(data["promoCode"], data["email"], data.get("amount"))
    except stripe.StripeError as e:
        logger.error(f"Error validating promo code: {e}")
        return jsonify({"valid": False, "error": "Failed to validate promo code"}), 500

    metrics = get_metrics_service()
    if metrics:
        metrics.record_promo_validation(result["valid"])
    return jsonify(result), 200


@stripe_api_bp.route("/api/stripe/create-subscription", methods=["POST"])
def create_subscription():
    """Create a subscription, or resume an abandoned one for the same price."""
    try:
        data = CreateSubscriptionSchema().load(_json())
    except ValidationError as e:
        return jsonify({
            "error": "Missing required fields: priceId, planType, or email",
            "details": e.messages,
        }), 400

    configure_stripe()
    try:
        result = create_or_resume_subscription(
            get_store(),
            price_id=data["priceId"],
            plan_type=data["planType"],
            email=data["email"].strip(),
            product_name=data.get("productName"),
            promo_code_id=data.get("promoCodeId"),
        )
    except (SubscriptionConflictError, PromoNotAuthorizedError):
        _record_attempt("conflict")
        raise
    except stripe.StripeError:
        _record_attempt("error")
        raise

    _record_attempt("resumed" if result["resumed"] else "created")
    logger.info(
        f"Subscription checkout started: {result['subscriptionId']}",
        subscription_id=result["subscriptionId"],
        customer_id=result["customerId"],
        resumed=result["resumed"],
    )
    return jsonify(result), 200


@stripe_api_bp.route("/api/stripe/verify-payment", methods=["GET"])
def verify_payment():
    """Status of a payment intent after the browser confirmed it."""
    payment_intent_id = request.args.get("payment_intent_id", "").strip()
    if not payment_intent_id:
        return jsonify({"error": "Missing payment_intent_id"}), 400

    configure_stripe()
    intent = stripe.PaymentIntent.retrieve(payment_intent_id)
    return jsonify({
        "status": field(intent, "status"),
        "subscription_id": field(field(intent, "metadata", {}), "subscription_id"),
    }), 200


@stripe_api_bp.route("/api/stripe/verify-subscription", methods=["GET"])
def verify_subscription():
    """Status of a subscription, polled by the success page."""
    subscription_id = request.args.get("subscription_id", "").strip()
    if not subscription_id:
        return jsonify({"error": "Missing subscription_id"}), 400

    configure_stripe()
    try:
        subscription = stripe.Subscription.retrieve(subscription_id)
    except stripe.InvalidRequestError as e:
        if is_resource_missing(e):
            return jsonify({"error": "Subscription not found"}), 404
        raise

    logger.info(f"Subscription {subscription_id} status: {field(subscription, 'status')}")
    customer = field(subscription, "customer")
    return jsonify({
        "status": field(subscription, "status"),
        "subscription_id": field(subscription, "id"),
        "customer_id": customer if isinstance(customer, str) else field(customer, "id"),
        "current_period_end": field(subscription, "current_period_end"),
        "cancel_at_period_end": field(subscription, "cancel_at_period_end", False),
    }), 200
