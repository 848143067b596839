# -*- coding: utf-8 -*-
"""
Subscription checkout.

Starts a subscription for an email address, or resumes an abandoned
checkout for the same price, and refuses when the customer already pays
for a plan or has one with payment problems. The subscription is created
``default_incomplete`` so the browser confirms the first payment with
the returned client secret.
"""
from typing import Any, Dict, Optional

import stripe

from src.services.promotions import authorize_promotion_code
from src.services.storage import CustomerStore
from src.services.stripe_client import field, first_item_price, path
from src.services.structured_logging import get_logger

logger = get_logger('checkout.subscriptions')


class SubscriptionConflictError(Exception):
    """Raised when the customer cannot start another subscription."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


def _id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return field(value, 'id')


def find_customer_id(store: CustomerStore, email: str) -> Optional[str]:
    """Customer id for an email: local record first, then the provider."""
    local = store.get_customer_by_email(email)
    if local and local.get('stripeCustomerId'):
        return local['stripeCustomerId']

    found = field(stripe.Customer.list(email=email, limit=1), 'data', [])
    return field(found[0], 'id') if found else None


def _list(customer_id: str, status: str) -> list:
    return field(stripe.Subscription.list(customer=customer_id, status=status, limit=10), 'data', [])


def check_active_subscription(customer_id: str) -> None:
    active = _list(customer_id, 'active')
    if not active:
        return

    subscription = active[0]
    price = first_item_price(subscription)
    product = field(price, 'product')
    if isinstance(product, str):
        product = stripe.Product.retrieve(product)
    raise SubscriptionConflictError(
        'You already have an active subscription',
        {
            'currentPlan': field(product, 'name'),
            'currentInterval': path(price, 'recurring', 'interval'),
            'subscriptionId': field(subscription, 'id'),
            'hasActiveSubscription': True,
        },
    )


def find_resumable(customer_id: str, price_id: str) -> Optional[Dict[str, Any]]:
    """An incomplete subscription for ``price_id`` still awaiting a card."""
    for subscription in _list(customer_id, 'incomplete'):
        if field(first_item_price(subscription), 'id') != price_id:
            continue

        invoice = stripe.Invoice.retrieve(_id(field(subscription, 'latest_invoice')),
                                          expand=['payment_intent'])
        intent = field(invoice, 'payment_intent')
        if intent is not None and field(intent, 'status') == 'requires_payment_method':
            logger.info(f"Resuming existing incomplete subscription: {field(subscription, 'id')}",
                        subscription_id=field(subscription, 'id'))
            return {
                'subscriptionId': field(subscription, 'id'),
                'clientSecret': field(intent, 'client_secret'),
                'customerId': customer_id,
                'resumed': True,
                'requiresPayment': True,
            }
        logger.info(f"Payment intent expired for subscription {field(subscription, 'id')}, creating new one")
    return None


def check_past_due(customer_id: str) -> None:
    past_due = _list(customer_id, 'past_due')
    if past_due:
        raise SubscriptionConflictError(
            'You have a subscription with payment issues that needs to be resolved first',
            {
                'hasProblematicSubscription': True,
                'subscriptionId': field(past_due[0], 'id'),
            },
        )


def create_or_resume_subscription(store: CustomerStore, price_id: str, plan_type: str,
                                  email: str, product_name: Optional[str] = None,
                                  promo_code_id: Optional[str] = None) -> Dict[str, Any]:
    """Start (or resume) a subscription checkout for ``email``.

    Raises:
        SubscriptionConflictError: active or past-due subscription exists
        PromoNotAuthorizedError: the promotion code is not usable by ``email``
        stripe.StripeError: provider failure
    """
    if promo_code_id:
        authorize_promotion_code(promo_code_id, email)

    metadata = {'plan': plan_type, 'product': product_name or 'Unknown'}
    customer_id = find_customer_id(store, email)

    if customer_id:
        store.save_customer(customer_id, {'stripeCustomerId': customer_id, 'email': email})
        check_active_subscription(customer_id)
        if not promo_code_id:
            resumed = find_resumable(customer_id, price_id)
            if resumed:
                return resumed
        check_past_due(customer_id)
    else:
        customer = stripe.Customer.create(
            email=email,
            name=email.split('@')[0],
            metadata=metadata,
        )
        customer_id = field(customer, 'id')
        store.save_customer(customer_id, {
            'stripeCustomerId': customer_id,
            'email': email,
            'name': field(customer, 'name'),
            'metadata': dict(field(customer, 'metadata', {})),
            'created': field(customer, 'created'),
        })

    params = {
        'customer': customer_id,
        'items': [{'price': price_id}],
        'payment_behavior': 'default_incomplete',
        'payment_settings': {'save_default_payment_method': 'on_subscription'},
        'expand': ['latest_invoice.payment_intent'],
        'metadata': metadata,
    }
    if promo_code_id:
        params['discounts'] = [{'promotion_code': promo_code_id}]

    logger.info(f"Creating new subscription for customer {customer_id}", customer_id=customer_id)
    subscription = stripe.Subscription.create(**params)

    # A 100% discount leaves nothing to pay and no payment intent
    intent = path(subscription, 'latest_invoice', 'payment_intent')
    client_secret = field(intent, 'client_secret')
    return {
        'subscriptionId': field(subscription, 'id'),
        'clientSecret': client_secret,
        'customerId': customer_id,
        'resumed': False,
        'requiresPayment': client_secret is not None,
    }
