# -*- coding: utf-8 -*-
"""
Stripe catalog provisioning and test-environment cleanup.

Used by the admin scripts in ``scripts/``. Every create step is safe to
re-run: existing features, products, coupons and promotion codes are
detected and skipped.
"""
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
import stripe

from src.services.storage import CustomerStore
from src.services.stripe_client import field, is_resource_missing
from src.services.structured_logging import get_logger

logger = get_logger('checkout.provisioning')

CURRENCY = 'gbp'
DISCORD_API = 'https://discord.com/api/v10'
DISCORD_WEBHOOK_NAME = 'Stripe Events'

FEATURES_CONFIG = [
    {'name': 'Premium Server Access', 'lookup_key': 'single_premium_server',
     'description': 'Access to one premium Discord server', 'order': 1},
    {'name': 'Extended Limits', 'lookup_key': 'extended_limits',
     'description': 'Higher rate limits and extended functionality', 'order': 2},
    {'name': 'Priority Support', 'lookup_key': 'priority_support',
     'description': 'Priority customer support and faster response times', 'order': 3},
    {'name': 'Credit Shoutout', 'lookup_key': 'credit_shoutout',
     'description': 'Your name will be displayed in the credits list', 'order': 4},
    {'name': 'Translation Commands', 'lookup_key': 'translation_commands',
     'description': 'Multi-language translation capabilities', 'order': 5},
    {'name': 'AI Integration', 'lookup_key': 'ai_integration',
     'description': 'AI-powered bot responses and commands', 'order': 6},
    {'name': 'Feature Suggestions', 'lookup_key': 'feature_suggestions',
     'description': 'Suggest new features and improvements', 'order': 7},
    {'name': 'Custom Bot Name', 'lookup_key': 'custom_bot_name',
     'description': "Customize the bot's name", 'order': 8},
    {'name': '1-1 Support', 'lookup_key': 'personal_support',
     'description': '1-1 support with the developer', 'order': 9},
    {'name': 'Three Premium Servers', 'lookup_key': 'three_premium_servers',
     'description': 'Access to three premium Discord servers', 'order': 10},
]

PRODUCTS_CONFIG = [
    {
        'name': 'Core Tier',
        'description': 'Ideal for individuals and small servers ready to go premium',
        'features': ['single_premium_server', 'extended_limits', 'priority_support',
                     'credit_shoutout'],
        'prices': {
            'monthly': {'amount': 300, 'interval': 'month'},
            'yearly': {'amount': 3000, 'interval': 'year'},
        },
        'metadata': {'tier': 'core', 'priority': '1', 'popular': 'false'},
    },
    {
        'name': 'Plus Tier',
        'description': 'Perfect for multilingual servers and teams needing smart, AI-powered help',
        'features': ['single_premium_server', 'extended_limits', 'priority_support',
                     'credit_shoutout', 'ai_integration', 'translation_commands',
                     'feature_suggestions'],
        'prices': {
            'monthly': {'amount': 500, 'interval': 'month'},
            'yearly': {'amount': 5000, 'interval': 'year'},
        },
        'metadata': {'tier': 'plus', 'priority': '2', 'popular': 'true'},
    },
    {
        'name': 'Ultra Tier',
        'description': 'For multi-server admins seeking dedicated support and custom branding.',
        'features': ['extended_limits', 'priority_support', 'credit_shoutout',
                     'ai_integration', 'translation_commands', 'feature_suggestions',
                     'custom_bot_name', 'personal_support', 'three_premium_servers'],
        'prices': {
            'monthly': {'amount': 1000, 'interval': 'month'},
            'yearly': {'amount': 10000, 'interval': 'year'},
        },
        'metadata': {'tier': 'ultra', 'priority': '3', 'popular': 'false'},
    },
]

COUPONS_CONFIG = [
    {
        'id': 'beta-unlimited-access',
        'name': 'Beta Tester Unlimited Access',
        'percent_off': 100,
        'duration': 'forever',
        'description': 'Free access for beta testers and friends',
        'metadata': {'program': 'beta_testing', 'type': 'unlimited_access'},
    },
]

PROMO_CODES_CONFIG = [
    {'email': 'beta1@example.com', 'coupon': 'beta-unlimited-access', 'code': 'BETA_ALICE_2024'},
    {'email': 'beta2@example.com', 'coupon': 'beta-unlimited-access', 'code': 'BETA_BOB_2024'},
    {'email': 'friend1@example.com', 'coupon': 'beta-unlimited-access', 'code': 'BETA_CHARLIE_2024'},
]


class ProvisioningError(Exception):
    """Raised when a provisioning step cannot continue."""


def _data(listing: Any) -> List[Any]:
    return field(listing, 'data', [])


# ----------------------------------------------------------------------
# Catalog
# ----------------------------------------------------------------------

def find_active_feature_id(lookup_key: str) -> Optional[str]:
    features = stripe.entitlements.Feature.list(lookup_key=lookup_key, limit=10)
    for feature in _data(features):
        if field(feature, 'active', False):
            return field(feature, 'id')
    return None


def create_features(config: List[Dict[str, Any]] = None) -> Dict[str, List[Any]]:
    """Create the entitlement features products are built from."""
    created, skipped = [], []
    for feature_config in config or FEATURES_CONFIG:
        if find_active_feature_id(feature_config['lookup_key']):
            logger.info(f"Feature {feature_config['lookup_key']} already exists, skipping")
            skipped.append(feature_config['lookup_key'])
            continue

        feature = stripe.entitlements.Feature.create(
            name=feature_config['name'],
            lookup_key=feature_config['lookup_key'],
            metadata={
                'description': feature_config['description'],
                'order': str(feature_config['order']),
            },
        )
        logger.info(f"Created feature {field(feature, 'lookup_key')} ({field(feature, 'id')})")
        created.append(feature)
    return {'created': created, 'skipped': skipped}


def find_existing_product(tier: str) -> Optional[Any]:
    for product in _data(stripe.Product.list(active=True, limit=100)):
        if (field(product, 'metadata', {}) or {}).get('tier') == tier:
            return product
    return None


def attach_features(product_id: str, lookup_keys: List[str]) -> List[str]:
    """Attach active features to a product; returns the keys that failed."""
    failed = []
    for lookup_key in lookup_keys:
        feature_id = find_active_feature_id(lookup_key)
        if not feature_id:
            logger.error(f"Active feature with lookup_key '{lookup_key}' not found; "
                         "create features first")
            failed.append(lookup_key)
            continue
        try:
            stripe.Product.create_feature(product_id, entitlement_feature=feature_id)
        except stripe.StripeError as e:
            logger.error(f"Failed to attach feature {lookup_key}: {e}")
            failed.append(lookup_key)
    return failed


def create_products(config: List[Dict[str, Any]] = None,
                    currency: str = CURRENCY) -> Dict[str, List[Any]]:
    """Create tier products with their features and monthly/yearly prices."""
    created, skipped = [], []
    for product_config in config or PRODUCTS_CONFIG:
        tier = product_config['metadata']['tier']
        existing = find_existing_product(tier)
        if existing:
            logger.info(f"Active product with tier '{tier}' already exists, skipping",
                        product_id=field(existing, 'id'))
            skipped.append(existing)
            continue

        product = stripe.Product.create(
            name=product_config['name'],
            description=product_config['description'],
            metadata={
                'features': ', '.join(product_config['features']),
                **product_config['metadata'],
            },
        )
        product_id = field(product, 'id')
        failed = attach_features(product_id, product_config['features'])

        prices = {}
        for interval_key, price_config in product_config['prices'].items():
            price = stripe.Price.create(
                product=product_id,
                unit_amount=price_config['amount'],
                currency=currency,
                recurring={'interval': price_config['interval']},
                metadata={'plan': tier, 'interval': interval_key, 'tier': tier},
            )
            prices[interval_key] = {'id': field(price, 'id'), 'amount': price_config['amount']}

        logger.info(f"Created product {product_config['name']} ({product_id})",
                    prices=prices, failed_features=failed)
        created.append({'product': product, 'prices': prices, 'failedFeatures': failed})
    return {'created': created, 'skipped': skipped}


# ----------------------------------------------------------------------
# Discounts
# ----------------------------------------------------------------------

def create_coupons(config: List[Dict[str, Any]] = None) -> Dict[str, List[Any]]:
    created, skipped = [], []
    for coupon_config in config or COUPONS_CONFIG:
        try:
            skipped.append(stripe.Coupon.retrieve(coupon_config['id']))
            logger.info(f"Coupon {coupon_config['id']} already exists, skipping")
            continue
        except stripe.InvalidRequestError as e:
            if not is_resource_missing(e):
                raise

        coupon = stripe.Coupon.create(
            id=coupon_config['id'],
            name=coupon_config['name'],
            percent_off=coupon_config['percent_off'],
            duration=coupon_config['duration'],
            metadata={'description': coupon_config['description'], **coupon_config['metadata']},
        )
        logger.info(f"Created coupon {field(coupon, 'id')}")
        created.append(coupon)
    return {'created': created, 'skipped': skipped}


def create_promotion_codes(config: List[Dict[str, Any]] = None) -> Dict[str, List[Any]]:
    """Create per-email promotion codes, reactivating archived ones."""
    created, reactivated, skipped = [], [], []
    for promo_config in config or PROMO_CODES_CONFIG:
        existing = _data(stripe.PromotionCode.list(code=promo_config['code'], limit=1))
        if existing:
            code = existing[0]
            if field(code, 'active', False):
                logger.info(f"Promo code {promo_config['code']} already active, skipping")
                skipped.append(code)
                continue
            try:
                reactivated.append(stripe.PromotionCode.modify(
                    field(code, 'id'),
                    active=True,
                    metadata={
                        'authorized_email': promo_config['email'],
                        'beta_tester': 'true',
                        'reactivated_date': datetime.now(timezone.utc).isoformat(),
                        'reactivated_by': 'create-promos-script',
                    },
                ))
                logger.info(f"Reactivated promo code {promo_config['code']}")
                continue
            except stripe.StripeError as e:
                logger.warning(f"Cannot reactivate promo code {promo_config['code']}: {e}")

        try:
            stripe.Coupon.retrieve(promo_config['coupon'])
        except stripe.InvalidRequestError as e:
            if is_resource_missing(e):
                raise ProvisioningError(
                    f"Coupon '{promo_config['coupon']}' not found; create coupons first") from e
            raise

        promotion_code = stripe.PromotionCode.create(
            coupon=promo_config['coupon'],
            code=promo_config['code'],
            active=True,
            restrictions={'first_time_transaction': False},
            metadata={'authorized_email': promo_config['email'], 'beta_tester': 'true'},
        )
        logger.info(f"Created promo code {promo_config['code']} for {promo_config['email']}")
        created.append(promotion_code)
    return {'created': created, 'reactivated': reactivated, 'skipped': skipped}


# ----------------------------------------------------------------------
# Cleanup
# ----------------------------------------------------------------------

def clean_test_leftovers() -> Dict[str, int]:
    """Cancel abandoned checkouts and the invoices/intents they left open."""
    counts = {'subscriptions': 0, 'invoices': 0, 'payment_intents': 0}

    for subscription in _data(stripe.Subscription.list(status='incomplete', limit=100)):
        stripe.Subscription.cancel(field(subscription, 'id'))
        counts['subscriptions'] += 1

    for invoice in _data(stripe.Invoice.list(status='open', limit=100)):
        stripe.Invoice.void_invoice(field(invoice, 'id'))
        counts['invoices'] += 1

    for intent in _data(stripe.PaymentIntent.list(limit=100)):
        if field(intent, 'status') == 'requires_payment_method':
            stripe.PaymentIntent.cancel(field(intent, 'id'))
            counts['payment_intents'] += 1

    logger.info("Cleaned test leftovers", **counts)
    return counts


def _try(action: str, func, *args, **kwargs) -> bool:
    """Run one wipe step; a failure is logged and the wipe goes on."""
    try:
        func(*args, **kwargs)
        return True
    except stripe.StripeError as e:
        logger.warning(f"Could not {action}: {e}")
        return False


def wipe_environment(store: CustomerStore, pause: float = 0.1) -> Dict[str, int]:
    """Remove everything this project created in a Stripe test account.

    Also resets the local customer store.
    """
    counts = {'customers': 0, 'products': 0, 'features': 0, 'coupons': 0}
    try:
        clean_test_leftovers()
    except stripe.StripeError as e:
        logger.warning(f"Cleanup step failed, continuing wipe: {e}")

    for status in ('active', 'past_due'):
        for subscription in _data(stripe.Subscription.list(status=status, limit=100)):
            _try(f"cancel subscription {field(subscription, 'id')}",
                 stripe.Subscription.cancel, field(subscription, 'id'))

    for customer in _data(stripe.Customer.list(limit=100)):
        if _try(f"delete customer {field(customer, 'id')}", stripe.Customer.delete, field(customer, 'id')):
            counts['customers'] += 1

    for promotion_code in _data(stripe.PromotionCode.list(active=True, limit=100)):
        _try(f"archive promo code {field(promotion_code, 'code')}",
             stripe.PromotionCode.modify, field(promotion_code, 'id'), active=False)
    for coupon in _data(stripe.Coupon.list(limit=100)):
        if _try(f"delete coupon {field(coupon, 'id')}", stripe.Coupon.delete, field(coupon, 'id')):
            counts['coupons'] += 1

    for product in _data(stripe.Product.list(limit=100)):
        product_id = field(product, 'id')
        try:
            attachments = _data(stripe.Product.list_features(product_id, limit=100))
        except stripe.StripeError as e:
            logger.warning(f"Could not list features of {product_id}: {e}")
            attachments = []
        for attachment in attachments:
            _try(f"detach feature from {product_id}",
                 stripe.Product.delete_feature, product_id, field(attachment, 'id'))

        for price in _data(stripe.Price.list(product=product_id, limit=100)):
            if field(price, 'active', False):
                _try(f"archive price {field(price, 'id')}",
                     stripe.Price.modify, field(price, 'id'), active=False)

        time.sleep(pause)
        if _try(f"delete product {product_id}", stripe.Product.delete, product_id) or \
                _try(f"archive product {product_id}", stripe.Product.modify, product_id, active=False):
            counts['products'] += 1

    # Features cannot be deleted, only archived
    for feature in _data(stripe.entitlements.Feature.list(limit=100)):
        if not field(feature, 'active', False):
            continue
        if _try(f"archive feature {field(feature, 'lookup_key')}",
                stripe.entitlements.Feature.modify, field(feature, 'id'), active=False):
            counts['features'] += 1
        time.sleep(pause)

    store.wipe()
    logger.warning("Stripe test environment wiped", **counts)
    return counts


# ----------------------------------------------------------------------
# Discord
# ----------------------------------------------------------------------

def create_discord_webhook(bot_token: str, channel_id: str, timeout: int = 10) -> str:
    """Return the URL of the channel's Stripe webhook, creating it if needed."""
    headers = {'Authorization': f'Bot {bot_token}', 'Content-Type': 'application/json'}
    url = f'{DISCORD_API}/channels/{channel_id}/webhooks'

    response = requests.get(url, headers=headers, timeout=timeout)
    response.raise_for_status()
    for webhook in response.json():
        if 'Stripe' in (webhook.get('name') or ''):
            logger.info(f"Stripe webhook already exists: {webhook.get('id')}")
            return webhook['url']

    response = requests.post(url, headers=headers, json={'name': DISCORD_WEBHOOK_NAME}, timeout=timeout)
    response.raise_for_status()
    webhook = response.json()
    logger.info(f"Created Discord webhook {webhook.get('id')}")
    return webhook.get('url') or f"https://discord.com/api/webhooks/{webhook['id']}/{webhook['token']}"


def update_env_file(webhook_url: str, env_path: str, key: str = 'DISCORD_WEBHOOK_URL') -> bool:
    """Set ``key`` in a .env file; returns True when an existing line was replaced."""
    lines = []
    if os.path.exists(env_path):
        with open(env_path, 'r', encoding='utf-8') as f:
            lines = f.read().split('\n')

    replaced = False
    for i, line in enumerate(lines):
        if line.startswith(f'{key}='):
            lines[i] = f'{key}={webhook_url}'
            replaced = True
            break
    if not replaced:
        if lines and lines[-1] == '':
            lines.insert(len(lines) - 1, f'{key}={webhook_url}')
        else:
            lines.append(f'{key}={webhook_url}')

    with open(env_path, 'w', encoding='utf-8') as f:
        f.write('\n'.join(lines))
    return replaced
