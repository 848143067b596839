# -*- coding: utf-8 -*-
"""
Product catalog as shown on the checkout page.

Reads active products, their recurring prices and the entitlement
features attached to each product, and shapes them for the UI.
"""
from typing import Any, Dict, List

import stripe

from src.services.stripe_client import field, path
from src.services.structured_logging import get_logger

logger = get_logger('checkout.subscriptions')

DEFAULT_ORDER = 999
INTERVAL_KEYS = {'month': 'monthly', 'year': 'yearly'}


def _order(value: Any, default: int = DEFAULT_ORDER) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def group_prices(prices: List[Any]) -> Dict[str, Dict[str, Any]]:
    """Recurring prices keyed by ``monthly``, ``yearly`` or the raw interval."""
    grouped = {}
    for price in prices:
        interval = path(price, 'recurring', 'interval')
        if not interval:
            continue
        grouped[INTERVAL_KEYS.get(interval, interval)] = {
            'id': field(price, 'id'),
            'amount': field(price, 'unit_amount'),
            'interval': interval,
        }
    return grouped


def product_features(product: Any) -> List[str]:
    """Names of the features attached to a product, in display order.

    Falls back to the comma-separated ``metadata.features`` when the
    attachments cannot be listed.
    """
    try:
        attachments = field(stripe.Product.list_features(field(product, 'id')), 'data', [])
    except stripe.StripeError as e:
        logger.warning(f"Could not fetch features for product {field(product, 'id')}: {e}")
        raw = path(product, 'metadata', 'features', default='')
        return [name.strip() for name in raw.split(',') if name.strip()]

    ordered = sorted(
        attachments,
        key=lambda pf: _order(path(pf, 'entitlement_feature', 'metadata', 'order')),
    )
    return [
        path(pf, 'entitlement_feature', 'name') or path(pf, 'entitlement_feature', 'lookup_key')
        for pf in ordered
    ]


def list_products() -> List[Dict[str, Any]]:
    """Active products with their prices and features, by priority."""
    products = stripe.Product.list(active=True, limit=100)
    prices = stripe.Price.list(active=True, limit=100)

    price_list = field(prices, 'data', [])
    result = []
    for product in field(products, 'data', []):
        product_id = field(product, 'id')
        product_prices = [p for p in price_list if _product_id(p) == product_id]
        result.append({
            'id': product_id,
            'name': field(product, 'name'),
            'description': field(product, 'description'),
            'features': product_features(product),
            'prices': group_prices(product_prices),
            'metadata': dict(field(product, 'metadata', {})),
        })

    result.sort(key=lambda p: _order(p['metadata'].get('priority')))
    return result


def _product_id(price: Any) -> Any:
    product = field(price, 'product')
    return product if isinstance(product, str) else field(product, 'id')
