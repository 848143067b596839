# -*- coding: utf-8 -*-
"""
Server-rendered checkout pages.

The checkout page lists the catalog server-side; selecting a plan,
checking a promo code and confirming the payment happen in
``static/checkout.js`` against the JSON API.
"""
import stripe
from flask import Blueprint, current_app, render_template

from src.services.catalog import list_products
from src.services.pricing import format_price, yearly_savings
from src.services.stripe_client import BillingNotConfiguredError, configure_stripe
from src.services.structured_logging import get_logger

pages_bp = Blueprint('pages', __name__)

logger = get_logger('checkout.subscriptions')


@pages_bp.app_template_filter('price')
def price_filter(amount, currency=None):
    if amount is None:
        return 'N/A'
    return format_price(amount, currency or current_app.config.get('CURRENCY', 'gbp'))


@pages_bp.route('/')
def index():
    return render_template('index.html')


@pages_bp.route('/checkout')
def checkout():
    products, error = [], None
    try:
        configure_stripe()
        products = list_products()
    except BillingNotConfiguredError:
        error = 'Billing is not configured on this server'
    except stripe.StripeError as e:
        logger.error(f"Error fetching products for checkout page: {e}")
        error = 'Failed to load products'

    for product in products:
        prices = product['prices']
        product['yearlySavings'] = yearly_savings(
            prices.get('monthly', {}).get('amount'),
            prices.get('yearly', {}).get('amount'),
        )

    return render_template(
        'checkout.html',
        products=products,
        error=error,
        publishable_key=current_app.config.get('STRIPE_PUBLISHABLE_KEY'),
    )


@pages_bp.route('/success')
def success():
    return render_template('success.html')
