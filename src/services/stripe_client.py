# -*- coding: utf-8 -*-
"""
Stripe SDK configuration and response helpers.

All provider calls go through the module-level ``stripe`` API; routes call
``configure_stripe()`` before touching it, the same way for every endpoint.
"""
from typing import Any, Optional

import stripe
from flask import current_app, has_app_context


class BillingNotConfiguredError(Exception):
    """Raised when the Stripe secret key is not configured."""

    def __init__(self, message: str = "STRIPE_SECRET_KEY missing"):
        super().__init__(message)
        self.message = message


def configure_stripe(secret_key: Optional[str] = None) -> None:
    """Point the SDK at the configured account.

    Raises:
        BillingNotConfiguredError: if no secret key is available
    """
    if secret_key is None and has_app_context():
        secret_key = current_app.config.get("STRIPE_SECRET_KEY")
    secret_key = (secret_key or "").strip()
    if not secret_key:
        raise BillingNotConfiguredError()

    stripe.api_key = secret_key
    if has_app_context() and current_app.config.get("STRIPE_API_VERSION"):
        stripe.api_version = current_app.config["STRIPE_API_VERSION"]


def field(obj: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` from a Stripe object, a plain dict, or a test double."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(key, default)
    else:
        value = getattr(obj, key, default)
    return default if value is None else value


def path(obj: Any, *keys: str, default: Any = None) -> Any:
    """Follow a chain of keys, e.g. ``path(sub, "items", "data")``."""
    for key in keys:
        obj = field(obj, key)
        if obj is None:
            return default
    return obj


def first_item_price(subscription: Any) -> Any:
    """Price object of a subscription's first line item."""
    items = path(subscription, "items", "data", default=[])
    if not items:
        return None
    return field(items[0], "price")


def error_message(error: Exception) -> str:
    """The customer-facing message of a Stripe error, else its text."""
    return getattr(error, "user_message", None) or str(error)


def is_resource_missing(error: Exception) -> bool:
    return getattr(error, "code", None) == "resource_missing"
