# -*- coding: utf-8 -*-
"""
Promotion code lookup and email authorization.

Redemption rules (limits, expiry, first-time-order) are enforced by
Stripe; the only local rule is the ``authorized_email`` restriction
stored in the promotion code's metadata.
"""
from typing import Any, Dict, Optional

import stripe

from src.services.pricing import apply_coupon, describe_discount, discount_amount
from src.services.stripe_client import field, path

NOT_AUTHORIZED_MESSAGE = 'This promo code is not authorized for your email address'


class PromoNotAuthorizedError(Exception):
    """Raised when a promotion code is used by an email it is not issued to."""

    def __init__(self, message: str = NOT_AUTHORIZED_MESSAGE):
        super().__init__(message)
        self.message = message


def find_active_code(code: str) -> Optional[Any]:
    codes = stripe.PromotionCode.list(code=code, active=True, limit=1)
    data = field(codes, 'data', [])
    return data[0] if data else None


def is_authorized(promotion_code: Any, email: str) -> bool:
    authorized_email = path(promotion_code, 'metadata', 'authorized_email')
    if not authorized_email:
        return True
    return authorized_email.strip().lower() == (email or '').strip().lower()


def coupon_summary(coupon: Any) -> Dict[str, Any]:
    return {
        'id': field(coupon, 'id'),
        'percent_off': field(coupon, 'percent_off'),
        'amount_off': field(coupon, 'amount_off'),
        'currency': field(coupon, 'currency'),
        'duration': field(coupon, 'duration'),
        'duration_in_months': field(coupon, 'duration_in_months'),
    }


def _coupon_of(promotion_code: Any) -> Any:
    # API versions from 2025 nest the coupon under promotion.coupon
    return field(promotion_code, 'coupon') or path(promotion_code, 'promotion', 'coupon')


def validate_promo_code(code: str, email: str, amount: Optional[int] = None) -> Dict[str, Any]:
    """Check a customer-entered code and describe its discount."""
    promotion_code = find_active_code(code)
    if promotion_code is None:
        return {'valid': False, 'error': 'Promo code not found or inactive'}

    if not is_authorized(promotion_code, email):
        return {'valid': False, 'error': NOT_AUTHORIZED_MESSAGE}

    restricted = bool(path(promotion_code, 'metadata', 'authorized_email'))
    coupon = _coupon_of(promotion_code)
    result = {
        'valid': True,
        'discount': describe_discount(coupon),
        'message': 'Promo code is valid for your email!' if restricted else 'Promo code is valid!',
        'promoCodeId': field(promotion_code, 'id'),
        'coupon': coupon_summary(coupon),
    }
    if amount is not None:
        result['discountAmount'] = discount_amount(amount, coupon)
        result['discountedAmount'] = apply_coupon(amount, coupon)
    return result


def authorize_promotion_code(promotion_code_id: str, email: str) -> Any:
    """Re-check a promotion code id before it is applied to a subscription.

    Raises:
        PromoNotAuthorizedError: if the code is inactive or restricted to
            another email
    """
    promotion_code = stripe.PromotionCode.retrieve(promotion_code_id)
    if not field(promotion_code, 'active', False):
        raise PromoNotAuthorizedError('Promo code not found or inactive')
    if not is_authorized(promotion_code, email):
        raise PromoNotAuthorizedError()
    return promotion_code
