# -*- coding: utf-8 -*-
"""
Checkout price math.

All amounts are integers in the currency's minor unit (pence), the same
unit Stripe uses. Coupons are plain dicts (or Stripe objects) carrying
either ``percent_off`` or ``amount_off``.
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from src.services.stripe_client import field

CURRENCY_SYMBOLS = {
    'GBP': '£',
    'USD': '$',
    'EUR': '€',
}


def _plain_number(value: Any) -> str:
    """Render 20.0 as "20" and 2.5 as "2.5"."""
    number = Decimal(str(value)).normalize()
    return format(number, 'f')


def discount_amount(amount: int, coupon: Optional[Any]) -> int:
    """Amount taken off ``amount`` by ``coupon``, never more than the price."""
    if not coupon:
        return 0

    percent_off = field(coupon, 'percent_off')
    amount_off = field(coupon, 'amount_off')
    if percent_off:
        off = Decimal(amount) * Decimal(str(percent_off)) / Decimal(100)
        return min(int(off.quantize(Decimal('1'), rounding=ROUND_HALF_UP)), amount)
    if amount_off:
        return min(int(amount_off), amount)
    return 0


def apply_coupon(amount: int, coupon: Optional[Any]) -> int:
    """Price after discount, floored at zero."""
    return max(0, amount - discount_amount(amount, coupon))


def describe_discount(coupon: Any) -> str:
    """Short label such as "20% off" or "5 off"."""
    percent_off = field(coupon, 'percent_off')
    if percent_off:
        return f"{_plain_number(percent_off)}% off"
    amount_off = field(coupon, 'amount_off', 0)
    return f"{_plain_number(Decimal(amount_off) / Decimal(100))} off"


def format_price(amount: int, currency: str = 'GBP') -> str:
    """Format minor units for display, e.g. 300 -> "£3.00"."""
    code = (currency or 'GBP').upper()
    symbol = CURRENCY_SYMBOLS.get(code, code + ' ')
    value = (Decimal(abs(amount)) / Decimal(100)).quantize(Decimal('0.01'))
    sign = '-' if amount < 0 else ''
    return f"{sign}{symbol}{value:,}"


def yearly_savings(monthly_amount: Optional[int], yearly_amount: Optional[int]) -> int:
    """What a year costs less when billed yearly; 0 when a price is missing."""
    if not monthly_amount or not yearly_amount:
        return 0
    return monthly_amount * 12 - yearly_amount
