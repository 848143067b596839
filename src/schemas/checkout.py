# -*- coding: utf-8 -*-
"""
Checkout API request schemas.

Field names follow the JSON bodies sent by the checkout page (camelCase).
"""
from marshmallow import EXCLUDE, Schema, ValidationError, fields, validate, validates_schema

_required_text = validate.Length(min=1)


class CreateSubscriptionSchema(Schema):
    """Body of POST /api/stripe/create-subscription."""
    class Meta:
        unknown = EXCLUDE

    priceId = fields.Str(required=True, validate=_required_text)
    planType = fields.Str(required=True, validate=_required_text)
    email = fields.Str(required=True, validate=_required_text)
    productName = fields.Str(required=False, allow_none=True)
    promoCodeId = fields.Str(required=False, allow_none=True)


class ValidatePromoSchema(Schema):
    """Body of POST /api/stripe/validate-promo."""
    class Meta:
        unknown = EXCLUDE

    promoCode = fields.Str(required=True, validate=_required_text)
    email = fields.Str(required=True, validate=_required_text)
    amount = fields.Int(required=False, allow_none=True, validate=validate.Range(min=0))


class BillingPortalRequestSchema(Schema):
    """Schema for billing portal request validation."""
    class Meta:
        unknown = EXCLUDE

    customer_id = fields.Str(required=False,
                             validate=lambda x: x.startswith('cus_'))
    email = fields.Email(required=False)
    return_url = fields.Url(required=False, schemes=['http', 'https'], require_tld=False)
    configuration = fields.Str(required=False)

    @validates_schema
    def validate_customer(self, data, **kwargs):
        if not data.get('customer_id') and not data.get('email'):
            raise ValidationError('customer_id or email is required', 'customer_id')


class CustomerLookupSchema(Schema):
    """Query string of the customer access endpoints."""
    class Meta:
        unknown = EXCLUDE

    email = fields.Email(required=True)
