# -*- coding: utf-8 -*-
"""
Stripe webhook event handlers.

Each handler takes the customer store and a verified event (a plain dict)
and returns an outcome string:

    applied    the local state was updated
    stale      the event is older than what was already applied
    ignored    the event is known but needs no state change

Handlers are idempotent. Events of one family (customer profile,
entitlements, payments, a given subscription) carry a ``created``
timestamp that is compared with the family's watermark on the stored
record, so late deliveries never overwrite newer state.
"""
from typing import Any, Callable, Dict, Optional

import stripe

from src.services import entitlements as ent
from src.services.notifier import get_notifier
from src.services.storage import CustomerStore, ensure_customer, utcnow_iso
from src.services.stripe_client import (
    BillingNotConfiguredError,
    configure_stripe,
    field,
    first_item_price,
    path,
)
from src.services.structured_logging import get_logger

logger = get_logger('checkout.webhooks')
entitlement_logger = get_logger('checkout.entitlements')

APPLIED = 'applied'
STALE = 'stale'
IGNORED = 'ignored'
UNHANDLED = 'unhandled'

# Statuses under which a subscription still represents the customer's plan
LIVE_STATUSES = frozenset({'active', 'trialing', 'past_due', 'unpaid', 'paused'})


def _object(event: Dict[str, Any]) -> Dict[str, Any]:
    return path(event, 'data', 'object', default={})


def _id(value: Any) -> Optional[str]:
    """Id of a possibly expanded provider reference."""
    if value is None or isinstance(value, str):
        return value
    return field(value, 'id')


def invoice_subscription_id(invoice: Any) -> Optional[str]:
    return _id(field(invoice, 'subscription')) or path(
        invoice, 'parent', 'subscription_details', 'subscription')


def subscription_record(subscription: Any, event_created: Optional[int]) -> Dict[str, Any]:
    """Local copy of a provider subscription object."""
    price = first_item_price(subscription)
    item = (path(subscription, 'items', 'data', default=[]) or [None])[0]
    return {
        'stripeSubscriptionId': field(subscription, 'id'),
        'customerId': _id(field(subscription, 'customer')),
        'status': field(subscription, 'status'),
        'priceId': field(price, 'id'),
        'productId': _id(field(price, 'product')),
        'currentPeriodStart': field(subscription, 'current_period_start',
                                    field(item, 'current_period_start')),
        'currentPeriodEnd': field(subscription, 'current_period_end',
                                  field(item, 'current_period_end')),
        'cancelAtPeriodEnd': bool(field(subscription, 'cancel_at_period_end', False)),
        'cancelAt': field(subscription, 'cancel_at'),
        'canceledAt': field(subscription, 'canceled_at'),
        'endedAt': field(subscription, 'ended_at'),
        'pauseCollection': field(subscription, 'pause_collection'),
        'metadata': dict(field(subscription, 'metadata', {})),
        'eventAt': event_created,
    }


def should_embed(current: Optional[Dict[str, Any]], incoming: Dict[str, Any]) -> bool:
    """Whether ``incoming`` becomes the customer's current subscription.

    A live subscription is never displaced by one that is not live, so a
    stray incomplete checkout cannot hide the plan the customer pays for.
    """
    if not current:
        return True
    if current.get('stripeSubscriptionId') == incoming.get('stripeSubscriptionId'):
        return True
    if current.get('status') not in LIVE_STATUSES:
        return True
    return incoming.get('status') in LIVE_STATUSES


def _sync_embedded(customer: Dict[str, Any], record: Dict[str, Any]) -> None:
    current = customer.get('subscription') or {}
    if current.get('stripeSubscriptionId') == record.get('stripeSubscriptionId'):
        customer['subscription'] = dict(record)


# ----------------------------------------------------------------------
# Customers
# ----------------------------------------------------------------------

def _profile(customer_obj: Any) -> Dict[str, Any]:
    return {
        'stripeCustomerId': field(customer_obj, 'id'),
        'email': field(customer_obj, 'email'),
        'name': field(customer_obj, 'name'),
        'metadata': dict(field(customer_obj, 'metadata', {})),
        'created': field(customer_obj, 'created'),
    }


def handle_customer_upsert(store: CustomerStore, event: Dict[str, Any]) -> str:
    obj = _object(event)
    created = field(event, 'created')

    with store.transaction() as doc:
        customer = ensure_customer(doc, field(obj, 'id'))
        if ent.is_stale(customer.get('customerEventAt'), created):
            return STALE
        customer.update(_profile(obj))
        customer['customerEventAt'] = created
        customer['updatedAt'] = utcnow_iso()

    logger.info(f"Customer saved: {field(obj, 'id')}", customer_id=field(obj, 'id'))
    return APPLIED


# ----------------------------------------------------------------------
# Entitlements
# ----------------------------------------------------------------------

def _resolve_feature(entitlement: Any) -> Any:
    feature = field(entitlement, 'feature')
    if feature is not None and not isinstance(feature, str):
        return feature
    try:
        return stripe.entitlements.Feature.retrieve(feature)
    except stripe.StripeError as e:
        logger.warning(f"Could not retrieve feature {feature}: {e}", feature_id=feature)
        return None


def handle_entitlement_summary(store: CustomerStore, event: Dict[str, Any]) -> str:
    summary = _object(event)
    customer_id = _id(field(summary, 'customer'))
    created = field(event, 'created')

    known = store.get_customer(customer_id)
    if known and ent.is_stale(known.get(ent.WATERMARK), created):
        return STALE

    configure_stripe()
    profile = None
    if not known or not known.get('email'):
        profile = _profile(stripe.Customer.retrieve(customer_id))

    grants = {}
    for entitlement in path(summary, 'entitlements', 'data', default=[]):
        descriptor = ent.build_entitlement(entitlement, _resolve_feature(entitlement))
        grants[descriptor['stripeEntitlementId']] = descriptor

    with store.transaction() as doc:
        customer = ensure_customer(doc, customer_id)
        if ent.is_stale(customer.get(ent.WATERMARK), created):
            return STALE
        if profile:
            customer.update(profile)
        change = ent.apply_entitlement_summary(customer, grants, created)
        ent.check_invariant(customer)
        customer['updatedAt'] = utcnow_iso()

    entitlement_logger.log_entitlement_change(customer_id, change, count=len(grants))
    return APPLIED


# ----------------------------------------------------------------------
# Subscriptions
# ----------------------------------------------------------------------

def _log_subscription_changes(subscription: Any, previous: Dict[str, Any]) -> None:
    sub_id = field(subscription, 'id')
    old_items = path(previous, 'items', 'data', default=[])
    old_price_id = path(old_items[0], 'price', 'id') if old_items else None
    if old_price_id:
        new_price_id = field(first_item_price(subscription), 'id')
        logger.info(f"Plan change detected for subscription {sub_id}",
                    subscription_id=sub_id, old_price=old_price_id, new_price=new_price_id)

    if 'pause_collection' in previous:
        state = 'paused' if field(subscription, 'pause_collection') else 'resumed'
        logger.info(f"Subscription {state}: {sub_id}", subscription_id=sub_id)

    if 'cancel_at_period_end' in previous:
        if field(subscription, 'cancel_at_period_end'):
            logger.info(f"Subscription scheduled for cancellation: {sub_id}", subscription_id=sub_id)
        else:
            logger.info(f"Subscription cancellation unscheduled: {sub_id}", subscription_id=sub_id)


def handle_subscription_upsert(store: CustomerStore, event: Dict[str, Any]) -> str:
    subscription = _object(event)
    sub_id = field(subscription, 'id')
    created = field(event, 'created')
    previous = path(event, 'data', 'previous_attributes', default={})
    is_new = field(event, 'type') == 'customer.subscription.created'

    _log_subscription_changes(subscription, previous)

    restored = False
    with store.transaction() as doc:
        existing = doc['subscriptions'].get(sub_id) or {}
        if ent.is_stale(existing.get('eventAt'), created):
            return STALE

        record = dict(existing)
        record.update(subscription_record(subscription, created))
        record['updatedAt'] = utcnow_iso()
        doc['subscriptions'][sub_id] = record

        customer = ensure_customer(doc, record['customerId'])
        if should_embed(customer.get('subscription'), record):
            customer['subscription'] = dict(record)

        became_active = record['status'] == 'active' and (is_new or 'status' in previous)
        if (became_active and customer.get('suspended')
                and not ent.is_stale(customer.get(ent.PAYMENT_WATERMARK), created)):
            restored = ent.restore(customer, created)
            ent.check_invariant(customer)
        customer['updatedAt'] = utcnow_iso()
        snapshot = dict(customer)

    logger.info(f"Subscription {'created' if is_new else 'updated'}: {sub_id}",
                subscription_id=sub_id, status=record['status'])
    if restored:
        entitlement_logger.log_entitlement_change(record['customerId'], 'restored',
                                                  subscription_id=sub_id)
        get_notifier().customer_restored(snapshot)
    if is_new:
        get_notifier().subscription_created(snapshot, record)
    return APPLIED


def handle_subscription_deleted(store: CustomerStore, event: Dict[str, Any]) -> str:
    subscription = _object(event)
    sub_id = field(subscription, 'id')
    created = field(event, 'created')

    revoked = False
    with store.transaction() as doc:
        existing = doc['subscriptions'].get(sub_id) or {}
        if ent.is_stale(existing.get('eventAt'), created):
            return STALE
        # an abandoned checkout never carried grants
        was_live = existing.get('status') in LIVE_STATUSES

        record = dict(existing)
        record.update({
            'stripeSubscriptionId': sub_id,
            'customerId': _id(field(subscription, 'customer')),
            'status': 'canceled',
            'canceledAt': field(subscription, 'canceled_at'),
            'endedAt': field(subscription, 'ended_at'),
            'eventAt': created,
            'updatedAt': utcnow_iso(),
        })
        doc['subscriptions'][sub_id] = record

        customer = ensure_customer(doc, record['customerId'])
        current = customer.get('subscription')
        if not current or current.get('stripeSubscriptionId') == sub_id:
            customer['subscription'] = dict(record)
            if was_live and not ent.is_stale(customer.get(ent.WATERMARK), created):
                revoked = ent.revoke(customer, created)
        customer['updatedAt'] = utcnow_iso()

    logger.info(f"Subscription canceled/deleted: {sub_id}", subscription_id=sub_id)
    if revoked:
        entitlement_logger.log_entitlement_change(record['customerId'], 'revoked',
                                                  subscription_id=sub_id)
    return APPLIED


def handle_subscription_pause(store: CustomerStore, event: Dict[str, Any]) -> str:
    subscription = _object(event)
    sub_id = field(subscription, 'id')
    created = field(event, 'created')
    paused = field(event, 'type') == 'customer.subscription.paused'

    with store.transaction() as doc:
        existing = doc['subscriptions'].get(sub_id) or {}
        if ent.is_stale(existing.get('eventAt'), created):
            return STALE

        record = dict(existing)
        record.update({
            'stripeSubscriptionId': sub_id,
            'customerId': _id(field(subscription, 'customer')),
            'status': 'paused' if paused else field(subscription, 'status'),
            'pauseCollection': field(subscription, 'pause_collection') if paused else None,
            'eventAt': created,
            'updatedAt': utcnow_iso(),
        })
        doc['subscriptions'][sub_id] = record
        customer = ensure_customer(doc, record['customerId'])
        _sync_embedded(customer, record)

    logger.info(f"Subscription {'paused' if paused else 'resumed'}: {sub_id}",
                subscription_id=sub_id)
    return APPLIED


# ----------------------------------------------------------------------
# Invoices
# ----------------------------------------------------------------------

def cancel_incomplete_subscriptions(customer_id: str, keep_subscription_id: str) -> int:
    """Cancel a customer's abandoned checkouts once one of them is paid.

    Best effort: errors are logged and the number cancelled is returned.
    """
    cancelled = 0
    try:
        configure_stripe()
        incomplete = stripe.Subscription.list(customer=customer_id, status='incomplete', limit=100)
    except (stripe.StripeError, BillingNotConfiguredError) as e:
        logger.error(f"Error during incomplete subscription cleanup: {e}", customer_id=customer_id)
        return 0

    for subscription in field(incomplete, 'data', []):
        sub_id = field(subscription, 'id')
        if sub_id == keep_subscription_id:
            continue
        try:
            stripe.Subscription.cancel(sub_id)
            cancelled += 1
        except stripe.StripeError as e:
            logger.warning(f"Failed to cancel subscription {sub_id}: {e}", subscription_id=sub_id)

    if cancelled:
        logger.info(f"Cleaned up {cancelled} incomplete subscriptions for customer {customer_id}",
                    customer_id=customer_id, kept=keep_subscription_id)
    return cancelled


def handle_invoice_paid(store: CustomerStore, event: Dict[str, Any]) -> str:
    invoice = _object(event)
    customer_id = _id(field(invoice, 'customer'))
    sub_id = invoice_subscription_id(invoice)
    created = field(event, 'created')

    if not sub_id or not customer_id:
        logger.info(f"Invoice {field(invoice, 'id')} is not a subscription invoice")
        return IGNORED

    restored = False
    with store.transaction() as doc:
        customer = ensure_customer(doc, customer_id)
        if ent.is_stale(customer.get(ent.PAYMENT_WATERMARK), created):
            return STALE
        restored = ent.restore(customer, created)
        ent.check_invariant(customer)
        customer['updatedAt'] = utcnow_iso()
        snapshot = dict(customer)

    if restored:
        entitlement_logger.log_entitlement_change(customer_id, 'restored', invoice_id=field(invoice, 'id'))
        get_notifier().customer_restored(snapshot)

    cancel_incomplete_subscriptions(customer_id, sub_id)
    return APPLIED


def handle_invoice_payment_failed(store: CustomerStore, event: Dict[str, Any]) -> str:
    invoice = _object(event)
    customer_id = _id(field(invoice, 'customer'))
    sub_id = invoice_subscription_id(invoice)
    created = field(event, 'created')

    if not sub_id or not customer_id:
        logger.info(f"Invoice payment failed for non-subscription invoice {field(invoice, 'id')}")
        return IGNORED

    with store.transaction() as doc:
        customer = ensure_customer(doc, customer_id)
        if ent.is_stale(customer.get(ent.PAYMENT_WATERMARK), created):
            return STALE
        newly_suspended = ent.suspend(customer, invoice, created)
        ent.check_invariant(customer)
        customer['updatedAt'] = utcnow_iso()
        snapshot = dict(customer)

    entitlement_logger.log_entitlement_change(
        customer_id, 'suspended', invoice_id=field(invoice, 'id'),
        attempt_count=snapshot['suspensionInfo']['attemptCount'])
    if newly_suspended:
        get_notifier().customer_suspended(snapshot)
    return APPLIED


def handle_invoice_informational(store: CustomerStore, event: Dict[str, Any]) -> str:
    invoice = _object(event)
    if field(event, 'type') == 'invoice.upcoming':
        amount = field(invoice, 'amount_due', 0) / 100
        currency = (field(invoice, 'currency') or '').upper()
        logger.info(
            f"Upcoming invoice for customer {field(invoice, 'customer')}: {amount} {currency}",
            subscription_id=invoice_subscription_id(invoice))
    else:
        logger.info(f"Invoice created: {field(invoice, 'id')} for customer {field(invoice, 'customer')}")
    return IGNORED


# ----------------------------------------------------------------------
# Payment intents
# ----------------------------------------------------------------------

def handle_payment_intent(store: CustomerStore, event: Dict[str, Any]) -> str:
    intent = _object(event)
    intent_id = field(intent, 'id')
    created = field(event, 'created')
    succeeded = field(event, 'type') == 'payment_intent.succeeded'

    with store.transaction() as doc:
        existing = doc['payments'].get(intent_id) or {}
        if ent.is_stale(existing.get('eventAt'), created):
            return STALE

        record = dict(existing)
        record.update({
            'stripePaymentIntentId': intent_id,
            'customerId': _id(field(intent, 'customer')),
            'amount': field(intent, 'amount'),
            'currency': field(intent, 'currency'),
            'status': 'succeeded' if succeeded else 'failed',
            'eventAt': created,
            'updatedAt': utcnow_iso(),
        })
        if succeeded:
            record['paymentMethod'] = _id(field(intent, 'payment_method'))
        else:
            record['lastPaymentError'] = field(intent, 'last_payment_error')
        doc['payments'][intent_id] = record

    logger.info(f"Payment {record['status']} and saved: {intent_id}", payment_intent_id=intent_id)
    return APPLIED


EVENT_HANDLERS: Dict[str, Callable[[CustomerStore, Dict[str, Any]], str]] = {
    'customer.created': handle_customer_upsert,
    'customer.updated': handle_customer_upsert,
    'entitlements.active_entitlement_summary.updated': handle_entitlement_summary,
    'customer.subscription.created': handle_subscription_upsert,
    'customer.subscription.updated': handle_subscription_upsert,
    'customer.subscription.deleted': handle_subscription_deleted,
    'customer.subscription.paused': handle_subscription_pause,
    'customer.subscription.resumed': handle_subscription_pause,
    'invoice.payment_succeeded': handle_invoice_paid,
    'invoice.paid': handle_invoice_paid,
    'invoice.payment_failed': handle_invoice_payment_failed,
    'invoice.upcoming': handle_invoice_informational,
    'invoice.created': handle_invoice_informational,
    'payment_intent.succeeded': handle_payment_intent,
    'payment_intent.payment_failed': handle_payment_intent,
}


def dispatch_event(store: CustomerStore, event: Dict[str, Any]) -> str:
    """Run the handler for ``event`` and return its outcome."""
    handler = EVENT_HANDLERS.get(field(event, 'type'))
    if handler is None:
        logger.info(f"Unhandled event type: {field(event, 'type')}")
        return UNHANDLED
    return handler(store, event)
