# -*- coding: utf-8 -*-
"""
Discord channel notifications for billing events.

Posts short embeds to the channel webhook configured in
DISCORD_WEBHOOK_URL. Delivery is best effort: failures are logged and
never propagate to the webhook handler.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
from flask import current_app, has_app_context

from src.services.structured_logging import get_logger

logger = get_logger('checkout.notifier')

COLOR_GREEN = 0x2ECC71
COLOR_ORANGE = 0xE67E22
COLOR_RED = 0xE74C3C


class DiscordNotifier:
    """Sends embeds to one Discord channel webhook."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: int = 10):
        self.webhook_url = webhook_url
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def send(self, title: str, description: str, color: int = COLOR_GREEN,
             fields: Optional[List[Dict[str, Any]]] = None) -> bool:
        """Post one embed; returns whether Discord accepted it."""
        if not self.enabled:
            return False

        payload = {
            'username': 'Stripe Events',
            'embeds': [{
                'title': title,
                'description': description,
                'color': color,
                'fields': fields or [],
                'timestamp': datetime.now(timezone.utc).isoformat(),
            }],
        }
        try:
            response = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            logger.error(f"Failed to send Discord notification: {e}", title=title)
            return False

    def subscription_created(self, customer: Dict[str, Any], subscription: Dict[str, Any]) -> bool:
        return self.send(
            'New subscription',
            f"{customer.get('email') or customer.get('stripeCustomerId')} subscribed",
            COLOR_GREEN,
            [
                {'name': 'Subscription', 'value': subscription.get('stripeSubscriptionId') or '-', 'inline': True},
                {'name': 'Status', 'value': subscription.get('status') or '-', 'inline': True},
                {'name': 'Price', 'value': subscription.get('priceId') or '-', 'inline': True},
            ],
        )

    def customer_suspended(self, customer: Dict[str, Any]) -> bool:
        info = customer.get('suspensionInfo') or {}
        return self.send(
            'Customer suspended',
            f"Payment failed for {customer.get('email') or customer.get('stripeCustomerId')}",
            COLOR_RED,
            [
                {'name': 'Invoice', 'value': info.get('invoiceId') or '-', 'inline': True},
                {'name': 'Attempts', 'value': str(info.get('attemptCount') or 0), 'inline': True},
            ],
        )

    def customer_restored(self, customer: Dict[str, Any]) -> bool:
        return self.send(
            'Customer restored',
            f"Access restored for {customer.get('email') or customer.get('stripeCustomerId')}",
            COLOR_ORANGE,
        )


def get_notifier() -> DiscordNotifier:
    """Notifier for the current app's configuration."""
    url = current_app.config.get('DISCORD_WEBHOOK_URL') if has_app_context() else None
    return DiscordNotifier(url)
