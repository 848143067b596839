#!/usr/bin/env python3
"""
Clean Script
Cancels incomplete subscriptions, voids open invoices and cancels payment
intents still waiting for a payment method
"""

import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import stripe

from src.factory import create_app
from src.services.provisioning import clean_test_leftovers
from src.services.stripe_client import BillingNotConfiguredError, configure_stripe


def main():
    app = create_app()

    with app.app_context():
        print("🧹 Cleaning Stripe test leftovers...")
        try:
            configure_stripe()
            counts = clean_test_leftovers()
        except (BillingNotConfiguredError, stripe.StripeError) as e:
            print(f"❌ Error: {e}")
            return 1

        print(f"✅ Cancelled {counts['subscriptions']} incomplete subscriptions")
        print(f"✅ Voided {counts['invoices']} open invoices")
        print(f"✅ Cancelled {counts['payment_intents']} incomplete payment intents")
        return 0


if __name__ == "__main__":
    sys.exit(main())
