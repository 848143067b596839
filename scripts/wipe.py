#!/usr/bin/env python3
"""
Wipe Script
Deletes everything in the Stripe test account and resets the local store
"""

import os
import sys
import time

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import stripe

from src.factory import create_app
from src.services.provisioning import wipe_environment
from src.services.storage import get_store
from src.services.stripe_client import BillingNotConfiguredError, configure_stripe

COUNTDOWN_SECONDS = 5


def countdown(seconds):
    for remaining in range(seconds, 0, -1):
        sys.stdout.write(f"\r⏰ Starting wipe in {remaining} seconds... (Ctrl+C to abort)")
        sys.stdout.flush()
        time.sleep(1)
    sys.stdout.write("\r⏰ Starting wipe now...                              \n")


def main():
    app = create_app()

    with app.app_context():
        try:
            configure_stripe()
        except BillingNotConfiguredError as e:
            print(f"❌ {e.message}")
            return 1

        if not app.config["STRIPE_SECRET_KEY"].startswith("sk_test_"):
            print("❌ Refusing to wipe: STRIPE_SECRET_KEY is not a test key")
            return 1

        try:
            countdown(COUNTDOWN_SECONDS)
        except KeyboardInterrupt:
            print("\n🛑 Wipe aborted")
            return 1

        try:
            counts = wipe_environment(get_store())
        except stripe.StripeError as e:
            print(f"❌ Wipe error: {e}")
            return 1

        print(f"🗑️  Deleted {counts['customers']} customers")
        print(f"🗑️  Removed {counts['products']} products")
        print(f"🗑️  Deleted {counts['coupons']} coupons")
        print(f"🗑️  Archived {counts['features']} features")
        print("🎉 Stripe test environment wiped!")
        return 0


if __name__ == "__main__":
    sys.exit(main())
