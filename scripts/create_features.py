#!/usr/bin/env python3
"""
Create Features Script
Creates the Stripe entitlement features the subscription tiers grant
"""

import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import stripe

from src.factory import create_app
from src.services.provisioning import create_features
from src.services.stripe_client import BillingNotConfiguredError, configure_stripe


def main():
    app = create_app()

    with app.app_context():
        print("🎯 Creating Stripe features...")
        try:
            configure_stripe()
            result = create_features()
        except (BillingNotConfiguredError, stripe.StripeError) as e:
            print(f"❌ Error creating features: {e}")
            return 1

        for feature in result["created"]:
            print(f"✅ Created: {feature.lookup_key} ({feature.id})")
        for lookup_key in result["skipped"]:
            print(f"⚠️  Already exists: {lookup_key}")
        print("")
        print("🎉 Features ready!")
        return 0


if __name__ == "__main__":
    sys.exit(main())
