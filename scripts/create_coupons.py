#!/usr/bin/env python3
"""
Create Coupons Script
Creates the coupons promotion codes are issued from
"""

import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import stripe

from src.factory import create_app
from src.services.pricing import describe_discount
from src.services.provisioning import create_coupons
from src.services.stripe_client import BillingNotConfiguredError, configure_stripe


def main():
    app = create_app()

    with app.app_context():
        print("🎫 Creating coupons...")
        try:
            configure_stripe()
            result = create_coupons()
        except (BillingNotConfiguredError, stripe.StripeError) as e:
            print(f"❌ Error creating coupons: {e}")
            return 1

        for coupon in result["created"]:
            print(f"✅ Created: {coupon.id} ({describe_discount(coupon)}, {coupon.duration})")
        for coupon in result["skipped"]:
            print(f"⚠️  Already exists: {coupon.id}")
        return 0


if __name__ == "__main__":
    sys.exit(main())
