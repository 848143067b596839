#!/usr/bin/env python3
"""
Create Promo Codes Script
Creates per-email promotion codes for beta testers
"""

import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import stripe

from src.factory import create_app
from src.services.provisioning import ProvisioningError, create_promotion_codes
from src.services.stripe_client import BillingNotConfiguredError, configure_stripe


def main():
    app = create_app()

    with app.app_context():
        print("🎟️  Creating promotion codes...")
        try:
            configure_stripe()
            result = create_promotion_codes()
        except ProvisioningError as e:
            print(f"❌ {e}")
            print("💡 Run scripts/create_coupons.py first")
            return 1
        except (BillingNotConfiguredError, stripe.StripeError) as e:
            print(f"❌ Error creating promo codes: {e}")
            return 1

        for code in result["created"]:
            print(f"✅ Created: {code.code} -> {code.metadata.get('authorized_email')}")
        for code in result["reactivated"]:
            print(f"🔄 Reactivated: {code.code}")
        for code in result["skipped"]:
            print(f"⚠️  Already active: {code.code}")
        return 0


if __name__ == "__main__":
    sys.exit(main())
