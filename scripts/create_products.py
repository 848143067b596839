#!/usr/bin/env python3
"""
Create Products Script
Creates the subscription tiers with their features and monthly/yearly prices
"""

import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import stripe

from src.factory import create_app
from src.services.pricing import format_price
from src.services.provisioning import PRODUCTS_CONFIG, create_products
from src.services.stripe_client import BillingNotConfiguredError, configure_stripe


def main():
    app = create_app()

    with app.app_context():
        print(f"🚀 Creating {len(PRODUCTS_CONFIG)} products with pricing and features...")
        try:
            configure_stripe()
            result = create_products(currency=app.config["CURRENCY"])
        except (BillingNotConfiguredError, stripe.StripeError) as e:
            print(f"❌ Error creating products: {e}")
            return 1

        for entry in result["created"]:
            product = entry["product"]
            print(f"✅ {product.name} ({product.id})")
            for interval, price in entry["prices"].items():
                print(f"   {interval}: {price['id']} ({format_price(price['amount'])})")
            if entry["failedFeatures"]:
                print(f"   ❌ Features not attached: {', '.join(entry['failedFeatures'])}")
                print("   💡 Run scripts/create_features.py first!")
        for product in result["skipped"]:
            print(f"⚠️  Already exists: {product.name} ({product.id})")
        print("")
        print("🎉 Product creation complete!")
        return 0


if __name__ == "__main__":
    sys.exit(main())
