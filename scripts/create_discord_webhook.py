#!/usr/bin/env python3
"""
Create Discord Webhook Script
Creates (or finds) the "Stripe Events" webhook in a Discord channel and
writes its URL to .env as DISCORD_WEBHOOK_URL
"""

import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import requests

from src.config import BASE_DIR
from src.services.provisioning import create_discord_webhook, update_env_file


def main():
    bot_token = os.getenv("DISCORD_BOT_TOKEN")
    channel_id = os.getenv("STRIPE_LOG_CHANNEL_ID")

    missing = [name for name, value in (("DISCORD_BOT_TOKEN", bot_token),
                                         ("STRIPE_LOG_CHANNEL_ID", channel_id)) if not value]
    if missing:
        print("❌ Missing required environment variables:")
        for name in missing:
            print(f"  - {name}")
        return 1

    print("🔍 Checking for existing webhooks...")
    try:
        webhook_url = create_discord_webhook(bot_token, channel_id)
    except requests.RequestException as e:
        print(f"❌ Error creating Discord webhook: {e}")
        return 1

    print("✅ Discord webhook ready")
    try:
        replaced = update_env_file(webhook_url, str(BASE_DIR / ".env"))
    except OSError as e:
        print(f"⚠️  Could not update .env file: {e}")
        print("💡 Please manually add this to your .env file:")
        print(f"DISCORD_WEBHOOK_URL={webhook_url}")
        return 0

    print("✏️  Updated DISCORD_WEBHOOK_URL in .env" if replaced else "➕ Added DISCORD_WEBHOOK_URL to .env")
    return 0


if __name__ == "__main__":
    sys.exit(main())
