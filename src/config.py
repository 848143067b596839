import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

# Real environment variables win over the .env file
load_dotenv(BASE_DIR / ".env", override=False)


class Config:
    """Defaults for settings not present in the environment."""
    SECRET_KEY = "dev-secret-key"
    STRIPE_API_VERSION = "2023-10-16"
    CHECKOUT_DATA_FILE = str(BASE_DIR / "data" / "users.json")
    CORS_ALLOWED_ORIGINS = "http://localhost:3000,http://localhost:5000"
    CURRENCY = "gbp"
    PROCESSED_EVENTS_LIMIT = 1000


def load_config() -> dict:
    """Read settings from the environment at call time.

    The factory calls this for every app instance so tests can patch
    os.environ per app.
    """
    return {
        "SECRET_KEY": os.environ.get("SECRET_KEY", Config.SECRET_KEY),
        "STRIPE_SECRET_KEY": os.getenv("STRIPE_SECRET_KEY", "").strip(),
        "STRIPE_PUBLISHABLE_KEY": os.getenv("STRIPE_PUBLISHABLE_KEY", "").strip(),
        "STRIPE_WEBHOOK_SECRET": os.getenv("STRIPE_WEBHOOK_SECRET"),
        "STRIPE_API_VERSION": os.getenv("STRIPE_API_VERSION", Config.STRIPE_API_VERSION),
        "CHECKOUT_DATA_FILE": os.getenv("CHECKOUT_DATA_FILE", Config.CHECKOUT_DATA_FILE),
        "BILLING_PORTAL_RETURN_URL": os.getenv("BILLING_PORTAL_RETURN_URL", "").strip(),
        "DISCORD_WEBHOOK_URL": os.getenv("DISCORD_WEBHOOK_URL", "").strip(),
        "CORS_ALLOWED_ORIGINS": os.getenv("CORS_ALLOWED_ORIGINS", Config.CORS_ALLOWED_ORIGINS),
        "CURRENCY": os.getenv("CHECKOUT_CURRENCY", Config.CURRENCY).lower(),
        "PROCESSED_EVENTS_LIMIT": int(
            os.getenv("PROCESSED_EVENTS_LIMIT", Config.PROCESSED_EVENTS_LIMIT)),
    }


def config_warnings(config) -> list:
    """Settings that leave the service running in a degraded or unsafe way."""
    warnings = []
    if config.get("SECRET_KEY") == Config.SECRET_KEY:
        warnings.append("SECRET_KEY not set; using the development default")
    if not config.get("STRIPE_SECRET_KEY"):
        warnings.append("STRIPE_SECRET_KEY not set; checkout endpoints will answer 501")
    if not config.get("STRIPE_WEBHOOK_SECRET"):
        warnings.append("STRIPE_WEBHOOK_SECRET not set; webhooks will be rejected")
    return warnings
