# -*- coding: utf-8 -*-
"""
Tests for environment-driven settings.
"""

import os
from unittest.mock import patch

from src.config import Config, config_warnings, load_config

CONFIGURED = {
    "SECRET_KEY": "a-real-secret",
    "STRIPE_SECRET_KEY": "sk_test_dummy",
    "STRIPE_WEBHOOK_SECRET": "whsec_test_secret",
}


class TestLoadConfig:

    def test_secret_key_defaults_to_development_value(self):
        with patch.dict(os.environ, {}, clear=True):
            config = load_config()

        assert config["SECRET_KEY"] == Config.SECRET_KEY
        assert config["PROCESSED_EVENTS_LIMIT"] == 1000
        assert config["CURRENCY"] == "gbp"

    def test_environment_overrides_defaults(self):
        with patch.dict(os.environ, {"SECRET_KEY": "a-real-secret", "CHECKOUT_CURRENCY": "EUR",
                                     "PROCESSED_EVENTS_LIMIT": "50"}, clear=True):
            config = load_config()

        assert config["SECRET_KEY"] == "a-real-secret"
        assert config["CURRENCY"] == "eur"
        assert config["PROCESSED_EVENTS_LIMIT"] == 50


class TestConfigWarnings:

    def test_fully_configured_has_no_warnings(self):
        assert config_warnings(CONFIGURED) == []

    def test_default_secret_key_is_reported(self):
        warnings = config_warnings(dict(CONFIGURED, SECRET_KEY=Config.SECRET_KEY))

        assert warnings == ["SECRET_KEY not set; using the development default"]

    def test_missing_stripe_keys_are_reported(self):
        warnings = config_warnings(dict(CONFIGURED, STRIPE_SECRET_KEY="", STRIPE_WEBHOOK_SECRET=None))

        assert len(warnings) == 2
        assert warnings[0].startswith("STRIPE_SECRET_KEY not set")
        assert warnings[1].startswith("STRIPE_WEBHOOK_SECRET not set")

    def test_factory_logs_each_warning(self, tmp_path):
        from src.factory import create_app

        with patch.dict(os.environ, {"CHECKOUT_DATA_FILE": str(tmp_path / "users.json"),
                                     "CHECKOUT_METRICS_ENABLED": "false"}), \
                patch("src.factory.config_warnings", return_value=["first", "second"]), \
                patch("flask.Flask.logger") as mock_logger:
            create_app()

        mock_logger.warning.assert_any_call("first")
        mock_logger.warning.assert_any_call("second")
