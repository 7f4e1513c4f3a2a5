"""Unit tests for configuration module."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from evalshop.core.config import Settings, get_settings

REQUIRED = {
    "SUPABASE_URL": "https://test.supabase.co",
    "SUPABASE_SECRET_KEY": "test-secret",
}


class TestSettings:
    """Tests for Settings class."""

    def test_settings_loads_from_environment(self) -> None:
        """Test that Settings loads values from environment variables."""
        env_vars = {
            **REQUIRED,
            "APP_NAME": "test-app",
            "APP_ENV": "testing",
            "DEBUG": "true",
            "PORT": "9000",
            "PAYTIKO_MERCHANT_SECRET": "pt-secret",
            "PRICE_DRIFT_TOLERANCE": "2",
            "KLAVIYO_API_KEY": "pk_test",
        }

        with patch.dict(os.environ, env_vars, clear=False):
            settings = Settings()

            assert settings.app_name == "test-app"
            assert settings.app_env == "testing"
            assert settings.debug is True
            assert settings.port == 9000
            assert settings.paytiko_merchant_secret == "pt-secret"
            assert settings.price_drift_tolerance == 2
            assert settings.klaviyo_api_key == "pk_test"

    def test_settings_defaults(self) -> None:
        """Test pricing, order number and HTTP defaults."""
        with patch.dict(os.environ, REQUIRED, clear=True):
            settings = Settings(_env_file=None)

            assert settings.default_currency == "USD"
            assert settings.price_drift_tolerance == 1
            assert settings.order_number_start == 100000
            assert settings.order_number_max_attempts == 10
            assert settings.http_timeout_seconds == 30.0
            assert settings.http_connect_timeout_seconds == 5.0
            assert settings.klaviyo_revision == "2024-07-15"
            assert settings.commerce_mirror_url == ""

    def test_default_currency_is_normalized(self) -> None:
        """Test that the default currency is stored uppercase."""
        with patch.dict(os.environ, {**REQUIRED, "DEFAULT_CURRENCY": " eur "}, clear=False):
            assert Settings().default_currency == "EUR"

    def test_settings_cors_origins_list(self) -> None:
        """Test that CORS origins are correctly parsed into a list."""
        env_vars = {**REQUIRED, "CORS_ORIGINS": "http://localhost:3000, http://example.com , ,http://test.com"}

        with patch.dict(os.environ, env_vars, clear=False):
            origins = Settings().cors_origins_list

            assert origins == ["http://localhost:3000", "http://example.com", "http://test.com"]

    def test_settings_is_production_property(self) -> None:
        """Test the is_production property."""
        with patch.dict(os.environ, {**REQUIRED, "APP_ENV": "production"}, clear=False):
            assert Settings().is_production is True

        with patch.dict(os.environ, {**REQUIRED, "APP_ENV": "development"}, clear=False):
            assert Settings().is_production is False

    def test_settings_requires_supabase_credentials(self) -> None:
        """Test that missing Supabase settings raise a validation error."""
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)


class TestGetSettings:
    """Tests for get_settings function."""

    def test_get_settings_returns_cached_instance(self) -> None:
        """Test that get_settings returns the same instance."""
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
