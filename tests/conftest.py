"""Pytest configuration and fixtures."""

import os
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("PAYTIKO_MERCHANT_SECRET", "paytiko-test-secret")
os.environ.setdefault("CONFIRMO_CALLBACK_PASSWORD", "confirmo-test-password")
os.environ.setdefault("BRIDGERPAY_WEBHOOK_SECRET", "bridgerpay-test-secret")


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from evalshop.core.config import get_settings

    get_settings.cache_clear()
    settings = get_settings()
    yield settings
    get_settings.cache_clear()


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client installed by the app lifespan.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()

    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )

    with patch("evalshop.main.create_supabase_client", return_value=mock_client):
        yield mock_client


@pytest.fixture
def client(mock_supabase_client: MagicMock) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Args:
        mock_supabase_client: Mocked Supabase client fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    from evalshop.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def sample_program() -> dict:
    """A program with two pricing tiers."""
    return {
        "id": "prog-1",
        "name": "Two Step Challenge",
        "category": "two-step",
        "status": "active",
        "activation_fee": 149,
        "pricing_tiers": [
            {"id": "tier-50k", "account_size": "$50,000", "price": 100, "reset_fee": 60, "reset_fee_funded": 90},
            {"id": "tier-100k", "account_size": "$100,000", "price": 200, "reset_fee": 110, "reset_fee_funded": 150},
        ],
    }


@pytest.fixture
def sample_purchase() -> dict:
    """A pending purchase as stored in the purchases table."""
    return {
        "id": 42,
        "order_number": "100123",
        "purchase_type": "original-order",
        "program_id": "prog-1",
        "tier_id": "tier-100k",
        "account_size": "$100,000",
        "platform_slug": "mt5",
        "purchase_price": 160,
        "total_price": 184,
        "currency": "USD",
        "status": "pending",
        "customer_email": "jane@example.com",
        "customer_name": "Jane Trader",
        "customer_data": {"first_name": "Jane", "last_name": "Trader", "email": "jane@example.com", "country": "DE"},
        "user_id": None,
        "selected_add_ons": [
            {"add_on_id": "addon-1", "percentage": 15, "metadata": {"key": "profit_split_90"}},
        ],
        "discount_code": "SAVE20",
        "affiliate_username": None,
        "payment_method": None,
        "transaction_id": None,
        "metadata": {"totalPrice": 184, "originalPrice": 160, "tierPrice": 200},
        "created_at": "2026-03-01T10:00:00+00:00",
        "updated_at": "2026-03-01T10:00:00+00:00",
    }
