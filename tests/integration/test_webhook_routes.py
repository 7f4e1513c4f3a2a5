"""Integration tests for payment gateway callback endpoints."""

import hashlib
import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient


def signed_paytiko_body(status: str = "Success", order_id: str = "100123", secret: str = "paytiko-test-secret") -> bytes:
    return json.dumps(
        {
            "OrderId": order_id,
            "TransactionStatus": status,
            "TransactionType": "Sale",
            "TransactionId": "tx-77",
            "Signature": hashlib.sha256(f"{secret}:{order_id}".encode()).hexdigest(),
        }
    ).encode()


@pytest.fixture
def purchase_lookup(mock_supabase_client: MagicMock) -> MagicMock:
    """The execute() of purchase lookups by order number or id."""
    lookup = mock_supabase_client.table.return_value.select.return_value.eq.return_value.maybe_single.return_value
    lookup.execute.return_value = MagicMock(data=None)
    return lookup.execute


class TestGatewayWebhook:
    """Tests for POST /api/v1/webhooks/{gateway}."""

    def test_unknown_gateway_returns_404(self, client: TestClient) -> None:
        response = client.post("/api/v1/webhooks/stripe", content=signed_paytiko_body())

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_malformed_body_returns_400(self, client: TestClient) -> None:
        response = client.post("/api/v1/webhooks/paytiko", content=b"not json")

        assert response.status_code == 400
        assert response.json()["error"] == "bad_request"

    def test_invalid_signature_returns_401(
        self, client: TestClient, mock_supabase_client: MagicMock, purchase_lookup: MagicMock
    ) -> None:
        """Test that a forged callback is rejected without touching purchases."""
        response = client.post("/api/v1/webhooks/paytiko", content=signed_paytiko_body(secret="forged"))

        assert response.status_code == 401
        assert response.json()["error"] == "authentication_error"
        purchase_lookup.assert_not_called()
        mock_supabase_client.table.return_value.update.assert_not_called()

    def test_unknown_order_acknowledged(self, client: TestClient, purchase_lookup: MagicMock) -> None:
        response = client.post("/api/v1/webhooks/paytiko", content=signed_paytiko_body(order_id="999999"))

        assert response.status_code == 200
        assert response.json() == {"status": "received"}

    def test_completes_pending_purchase(
        self,
        client: TestClient,
        mock_supabase_client: MagicMock,
        purchase_lookup: MagicMock,
        sample_purchase: dict,
    ) -> None:
        """Test that a signed success callback moves the purchase to completed."""
        purchase_lookup.return_value = MagicMock(data=sample_purchase)
        update = mock_supabase_client.table.return_value.update.return_value
        transition = update.eq.return_value.eq.return_value.eq.return_value
        transition.execute.return_value = MagicMock(data=[{**sample_purchase, "status": "completed"}])

        response = client.post("/api/v1/webhooks/paytiko", content=signed_paytiko_body())

        assert response.status_code == 200
        changes = mock_supabase_client.table.return_value.update.call_args_list[0].args[0]
        assert changes["status"] == "completed"
        assert changes["transaction_id"] == "tx-77"
        assert changes["payment_method"] == "card"

    def test_confirmo_signature_over_raw_body(
        self, client: TestClient, mock_supabase_client: MagicMock, purchase_lookup: MagicMock
    ) -> None:
        """Test that the exact request bytes are verified."""
        raw = b'{"id": "inv-1", "status": "paid", "reference": "100123"}'
        signature = hashlib.sha256(raw + b"confirmo-test-password").hexdigest()

        response = client.post("/api/v1/webhooks/confirmo", content=raw, headers={"bp-signature": signature})

        assert response.status_code == 200
