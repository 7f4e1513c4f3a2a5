"""Unit tests for payment gateway adapters."""

import hashlib
import hmac
import json

import pytest

from evalshop.core.config import get_settings
from evalshop.services.exceptions import MalformedNotificationError
from evalshop.services.gateways.bridgerpay import BridgerPayGateway
from evalshop.services.gateways.confirmo import ConfirmoGateway
from evalshop.services.gateways.paytiko import PaytikoGateway
from evalshop.services.gateways.registry import build_gateways


def paytiko_body(status: str = "Success", order_id: str = "100123", **extra: object) -> bytes:
    signature = hashlib.sha256(f"paytiko-secret:{order_id}".encode()).hexdigest()
    body = {
        "OrderId": order_id,
        "TransactionStatus": status,
        "TransactionType": "Sale",
        "TransactionId": 98765,
        "InitialAmount": 184.0,
        "Currency": "USD",
        "Signature": signature,
        **extra,
    }
    return json.dumps(body).encode()


class TestPaytikoGateway:
    """Tests for the Paytiko adapter."""

    def test_decode_and_verify(self) -> None:
        """Test a correctly signed success callback."""
        gateway = PaytikoGateway("paytiko-secret")
        raw = paytiko_body()

        notification = gateway.decode(raw, {})

        assert notification.order_id == "100123"
        assert notification.transaction_id == "98765"
        assert notification.payment.amount == 184.0
        assert gateway.verify(raw, notification) is True
        assert gateway.map_status(notification) == "completed"

    def test_uppercase_signature_accepted(self) -> None:
        """Test that signature comparison ignores case."""
        gateway = PaytikoGateway("paytiko-secret")
        body = json.loads(paytiko_body())
        body["Signature"] = body["Signature"].upper()
        raw = json.dumps(body).encode()

        assert gateway.verify(raw, gateway.decode(raw, {})) is True

    def test_wrong_secret_rejected(self) -> None:
        """Test that a signature made with another secret fails."""
        gateway = PaytikoGateway("other-secret")
        raw = paytiko_body()

        assert gateway.verify(raw, gateway.decode(raw, {})) is False

    def test_empty_secret_rejects_everything(self) -> None:
        """Test that an unconfigured secret never verifies."""
        gateway = PaytikoGateway("")
        raw = paytiko_body()

        assert gateway.verify(raw, gateway.decode(raw, {})) is False

    def test_rejected_maps_to_failed(self) -> None:
        """Test the failure status mapping."""
        gateway = PaytikoGateway("paytiko-secret")

        assert gateway.map_status(gateway.decode(paytiko_body("Rejected"), {})) == "failed"

    def test_successful_refund_maps_to_refunded(self) -> None:
        """Test that a successful refund transaction refunds the order."""
        gateway = PaytikoGateway("paytiko-secret")
        notification = gateway.decode(paytiko_body(TransactionType="Refund"), {})

        assert gateway.map_status(notification) == "refunded"

    def test_unknown_status_is_unmapped(self) -> None:
        """Test that unknown statuses map to None."""
        gateway = PaytikoGateway("paytiko-secret")

        assert gateway.map_status(gateway.decode(paytiko_body("Chargeback"), {})) is None


class TestConfirmoGateway:
    """Tests for the Confirmo adapter."""

    def _raw(self, **overrides: object) -> bytes:
        body = {
            "id": "inv-1",
            "status": "paid",
            "reference": "100123",
            "customerAmount": {"amount": "184.00", "currency": "USD"},
            "rate": {"currencyTo": "BTC"},
            "paid": {"amount": "0.0031"},
            "cryptoTransactions": [{"txid": "abc"}],
            **overrides,
        }
        return json.dumps(body).encode()

    def test_signature_over_raw_body(self) -> None:
        """Test that the signature covers the exact raw body."""
        gateway = ConfirmoGateway("confirmo-secret")
        raw = self._raw()
        signature = hashlib.sha256(raw + b"confirmo-secret").hexdigest()

        notification = gateway.decode(raw, {"bp-signature": signature})

        assert gateway.verify(raw, notification) is True
        assert gateway.verify(raw + b" ", notification) is False

    def test_status_mapping(self) -> None:
        """Test paid, expired and in-flight statuses."""
        gateway = ConfirmoGateway("confirmo-secret")

        assert gateway.map_status(gateway.decode(self._raw(), {})) == "completed"
        assert gateway.map_status(gateway.decode(self._raw(status="expired"), {})) == "failed"
        assert gateway.map_status(gateway.decode(self._raw(status="confirming"), {})) == "pending"

    def test_legacy_reference(self) -> None:
        """Test that legacy invoice references yield the purchase id."""
        gateway = ConfirmoGateway("confirmo-secret")

        notification = gateway.decode(self._raw(reference="ftm-42-prog-1-xyz"), {})

        assert notification.order_id == "42"

    def test_bookkeeping_includes_crypto_details(self) -> None:
        """Test the crypto fields kept with the gateway entry."""
        gateway = ConfirmoGateway("confirmo-secret")

        entry = gateway.bookkeeping(gateway.decode(self._raw(), {}))

        assert entry["cryptoCurrency"] == "BTC"
        assert entry["cryptoAmount"] == "0.0031"
        assert entry["cryptoTransactions"] == ["abc"]
        assert entry["payment"] == {"amount": 184.0, "currency": "USD"}

    def test_bookkeeping_tolerates_scalar_fields(self) -> None:
        """Test that non-object crypto details are dropped instead of raising."""
        gateway = ConfirmoGateway("confirmo-secret")
        raw = self._raw(rate="BTC", paid=0.0031, cryptoTransactions="abc", customerAmount="184")

        notification = gateway.decode(raw, {})
        entry = gateway.bookkeeping(notification)

        assert entry["cryptoCurrency"] is None
        assert entry["cryptoAmount"] is None
        assert entry["cryptoTransactions"] == []
        assert entry["payment"] == {}


class TestBridgerPayGateway:
    """Tests for the BridgerPay adapter."""

    def test_nested_charge_payload(self) -> None:
        """Test extraction from the nested charge structure."""
        gateway = BridgerPayGateway("bridger-secret")
        raw = json.dumps(
            {
                "webhook": {"type": "approved"},
                "data": {
                    "order_id": "100123",
                    "charge": {"id": "ch_1", "attributes": {"status": "approved", "amount": 184, "currency": "EUR"}},
                },
            }
        ).encode()
        signature = hmac.new(b"bridger-secret", raw, hashlib.sha256).hexdigest()

        notification = gateway.decode(raw, {"x-bridgerpay-signature": signature})

        assert notification.order_id == "100123"
        assert notification.transaction_id == "ch_1"
        assert notification.payment.currency == "EUR"
        assert gateway.verify(raw, notification) is True
        assert gateway.map_status(notification) == "completed"

    def test_flat_payload(self) -> None:
        """Test extraction from a flat payload."""
        gateway = BridgerPayGateway("bridger-secret")
        raw = json.dumps({"orderId": 100123, "status": "DECLINED"}).encode()

        notification = gateway.decode(raw, {})

        assert notification.order_id == "100123"
        assert gateway.map_status(notification) == "failed"
        assert gateway.verify(raw, notification) is False


class TestDecode:
    """Tests for shared decoding failures."""

    @pytest.mark.parametrize(
        "raw",
        [b"", b"   ", b"not json", b"[1, 2]", b'{"TransactionStatus": "Success"}', b'{"OrderId": "1"}'],
    )
    def test_malformed_bodies(self, raw: bytes) -> None:
        """Test that unusable bodies raise MalformedNotificationError."""
        with pytest.raises(MalformedNotificationError):
            PaytikoGateway("paytiko-secret").decode(raw, {})


def test_registry_builds_all_gateways(test_settings) -> None:
    """Test that every supported gateway is registered by name."""
    gateways = build_gateways(get_settings())

    assert set(gateways) == {"paytiko", "confirmo", "bridgerpay"}
    assert gateways["paytiko"].secret == "paytiko-test-secret"
