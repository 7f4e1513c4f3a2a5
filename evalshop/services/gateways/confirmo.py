"""Confirmo crypto payment callbacks."""

import hashlib
from collections.abc import Mapping
from typing import Any

from evalshop.models.purchase import PurchaseStatus
from evalshop.schemas.webhook import GatewayNotification
from evalshop.services.gateways.base import GatewayAdapter, first_number, first_str

# Legacy invoice references look like ftm-{purchaseId}-{programId}-...
LEGACY_REFERENCE_PREFIX = "ftm-"


class ConfirmoGateway(GatewayAdapter):
    """Confirmo signs callbacks with ``sha256(raw_body + callback_password)``."""

    name = "confirmo"
    payment_method = "crypto"
    signature_header = "bp-signature"
    status_map: Mapping[str, PurchaseStatus] = {
        "prepared": "pending",
        "active": "pending",
        "confirming": "pending",
        "paid": "completed",
        "expired": "failed",
        "error": "failed",
    }

    def extract(self, body: dict[str, Any], headers: Mapping[str, str]) -> dict[str, Any]:
        reference = first_str(body, "reference", "orderId", "order_id")
        if reference and reference.startswith(LEGACY_REFERENCE_PREFIX):
            reference = reference.split("-")[1] or reference

        customer_amount = body.get("customerAmount")
        return {
            "order_id": reference,
            "vendor_status": first_str(body, "status"),
            "signature": headers.get(self.signature_header),
            "transaction_id": first_str(body, "id"),
            "event_type": first_str(body, "status"),
            "payment": {
                "amount": first_number(customer_amount, "amount"),
                "currency": first_str(customer_amount, "currency"),
            },
        }

    def expected_signature(self, raw_body: bytes, notification: GatewayNotification) -> str:
        return hashlib.sha256(raw_body + self.secret.encode()).hexdigest()

    def bookkeeping(self, notification: GatewayNotification) -> dict[str, Any]:
        entry = super().bookkeeping(notification)
        body = notification.payload
        transactions = body.get("cryptoTransactions")
        if not isinstance(transactions, list):
            transactions = []
        entry["cryptoCurrency"] = first_str(body.get("rate"), "currencyTo")
        entry["cryptoAmount"] = first_str(body.get("paid"), "amount")
        entry["cryptoTransactions"] = [tx.get("txid") for tx in transactions if isinstance(tx, Mapping)]
        return entry
