"""Paytiko card payment callbacks."""

import hashlib
from collections.abc import Mapping
from typing import Any

from evalshop.models.purchase import PurchaseStatus
from evalshop.schemas.webhook import GatewayNotification
from evalshop.services.gateways.base import GatewayAdapter, first_number, first_str


class PaytikoGateway(GatewayAdapter):
    """Paytiko signs callbacks with ``sha256("{secret}:{OrderId}")``."""

    name = "paytiko"
    payment_method = "card"
    signature_header = "x-paytiko-signature"
    status_map: Mapping[str, PurchaseStatus] = {
        "success": "completed",
        "rejected": "failed",
        "failed": "failed",
    }

    def extract(self, body: dict[str, Any], headers: Mapping[str, str]) -> dict[str, Any]:
        return {
            "order_id": first_str(body, "OrderId"),
            "vendor_status": first_str(body, "TransactionStatus"),
            "signature": first_str(body, "Signature") or headers.get(self.signature_header),
            "transaction_id": first_str(body, "TransactionId", "ExternalTransactionId"),
            "event_type": first_str(body, "TransactionType"),
            "payment": {
                "amount": first_number(body, "InitialAmount"),
                "currency": first_str(body, "Currency"),
                "decline_reason": first_str(body, "DeclineReasonText"),
                "card_type": first_str(body, "CardType"),
                "card_last_digits": first_str(body, "LastCcDigits"),
                "processor": first_str(body, "PaymentProcessor"),
            },
        }

    def expected_signature(self, raw_body: bytes, notification: GatewayNotification) -> str:
        return hashlib.sha256(f"{self.secret}:{notification.order_id}".encode()).hexdigest()

    def map_status(self, notification: GatewayNotification) -> PurchaseStatus | None:
        status = super().map_status(notification)
        if status == "completed" and (notification.event_type or "").lower() == "refund":
            return "refunded"
        return status
