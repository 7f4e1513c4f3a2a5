"""BridgerPay cashier callbacks."""

import hashlib
import hmac
from collections.abc import Mapping
from typing import Any

from evalshop.models.purchase import PurchaseStatus
from evalshop.schemas.webhook import GatewayNotification
from evalshop.services.gateways.base import GatewayAdapter, first_number, first_str


class BridgerPayGateway(GatewayAdapter):
    """BridgerPay signs callbacks with HMAC-SHA256 of the raw body."""

    name = "bridgerpay"
    payment_method = "bridgerpay"
    signature_header = "x-bridgerpay-signature"
    status_map: Mapping[str, PurchaseStatus] = {
        "approved": "completed",
        "success": "completed",
        "completed": "completed",
        "captured": "completed",
        "settled": "completed",
        "declined": "failed",
        "rejected": "failed",
        "failed": "failed",
        "error": "failed",
        "cancelled": "failed",
        "canceled": "failed",
        "voided": "failed",
        "pending": "pending",
        "processing": "pending",
        "authorized": "pending",
        "refunded": "refunded",
    }

    def extract(self, body: dict[str, Any], headers: Mapping[str, str]) -> dict[str, Any]:
        webhook_type = first_str(body, "type") or first_str(body.get("webhook"), "type")

        data = body.get("data") if isinstance(body.get("data"), Mapping) else {}
        charge = data.get("charge") if isinstance(data.get("charge"), Mapping) else {}
        attributes = charge.get("attributes") if isinstance(charge.get("attributes"), Mapping) else {}

        order_id = (
            first_str(data, "order_id", "orderId", "reference")
            or first_str(charge, "order_id", "orderId")
            or first_str(body, "order_id", "orderId", "reference")
        )
        status = (
            first_str(attributes, "status", "transaction_status")
            or first_str(charge, "status")
            or first_str(body, "status", "transaction_status", "state")
            or webhook_type
        )
        return {
            "order_id": order_id,
            "vendor_status": status,
            "signature": headers.get(self.signature_header),
            "transaction_id": (
                first_str(charge, "psp_order_id", "id", "uuid", "transaction_id")
                or first_str(body, "transaction_id", "transactionId", "id")
            ),
            "event_type": webhook_type,
            "payment": {
                "amount": (
                    first_number(attributes, "amount", "total_amount")
                    or first_number(charge, "amount")
                    or first_number(body, "amount", "transaction_amount")
                ),
                "currency": (
                    first_str(attributes, "currency")
                    or first_str(charge, "currency")
                    or first_str(body, "currency", "transaction_currency")
                ),
                "decline_reason": first_str(attributes, "decline_reason", "error_message"),
                "processor": first_str(attributes, "psp_name", "processor"),
            },
        }

    def expected_signature(self, raw_body: bytes, notification: GatewayNotification) -> str:
        return hmac.new(self.secret.encode(), raw_body, hashlib.sha256).hexdigest()
