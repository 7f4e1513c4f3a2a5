"""Common behaviour of payment gateway adapters."""

import hmac
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from evalshop.models.purchase import PurchaseStatus
from evalshop.schemas.webhook import GatewayNotification
from evalshop.services.exceptions import MalformedNotificationError

logger = logging.getLogger(__name__)


def first_str(source: Any, *keys: str) -> str | None:
    """Return the first non-empty string (or number) under ``keys``."""
    if not isinstance(source, Mapping):
        return None
    for key in keys:
        value = source.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    return None


def first_number(source: Any, *keys: str) -> float | None:
    """Return the first numeric value under ``keys``."""
    if not isinstance(source, Mapping):
        return None
    for key in keys:
        value = source.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                continue
    return None


def signatures_match(provided: str | None, expected: str) -> bool:
    """Compare hex signatures in constant time, ignoring case."""
    if not provided:
        return False
    return hmac.compare_digest(provided.strip().lower().encode(), expected.lower().encode())


class GatewayAdapter(ABC):
    """Decode, authenticate and interpret one gateway's callbacks.

    Subclasses declare the vendor status table and implement field
    extraction and signature verification.
    """

    name: str = ""
    payment_method: str = ""
    signature_header: str = ""
    status_map: Mapping[str, PurchaseStatus] = {}

    def __init__(self, secret: str) -> None:
        self.secret = secret

    def decode(self, raw_body: bytes, headers: Mapping[str, str]) -> GatewayNotification:
        """Parse a raw callback body into a notification.

        Raises:
            MalformedNotificationError: If the body is not JSON or lacks the
                order id or status.
        """
        if not raw_body or not raw_body.strip():
            raise MalformedNotificationError("Empty request body")
        try:
            body = json.loads(raw_body)
        except ValueError as e:
            raise MalformedNotificationError("Invalid JSON body") from e
        if not isinstance(body, dict):
            raise MalformedNotificationError("Notification body must be a JSON object")

        fields = self.extract(body, headers)
        try:
            return GatewayNotification(gateway=self.name, payload=body, **fields)
        except PydanticValidationError as e:
            raise MalformedNotificationError(
                f"{self.name} notification is missing required fields"
            ) from e

    @abstractmethod
    def extract(self, body: dict[str, Any], headers: Mapping[str, str]) -> dict[str, Any]:
        """Pull the strict core fields out of a vendor payload."""

    @abstractmethod
    def expected_signature(self, raw_body: bytes, notification: GatewayNotification) -> str:
        """Compute the signature the gateway should have sent."""

    def verify(self, raw_body: bytes, notification: GatewayNotification) -> bool:
        """Check the callback signature against the shared secret."""
        if not self.secret:
            logger.error("%s webhook secret is not configured; rejecting callback", self.name)
            return False
        return signatures_match(notification.signature, self.expected_signature(raw_body, notification))

    def map_status(self, notification: GatewayNotification) -> PurchaseStatus | None:
        """Translate the vendor status; None means the status is not handled."""
        return self.status_map.get(notification.vendor_status.lower())

    def bookkeeping(self, notification: GatewayNotification) -> dict[str, Any]:
        """Gateway entry stored under the purchase metadata namespace."""
        return {
            "vendorStatus": notification.vendor_status,
            "eventType": notification.event_type,
            "transactionId": notification.transaction_id,
            "payment": notification.payment.model_dump(exclude_none=True),
            "payload": notification.payload,
        }
