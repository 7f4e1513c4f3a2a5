"""Payment gateway notification schemas.

Vendor payloads are decoded into a small strict core. Everything else the
vendor sends stays in ``payload`` untouched.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentDetails(BaseModel):
    """Transaction facts reported by a gateway."""

    model_config = ConfigDict(from_attributes=True)

    amount: float | None = Field(default=None, description="Charged amount reported by the gateway")
    currency: str | None = Field(default=None, description="Charged currency reported by the gateway")
    decline_reason: str | None = Field(default=None, description="Decline reason text")
    card_type: str | None = Field(default=None, description="Card brand")
    card_last_digits: str | None = Field(default=None, description="Last card digits")
    processor: str | None = Field(default=None, description="Payment processor or PSP")


class GatewayNotification(BaseModel):
    """Decoded gateway callback."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    gateway: str = Field(description="Gateway adapter name")
    order_id: str = Field(min_length=1, description="Order number or purchase id sent by the gateway")
    vendor_status: str = Field(min_length=1, description="Status in the gateway's vocabulary")
    signature: str | None = Field(default=None, description="Signature supplied with the callback")
    transaction_id: str | None = Field(default=None, description="Gateway transaction id")
    event_type: str | None = Field(default=None, description="Gateway event or transaction type")
    payment: PaymentDetails = Field(default_factory=PaymentDetails, description="Transaction facts")
    payload: dict[str, Any] = Field(default_factory=dict, description="Full vendor payload")

    @field_validator("order_id", "vendor_status", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> Any:
        """Accept numeric identifiers and strip whitespace."""
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        return value.strip() if isinstance(value, str) else value


class WebhookAck(BaseModel):
    """Acknowledgment returned to the gateway."""

    status: str = Field(default="received", description="Always 'received' once processed")
