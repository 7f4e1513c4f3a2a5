"""Domain exceptions raised by services.

Routes translate these into API errors; services never raise HTTP types.
"""

from typing import Any


class CouponValidationError(ValueError):
    """A coupon cannot be applied to the requested purchase."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)


class PricingError(ValueError):
    """A price cannot be computed for the requested program, tier or add-ons."""


class PurchaseValidationError(ValueError):
    """Required purchase fields are missing or malformed."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class UnresolvableProgramError(LookupError):
    """No program matches the identifiers supplied for a purchase."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.context = context or {}
        super().__init__(message)


class PurchaseNotFoundError(LookupError):
    """No purchase exists for the given order number."""


class PurchaseNotEditableError(RuntimeError):
    """The purchase has left the pending state and can no longer be priced."""


class InvalidSignatureError(ValueError):
    """A gateway notification failed signature verification."""


class MalformedNotificationError(ValueError):
    """A gateway notification body cannot be decoded into the required fields."""


class DownstreamError(RuntimeError):
    """A call to a downstream system failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class TransientDownstreamError(DownstreamError):
    """A downstream failure that is worth retrying."""


class UnknownGatewayError(LookupError):
    """No adapter is registered under the requested gateway name."""
