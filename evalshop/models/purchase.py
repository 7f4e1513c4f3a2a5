"""Purchase model type definitions for database operations."""

from datetime import datetime
from typing import Any, Literal, TypedDict


# Purchase status values matching the database enum
PurchaseStatus = Literal["pending", "completed", "failed", "refunded"]

PurchaseType = Literal["original-order", "reset-order", "activation-order"]

Currency = Literal["USD", "EUR", "GBP"]

SUPPORTED_CURRENCIES: tuple[str, ...] = ("USD", "EUR", "GBP")

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "refunded"})

# Moves a gateway callback may apply. Refunds of completed orders arrive
# through the same callbacks; nothing ever moves back to pending.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"completed", "failed", "refunded"}),
    "completed": frozenset({"refunded"}),
    "failed": frozenset(),
    "refunded": frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    """Return True if a purchase in ``current`` may move to ``target``.

    Unknown current statuses are treated as terminal.
    """
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class SelectedAddOn(TypedDict, total=False):
    """An add-on frozen onto a purchase at pricing time.

    Stored as part of the selected_add_ons JSONB array.
    """

    add_on_id: str
    percentage: float
    metadata: dict[str, Any]


class CustomerData(TypedDict, total=False):
    """Billing details captured at checkout."""

    first_name: str
    last_name: str
    email: str
    phone: str
    address: str
    city: str
    state: str
    postal_code: str
    country: str


class Purchase(TypedDict):
    """Purchases table row representation.

    The order of record. ``purchase_price`` is the coupon-adjusted base and
    ``total_price`` the amount charged after add-ons. ``metadata`` mirrors
    both as ``originalPrice`` and ``totalPrice``.
    """

    id: int
    order_number: str
    purchase_type: PurchaseType
    program_id: str
    tier_id: str | None
    account_size: str
    platform_slug: str | None
    purchase_price: float
    total_price: float
    currency: Currency
    status: PurchaseStatus
    customer_email: str
    customer_name: str
    customer_data: CustomerData
    user_id: str | None
    selected_add_ons: list[SelectedAddOn]
    discount_code: str | None
    affiliate_username: str | None
    payment_method: str | None
    transaction_id: str | None
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime


class PurchaseCreate(TypedDict, total=False):
    """Data required to insert a new purchase."""

    order_number: str
    purchase_type: PurchaseType
    program_id: str
    tier_id: str | None
    account_size: str
    platform_slug: str | None
    purchase_price: float
    total_price: float
    currency: Currency
    status: PurchaseStatus
    customer_email: str
    customer_name: str
    customer_data: CustomerData
    user_id: str | None
    selected_add_ons: list[SelectedAddOn]
    discount_code: str | None
    affiliate_username: str | None
    metadata: dict[str, Any]


class PurchaseUpdate(TypedDict, total=False):
    """Data that may change after creation.

    Prices change only while pending; status, payment method and
    transaction id change only through gateway reconciliation.
    """

    purchase_price: float
    total_price: float
    selected_add_ons: list[SelectedAddOn]
    discount_code: str | None
    affiliate_username: str | None
    status: PurchaseStatus
    payment_method: str
    transaction_id: str
    metadata: dict[str, Any]
    updated_at: str
