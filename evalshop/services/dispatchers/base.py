"""Common behaviour of post-settlement side-effect dispatchers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from evalshop.core.config import Settings
from evalshop.models.catalog import Program
from evalshop.models.purchase import Purchase, PurchaseStatus
from evalshop.services.order_lines import LineIdentifiers


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def split_name(full_name: str | None) -> tuple[str, str]:
    """Split a customer name into first and last name."""
    parts = (full_name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


@dataclass(frozen=True)
class DispatchContext:
    """Everything a dispatcher needs about a freshly settled purchase."""

    purchase: Purchase
    status: PurchaseStatus
    gateway: str
    line: LineIdentifiers | None = None
    program: Program | None = None

    @property
    def order_number(self) -> str:
        return str(self.purchase.get("order_number") or self.purchase.get("id"))

    @property
    def metadata(self) -> dict[str, Any]:
        return self.purchase.get("metadata") or {}

    @property
    def program_name(self) -> str:
        return (self.program or {}).get("name") or "Evaluation Program"

    @property
    def currency(self) -> str:
        return str(self.purchase.get("currency") or "USD").upper()


class SideEffectDispatcher(ABC):
    """Notify one downstream system about a purchase transition.

    The returned marker is stored under ``metadata[name]``. Dispatchers do
    not catch their own errors; the reconciliation engine isolates them.
    """

    name: str = ""
    events: frozenset[str] = frozenset()

    def __init__(self, http: httpx.AsyncClient, settings: Settings) -> None:
        self.http = http
        self.settings = settings

    @abstractmethod
    def enabled(self) -> bool:
        """Whether the downstream endpoint and credentials are configured."""

    def applies(self, ctx: DispatchContext) -> bool:
        """Whether this transition concerns the downstream system."""
        return ctx.status in self.events

    @abstractmethod
    async def send(self, ctx: DispatchContext) -> dict[str, Any]:
        """Perform the downstream call and return extra marker fields."""

    async def dispatch(self, ctx: DispatchContext) -> dict[str, Any]:
        """Send the notification and build the metadata marker.

        Raises:
            DownstreamError: If the downstream call fails.
        """
        if not self.enabled():
            return {f"{ctx.status}Sent": False, f"{ctx.status}Skipped": "not_configured", f"{ctx.status}At": utc_now()}
        extra = await self.send(ctx)
        return {f"{ctx.status}Sent": True, f"{ctx.status}At": utc_now(), **extra}

    def failure_marker(self, ctx: DispatchContext, error: Exception) -> dict[str, Any]:
        """Marker recorded when ``dispatch`` raised."""
        return {f"{ctx.status}Sent": False, f"{ctx.status}At": utc_now(), f"{ctx.status}Error": str(error)}
