"""Reconciliation of payment gateway callbacks with purchases.

Each callback is handled independently: authenticate, locate the purchase,
map the vendor status, then heal price mirrors and apply the transition in
one write conditional on the status and update stamp that were read. Side
effects run only for the callback that actually moved the purchase into
``completed`` or ``failed``, so redeliveries are acknowledged without
repeating them.
"""

import asyncio
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from supabase import Client

from evalshop.core.config import Settings
from evalshop.core.money import to_decimal
from evalshop.models.purchase import Purchase, PurchaseStatus, can_transition
from evalshop.schemas.webhook import GatewayNotification, WebhookAck
from evalshop.services.catalog_service import CatalogService
from evalshop.services.dispatchers.base import DispatchContext, SideEffectDispatcher
from evalshop.services.exceptions import InvalidSignatureError, UnknownGatewayError
from evalshop.services.gateways.base import GatewayAdapter
from evalshop.services.order_lines import resolve_line_identifiers
from evalshop.services.purchase_service import PurchaseService

logger = logging.getLogger(__name__)

# Statuses whose first arrival fires downstream notifications
DISPATCH_STATUSES = frozenset({"completed", "failed"})

# Root price column -> metadata mirror key
PRICE_MIRRORS = (
    ("total_price", "totalPrice"),
    ("purchase_price", "originalPrice"),
)

# Guarded writes re-read the purchase at most this many times
MAX_WRITE_ATTEMPTS = 2


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def find_price_drift(purchase: Purchase, tolerance: Decimal) -> dict[str, Any]:
    """Return the mirror values to overwrite, keyed by metadata key.

    Root price columns are authoritative. A mirror is compared only when it
    is present; an unreadable mirror counts as drift.
    """
    metadata = purchase.get("metadata") or {}
    fixes: dict[str, Any] = {}
    for column, key in PRICE_MIRRORS:
        root = purchase.get(column)
        if root is None or metadata.get(key) is None:
            continue
        try:
            drift = abs(to_decimal(root) - to_decimal(metadata[key]))
        except ValueError:
            fixes[key] = root
            continue
        if drift > tolerance:
            fixes[key] = root
    return fixes


class ReconciliationService:
    """Service applying gateway notifications to purchases."""

    def __init__(
        self,
        client: Client,
        settings: Settings,
        catalog: CatalogService,
        purchases: PurchaseService,
        gateways: Mapping[str, GatewayAdapter],
        dispatchers: Sequence[SideEffectDispatcher],
    ) -> None:
        """Initialize reconciliation service.

        Args:
            client: Supabase client shared by the application.
            settings: Application settings.
            catalog: Catalog lookups for order line details.
            purchases: Purchase lookups.
            gateways: Gateway adapters keyed by name.
            dispatchers: Side-effect dispatchers run after settlement.
        """
        self.client = client
        self.settings = settings
        self.catalog = catalog
        self.purchases = purchases
        self.gateways = gateways
        self.dispatchers = list(dispatchers)

    def get_gateway(self, gateway_name: str) -> GatewayAdapter:
        """Look up a gateway adapter.

        Raises:
            UnknownGatewayError: If no adapter has this name.
        """
        adapter = self.gateways.get(gateway_name.lower())
        if adapter is None:
            raise UnknownGatewayError(f"Unknown payment gateway: {gateway_name}")
        return adapter

    async def handle(self, gateway_name: str, raw_body: bytes, headers: Mapping[str, str]) -> WebhookAck:
        """Process one gateway callback.

        Args:
            gateway_name: Adapter name from the callback URL.
            raw_body: Exact request body, needed for signature checks.
            headers: Request headers.

        Returns:
            WebhookAck: Acknowledgment for the gateway.

        Raises:
            UnknownGatewayError: If the gateway is not supported.
            MalformedNotificationError: If the body cannot be decoded.
            InvalidSignatureError: If the signature does not verify.
        """
        adapter = self.get_gateway(gateway_name)
        notification = adapter.decode(raw_body, headers)

        if not adapter.verify(raw_body, notification):
            logger.warning(
                "Rejected %s callback for order %s: invalid signature",
                adapter.name,
                notification.order_id,
            )
            raise InvalidSignatureError(f"Invalid {adapter.name} signature")

        purchase = await self._locate(notification.order_id)
        if purchase is None:
            logger.info(
                "%s callback for unknown order %s acknowledged without changes",
                adapter.name,
                notification.order_id,
            )
            return WebhookAck()

        target = adapter.map_status(notification)
        if target is None:
            logger.info(
                "Unhandled %s status '%s' for order %s",
                adapter.name,
                notification.vendor_status,
                purchase["order_number"],
            )

        settled = await self._apply(purchase, target, adapter, notification)
        if settled is not None and target in DISPATCH_STATUSES:
            await self._run_side_effects(settled, target, adapter.name)

        return WebhookAck()

    async def _locate(self, order_id: str) -> Purchase | None:
        purchase = await self.purchases.get_by_order_number(order_id)
        if purchase is None and order_id.isdigit():
            purchase = await self.purchases.get_by_id(int(order_id))
        return purchase

    def _write_guarded(self, purchase: Purchase, changes: dict[str, Any]) -> list[Purchase]:
        """Update the row only if it still has the status and stamp that were read.

        Every write stamps ``updated_at``, so a metadata change made by a
        concurrent callback makes this write match no row.
        """
        query = (
            self.client.table("purchases")
            .update({**changes, "updated_at": _now()})
            .eq("order_number", purchase["order_number"])
            .eq("status", purchase["status"])
        )
        if purchase.get("updated_at"):
            query = query.eq("updated_at", str(purchase["updated_at"]))
        return query.execute().data or []

    def _heal_price_mirrors(self, purchase: Purchase, metadata: dict[str, Any], gateway: str) -> bool:
        fixes = find_price_drift(purchase, Decimal(self.settings.price_drift_tolerance))
        if not fixes:
            return False

        logger.warning(
            "Price mirror drift on order %s: root total=%s purchase=%s, metadata total=%s original=%s",
            purchase["order_number"],
            purchase.get("total_price"),
            purchase.get("purchase_price"),
            metadata.get("totalPrice"),
            metadata.get("originalPrice"),
        )
        metadata.update(fixes)
        metadata["priceFixedAt"] = _now()
        metadata["priceFixedBy"] = f"{gateway}-webhook"
        return True

    async def _apply(
        self,
        purchase: Purchase,
        target: PurchaseStatus | None,
        adapter: GatewayAdapter,
        notification: GatewayNotification,
    ) -> Purchase | None:
        """Heal price mirrors and apply ``target`` in one guarded write.

        Both are re-evaluated against a fresh read when another callback
        changed the row first.

        Returns:
            dict | None: The updated row when the status moved, otherwise None.
        """
        order_number = purchase["order_number"]
        for _ in range(MAX_WRITE_ATTEMPTS):
            current = purchase["status"]
            metadata = dict(purchase.get("metadata") or {})
            changes: dict[str, Any] = {}

            if self._heal_price_mirrors(purchase, metadata, adapter.name):
                changes["metadata"] = metadata

            moving = target is not None and can_transition(current, target)
            if moving:
                metadata[adapter.name] = {
                    **adapter.bookkeeping(notification),
                    "webhookProcessedAt": _now(),
                }
                changes.update(
                    status=target,
                    payment_method=adapter.payment_method,
                    transaction_id=notification.transaction_id or purchase.get("transaction_id"),
                    metadata=metadata,
                )
            elif target is not None:
                logger.info(
                    "Order %s is %s; ignoring %s callback status %s",
                    order_number,
                    current,
                    adapter.name,
                    target,
                )

            if not changes:
                return None

            rows = self._write_guarded(purchase, changes)
            if rows:
                if not moving:
                    return None
                logger.info(
                    "Order %s moved %s -> %s via %s",
                    order_number,
                    current,
                    target,
                    adapter.name,
                )
                return rows[0]

            # Another callback changed the row between read and write
            purchase = await self.purchases.get_by_order_number(order_number)
            if purchase is None:
                return None

        logger.warning("Order %s kept changing concurrently; leaving it as is", order_number)
        return None

    async def _run_side_effects(self, purchase: Purchase, status: PurchaseStatus, gateway: str) -> None:
        order_number = purchase["order_number"]
        try:
            line = await resolve_line_identifiers(self.catalog, purchase)
        except Exception:
            logger.exception("Order line lookup failed for order %s; dispatching without it", order_number)
            line = None
        try:
            program = await self.catalog.get_program(purchase["program_id"])
        except Exception:
            logger.exception("Program lookup failed for order %s; dispatching without it", order_number)
            program = None

        ctx = DispatchContext(purchase=purchase, status=status, gateway=gateway, line=line, program=program)
        active = [d for d in self.dispatchers if d.applies(ctx)]
        if not active:
            return
        results = await asyncio.gather(*(self._dispatch_one(d, ctx) for d in active))
        try:
            await self._record_markers(order_number, dict(results))
        except Exception:
            logger.exception("Could not record dispatch markers for order %s (%s)", order_number, status)

    async def _dispatch_one(self, dispatcher: SideEffectDispatcher, ctx: DispatchContext) -> tuple[str, dict[str, Any]]:
        try:
            marker = await dispatcher.dispatch(ctx)
        except Exception as e:
            logger.exception(
                "%s dispatch failed for order %s (%s)",
                dispatcher.name,
                ctx.order_number,
                ctx.status,
            )
            marker = dispatcher.failure_marker(ctx, e)
        return dispatcher.name, marker

    async def _record_markers(self, order_number: str, markers: dict[str, dict[str, Any]]) -> None:
        for _ in range(MAX_WRITE_ATTEMPTS):
            latest = await self.purchases.get_by_order_number(order_number)
            if latest is None:
                return
            metadata = dict(latest.get("metadata") or {})
            for name, marker in markers.items():
                metadata[name] = {**(metadata.get(name) or {}), **marker}
            if self._write_guarded(latest, {"metadata": metadata}):
                return
        logger.warning("Order %s kept changing concurrently; dispatch markers not recorded", order_number)
