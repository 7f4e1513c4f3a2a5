"""Sequential order number allocation."""

import logging
import time

from supabase import Client
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from evalshop.core.config import Settings

logger = logging.getLogger(__name__)

# Recent purchases scanned for the current highest number
SCAN_WINDOW = 10


class OrderNumberTaken(Exception):
    """The candidate order number already belongs to a purchase."""


class OrderNumberGenerator:
    """Allocate the next free numeric order number.

    The next number is the highest recent one plus one. A collision with a
    concurrent checkout re-reads and tries again; once attempts run out a
    time-based number is issued instead.
    """

    def __init__(self, client: Client, settings: Settings) -> None:
        self.client = client
        self.start = settings.order_number_start
        self.fallback_base = settings.order_number_fallback_base
        self._allocate = retry(
            retry=retry_if_exception_type(OrderNumberTaken),
            stop=stop_after_attempt(settings.order_number_max_attempts),
            wait=wait_random(min=0.01, max=0.05),
            retry_error_callback=self._fallback,
        )(self._try_allocate)

    async def generate(self) -> str:
        """Return an unused order number."""
        return await self._allocate()

    async def _try_allocate(self) -> str:
        candidate = str(self._highest() + 1)
        if self._exists(candidate):
            logger.info("Order number %s already taken, retrying", candidate)
            raise OrderNumberTaken(candidate)
        return candidate

    def _fallback(self, retry_state: RetryCallState) -> str:
        number = str(self.fallback_base + int(time.time() * 1000) % 1_000_000)
        logger.warning(
            "Falling back to time-based order number %s after %d attempts",
            number,
            retry_state.attempt_number,
        )
        return number

    def _highest(self) -> int:
        response = (
            self.client.table("purchases")
            .select("order_number")
            .order("created_at", desc=True)
            .limit(SCAN_WINDOW)
            .execute()
        )
        highest = self.start - 1
        for row in response.data or []:
            value = str(row.get("order_number") or "")
            if value.isdigit() and int(value) < self.fallback_base:
                highest = max(highest, int(value))
        return highest

    def _exists(self, order_number: str) -> bool:
        response = (
            self.client.table("purchases")
            .select("id")
            .eq("order_number", order_number)
            .limit(1)
            .execute()
        )
        return bool(response.data)
