"""Read-only access to programs, coupons, add-ons and product mappings."""

import logging
from typing import Any

from supabase import Client

from evalshop.models.catalog import AddOn, PricingTier, Program, ProgramProductMapping
from evalshop.models.coupon import Coupon

logger = logging.getLogger(__name__)


def normalize_account_size(account_size: str | None) -> str:
    """Normalize an account-size label for comparison.

    ``"$100,000"``, ``"100 000"`` and ``"100000"`` all compare equal.
    """
    if not account_size:
        return ""
    return "".join(ch for ch in str(account_size) if ch not in " $,").upper()


def find_tier(program: Program, tier_id: str | None, account_size: str | None) -> PricingTier | None:
    """Locate a pricing tier by id, falling back to a normalized account size."""
    tiers = program.get("pricing_tiers") or []
    if tier_id:
        for tier in tiers:
            if str(tier.get("id")) == str(tier_id):
                return tier
    wanted = normalize_account_size(account_size)
    if wanted:
        for tier in tiers:
            if normalize_account_size(tier.get("account_size")) == wanted:
                return tier
    return None


class CatalogService:
    """Service for looking up reference data owned outside checkout.

    Programs, coupons, add-ons and product mappings are edited by operators;
    this service never writes them.
    """

    def __init__(self, client: Client) -> None:
        """Initialize catalog service.

        Args:
            client: Supabase client shared by the application.
        """
        self.client = client

    async def get_program(self, program_id: str) -> Program | None:
        """Get a program by id.

        Args:
            program_id: Program identifier.

        Returns:
            dict | None: Program row or None if not found.
        """
        response = (
            self.client.table("programs")
            .select("*")
            .eq("id", str(program_id))
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def find_programs_by_name(self, name: str) -> list[Program]:
        """Get programs whose name matches exactly."""
        response = (
            self.client.table("programs")
            .select("*")
            .eq("name", name)
            .execute()
        )
        return response.data or []

    async def list_active_programs(self, category: str | None = None) -> list[Program]:
        """List active programs, oldest first, optionally within one category."""
        query = self.client.table("programs").select("*").eq("status", "active")
        if category:
            query = query.eq("category", category)
        response = query.order("created_at", desc=False).execute()
        return response.data or []

    async def get_add_ons(self, add_on_ids: list[str]) -> list[AddOn]:
        """Get add-ons by id.

        Args:
            add_on_ids: Add-on identifiers.

        Returns:
            list: Add-on rows found; missing ids are simply absent.
        """
        if not add_on_ids:
            return []
        response = (
            self.client.table("add_ons")
            .select("*")
            .in_("id", [str(i) for i in add_on_ids])
            .execute()
        )
        return response.data or []

    async def get_coupon_by_code(self, code: str) -> Coupon | None:
        """Get a coupon by code. Codes are stored and compared uppercased."""
        response = (
            self.client.table("coupons")
            .select("*")
            .eq("code", code.strip().upper())
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def list_auto_apply_coupons(self) -> list[Coupon]:
        """List active auto-apply coupons in priority order."""
        response = (
            self.client.table("coupons")
            .select("*")
            .eq("status", "active")
            .eq("auto_apply", True)
            .order("auto_apply_priority", desc=False)
            .execute()
        )
        return response.data or []

    async def find_product_mapping(
        self,
        program_id: str,
        tier_id: str | None,
        platform_slug: str | None,
    ) -> ProgramProductMapping | None:
        """Find the product mapping for a (program, tier, platform) triple."""
        if not tier_id or not platform_slug:
            return None
        response = (
            self.client.table("program_product_mappings")
            .select("*")
            .eq("program_id", str(program_id))
            .eq("tier_id", str(tier_id))
            .eq("platform_slug", platform_slug)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        if not rows:
            logger.warning(
                "No product mapping for program=%s tier=%s platform=%s",
                program_id,
                tier_id,
                platform_slug,
            )
            return None
        return rows[0]

    async def find_mapping_by_product(
        self,
        product_id: str,
        variation_id: str | None = None,
    ) -> ProgramProductMapping | None:
        """Find the mapping that points at a commerce product/variation."""
        query = (
            self.client.table("program_product_mappings")
            .select("*")
            .eq("product_id", str(product_id))
        )
        if variation_id:
            query = query.eq("variation_id", str(variation_id))
        response = query.limit(1).execute()
        rows: list[dict[str, Any]] = response.data or []
        return rows[0] if rows else None
