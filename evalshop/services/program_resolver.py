"""Program resolution for incoming purchases.

A purchase may arrive with a program id, a commerce product/variation, a
program name or only a category and account size. Resolution walks an
ordered list of strategies and takes the first that returns a program id.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import asdict, dataclass

from evalshop.services.catalog_service import CatalogService, find_tier
from evalshop.services.exceptions import UnresolvableProgramError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgramLookup:
    """Identifiers available for resolving a purchase's program."""

    program_id: str | None = None
    product_id: str | None = None
    variation_id: str | None = None
    program_name: str | None = None
    category: str | None = None
    tier_id: str | None = None
    account_size: str | None = None


ResolverStrategy = Callable[[CatalogService, ProgramLookup], Awaitable[str | None]]


async def by_explicit_mapping(catalog: CatalogService, lookup: ProgramLookup) -> str | None:
    """Use a program id that exists, or the mapping of a commerce product."""
    if lookup.program_id:
        program = await catalog.get_program(lookup.program_id)
        if program:
            return str(program["id"])
    if lookup.product_id:
        mapping = await catalog.find_mapping_by_product(lookup.product_id, lookup.variation_id)
        if mapping and mapping.get("program_id"):
            return str(mapping["program_id"])
    return None


async def by_exact_name(catalog: CatalogService, lookup: ProgramLookup) -> str | None:
    """Match a program whose name equals the given name."""
    if not lookup.program_name:
        return None
    programs = await catalog.find_programs_by_name(lookup.program_name.strip())
    return str(programs[0]["id"]) if programs else None


async def by_category_and_tier(catalog: CatalogService, lookup: ProgramLookup) -> str | None:
    """First active program in the same category that sells the same tier."""
    if not lookup.category or not (lookup.tier_id or lookup.account_size):
        return None
    for program in await catalog.list_active_programs(category=lookup.category):
        if find_tier(program, lookup.tier_id, lookup.account_size):
            return str(program["id"])
    return None


async def by_any_active_program(catalog: CatalogService, lookup: ProgramLookup) -> str | None:
    """Last resort: the first active program in the catalog."""
    programs = await catalog.list_active_programs()
    return str(programs[0]["id"]) if programs else None


DEFAULT_STRATEGIES: tuple[tuple[str, ResolverStrategy], ...] = (
    ("explicit_mapping", by_explicit_mapping),
    ("exact_name", by_exact_name),
    ("category_and_tier", by_category_and_tier),
    ("any_active_program", by_any_active_program),
)


class ProgramResolver:
    """Resolve a program id through ordered strategies, first success wins."""

    def __init__(
        self,
        catalog: CatalogService,
        strategies: Sequence[tuple[str, ResolverStrategy]] = DEFAULT_STRATEGIES,
    ) -> None:
        self.catalog = catalog
        self.strategies = tuple(strategies)

    async def resolve(self, lookup: ProgramLookup) -> str:
        """Resolve the program id for a purchase.

        Args:
            lookup: Identifiers supplied with the purchase.

        Returns:
            str: Resolved program id.

        Raises:
            UnresolvableProgramError: If no strategy finds a program.
        """
        for name, strategy in self.strategies:
            program_id = await strategy(self.catalog, lookup)
            if program_id:
                if name != self.strategies[0][0]:
                    logger.info("Resolved program %s via %s fallback", program_id, name)
                return program_id

        context = {k: v for k, v in asdict(lookup).items() if v}
        logger.warning("Could not resolve program for purchase: %s", context)
        raise UnresolvableProgramError("No program matches the purchase", context=context)
