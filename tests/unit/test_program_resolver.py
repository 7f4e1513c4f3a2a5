"""Unit tests for program resolution."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from evalshop.services.exceptions import UnresolvableProgramError
from evalshop.services.program_resolver import ProgramLookup, ProgramResolver


@pytest.fixture
def mock_catalog() -> MagicMock:
    """Create a mock catalog where nothing matches by default."""
    catalog = MagicMock()
    catalog.get_program = AsyncMock(return_value=None)
    catalog.find_mapping_by_product = AsyncMock(return_value=None)
    catalog.find_programs_by_name = AsyncMock(return_value=[])
    catalog.list_active_programs = AsyncMock(return_value=[])
    return catalog


class TestProgramResolver:
    """Tests for ProgramResolver.resolve."""

    @pytest.mark.asyncio
    async def test_existing_program_id(self, mock_catalog: MagicMock, sample_program: dict) -> None:
        """Test that a known program id resolves to itself."""
        mock_catalog.get_program.return_value = sample_program

        result = await ProgramResolver(mock_catalog).resolve(ProgramLookup(program_id="prog-1"))

        assert result == "prog-1"
        mock_catalog.find_programs_by_name.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_product_mapping(self, mock_catalog: MagicMock) -> None:
        """Test that a commerce product resolves through its mapping."""
        mock_catalog.find_mapping_by_product.return_value = {"program_id": "prog-7"}

        result = await ProgramResolver(mock_catalog).resolve(ProgramLookup(product_id="501", variation_id="502"))

        assert result == "prog-7"
        mock_catalog.find_mapping_by_product.assert_awaited_once_with("501", "502")

    @pytest.mark.asyncio
    async def test_exact_name_after_unknown_id(self, mock_catalog: MagicMock) -> None:
        """Test that an unknown id falls back to the program name."""
        mock_catalog.find_programs_by_name.return_value = [{"id": "prog-3", "name": "One Step"}]

        result = await ProgramResolver(mock_catalog).resolve(
            ProgramLookup(program_id="gone", program_name=" One Step ")
        )

        assert result == "prog-3"
        mock_catalog.find_programs_by_name.assert_awaited_once_with("One Step")

    @pytest.mark.asyncio
    async def test_category_and_tier(self, mock_catalog: MagicMock, sample_program: dict) -> None:
        """Test that the first category program selling the tier is chosen."""
        small_only = {"id": "prog-small", "pricing_tiers": [{"id": "t", "account_size": "$5,000"}]}
        mock_catalog.list_active_programs.return_value = [small_only, sample_program]

        result = await ProgramResolver(mock_catalog).resolve(
            ProgramLookup(category="two-step", account_size="100000")
        )

        assert result == "prog-1"
        mock_catalog.list_active_programs.assert_awaited_with(category="two-step")

    @pytest.mark.asyncio
    async def test_any_active_program_last(self, mock_catalog: MagicMock) -> None:
        """Test the last-resort fallback to any active program."""
        mock_catalog.list_active_programs.return_value = [{"id": "prog-any", "pricing_tiers": []}]

        result = await ProgramResolver(mock_catalog).resolve(ProgramLookup(program_name="Unknown"))

        assert result == "prog-any"

    @pytest.mark.asyncio
    async def test_unresolvable_program(self, mock_catalog: MagicMock) -> None:
        """Test that failure carries the lookup context."""
        with pytest.raises(UnresolvableProgramError) as exc_info:
            await ProgramResolver(mock_catalog).resolve(ProgramLookup(program_name="Ghost", account_size="$10,000"))

        assert exc_info.value.context == {"program_name": "Ghost", "account_size": "$10,000"}

    @pytest.mark.asyncio
    async def test_custom_strategies(self, mock_catalog: MagicMock) -> None:
        """Test that strategies are pluggable."""
        resolver = ProgramResolver(mock_catalog, strategies=[("fixed", AsyncMock(return_value="prog-fixed"))])

        assert await resolver.resolve(ProgramLookup()) == "prog-fixed"
