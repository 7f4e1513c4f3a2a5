"""Unit tests for gateway callback reconciliation."""

import hashlib
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from evalshop.services.dispatchers.base import DispatchContext, SideEffectDispatcher
from evalshop.services.exceptions import DownstreamError, InvalidSignatureError, UnknownGatewayError
from evalshop.services.gateways.paytiko import PaytikoGateway
from evalshop.services.reconciliation_service import ReconciliationService, find_price_drift

SECRET = "paytiko-secret"


def paytiko_callback(status: str = "Success", order_id: str = "100123", secret: str = SECRET) -> bytes:
    return json.dumps(
        {
            "OrderId": order_id,
            "TransactionStatus": status,
            "TransactionType": "Sale",
            "TransactionId": "tx-1",
            "Signature": hashlib.sha256(f"{secret}:{order_id}".encode()).hexdigest(),
        }
    ).encode()


class RecordingDispatcher(SideEffectDispatcher):
    """Dispatcher that records calls instead of talking to a downstream system."""

    def __init__(self, name: str, events: set[str], error: Exception | None = None) -> None:
        super().__init__(MagicMock(), MagicMock())
        self.name = name
        self.events = frozenset(events)
        self.error = error
        self.contexts: list[DispatchContext] = []

    def enabled(self) -> bool:
        return True

    async def send(self, ctx: DispatchContext) -> dict[str, Any]:
        self.contexts.append(ctx)
        if self.error:
            raise self.error
        return {"ref": f"{self.name}-{ctx.order_number}"}


def guarded_write(client: MagicMock) -> MagicMock:
    """The update chain filtered by order number, status and update stamp."""
    return client.table.return_value.update.return_value.eq.return_value.eq.return_value.eq.return_value


@pytest.fixture
def mock_supabase(sample_purchase: dict) -> MagicMock:
    """Create a mock Supabase client whose guarded update succeeds."""
    client = MagicMock()
    guarded_write(client).execute.side_effect = lambda: MagicMock(
        data=[{**sample_purchase, **client.table.return_value.update.call_args[0][0]}]
    )
    return client


@pytest.fixture
def mock_purchases(sample_purchase: dict) -> MagicMock:
    """Create mock purchase lookups returning the sample purchase."""
    purchases = MagicMock()
    purchases.get_by_order_number = AsyncMock(return_value=sample_purchase)
    purchases.get_by_id = AsyncMock(return_value=None)
    return purchases


@pytest.fixture
def mock_catalog(sample_program: dict) -> MagicMock:
    """Create a mock catalog for order line details."""
    catalog = MagicMock()
    catalog.get_program = AsyncMock(return_value=sample_program)
    catalog.find_product_mapping = AsyncMock(return_value={"product_id": "1001", "variation_id": "1002"})
    return catalog


@pytest.fixture
def dispatchers() -> list[RecordingDispatcher]:
    return [
        RecordingDispatcher("mirror", {"completed"}),
        RecordingDispatcher("crm", {"completed", "failed"}),
    ]


@pytest.fixture
def service(
    mock_supabase: MagicMock,
    mock_purchases: MagicMock,
    mock_catalog: MagicMock,
    dispatchers: list[RecordingDispatcher],
) -> ReconciliationService:
    """Create a ReconciliationService with one Paytiko adapter."""
    settings = MagicMock()
    settings.price_drift_tolerance = 1
    return ReconciliationService(
        mock_supabase,
        settings,
        catalog=mock_catalog,
        purchases=mock_purchases,
        gateways={"paytiko": PaytikoGateway(SECRET)},
        dispatchers=dispatchers,
    )


def transition_updates(client: MagicMock) -> list[dict]:
    return [c.args[0] for c in client.table.return_value.update.call_args_list if "status" in c.args[0]]


class TestFindPriceDrift:
    """Tests for find_price_drift."""

    def test_no_drift(self, sample_purchase: dict) -> None:
        assert find_price_drift(sample_purchase, tolerance=1) == {}

    def test_drift_beyond_tolerance(self, sample_purchase: dict) -> None:
        sample_purchase["metadata"]["totalPrice"] = 150

        assert find_price_drift(sample_purchase, tolerance=1) == {"totalPrice": 184}

    def test_missing_mirror_is_not_drift(self, sample_purchase: dict) -> None:
        sample_purchase["metadata"] = {}

        assert find_price_drift(sample_purchase, tolerance=1) == {}

    def test_unreadable_mirror_is_drift(self, sample_purchase: dict) -> None:
        sample_purchase["metadata"]["originalPrice"] = "n/a"

        assert find_price_drift(sample_purchase, tolerance=1) == {"originalPrice": 160}


class TestHandle:
    """Tests for ReconciliationService.handle."""

    @pytest.mark.asyncio
    async def test_unknown_gateway(self, service: ReconciliationService) -> None:
        with pytest.raises(UnknownGatewayError):
            await service.handle("stripe", paytiko_callback(), {})

    @pytest.mark.asyncio
    async def test_invalid_signature_never_mutates(
        self, service: ReconciliationService, mock_supabase: MagicMock, mock_purchases: MagicMock
    ) -> None:
        """Test that a forged callback is rejected before any lookup."""
        with pytest.raises(InvalidSignatureError):
            await service.handle("paytiko", paytiko_callback(secret="forged"), {})

        mock_purchases.get_by_order_number.assert_not_awaited()
        mock_supabase.table.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_order_acknowledged(
        self, service: ReconciliationService, mock_supabase: MagicMock, mock_purchases: MagicMock
    ) -> None:
        """Test that callbacks for unknown orders are acknowledged without changes."""
        mock_purchases.get_by_order_number.return_value = None

        ack = await service.handle("paytiko", paytiko_callback(order_id="555"), {})

        assert ack.status == "received"
        mock_purchases.get_by_id.assert_awaited_once_with(555)
        mock_supabase.table.assert_not_called()

    @pytest.mark.asyncio
    async def test_unmapped_status_is_noop(self, service: ReconciliationService, mock_supabase: MagicMock) -> None:
        ack = await service.handle("paytiko", paytiko_callback(status="Chargeback"), {})

        assert ack.status == "received"
        mock_supabase.table.assert_not_called()

    @pytest.mark.asyncio
    async def test_completes_pending_purchase(
        self, service: ReconciliationService, mock_supabase: MagicMock, dispatchers: list[RecordingDispatcher]
    ) -> None:
        """Test the transition write and the side effects that follow."""
        await service.handle("paytiko", paytiko_callback(), {})

        [changes] = transition_updates(mock_supabase)
        assert changes["status"] == "completed"
        assert changes["payment_method"] == "card"
        assert changes["transaction_id"] == "tx-1"
        assert changes["metadata"]["paytiko"]["vendorStatus"] == "Success"
        assert "webhookProcessedAt" in changes["metadata"]["paytiko"]
        assert changes["metadata"]["totalPrice"] == 184
        mock_supabase.table.return_value.update.return_value.eq.return_value.eq.assert_any_call("status", "pending")

        assert all(len(d.contexts) == 1 for d in dispatchers)
        ctx = dispatchers[0].contexts[0]
        assert ctx.line.product_id == "1001"
        assert ctx.program_name == "Two Step Challenge"

    @pytest.mark.asyncio
    async def test_failed_runs_only_subscribed_dispatchers(
        self, service: ReconciliationService, dispatchers: list[RecordingDispatcher]
    ) -> None:
        await service.handle("paytiko", paytiko_callback(status="Rejected"), {})

        assert [len(d.contexts) for d in dispatchers] == [0, 1]

    @pytest.mark.asyncio
    async def test_terminal_status_not_regressed(
        self,
        service: ReconciliationService,
        mock_supabase: MagicMock,
        mock_purchases: MagicMock,
        sample_purchase: dict,
        dispatchers: list[RecordingDispatcher],
    ) -> None:
        """Test that a late failure never overwrites a completed purchase."""
        mock_purchases.get_by_order_number.return_value = {**sample_purchase, "status": "completed"}

        await service.handle("paytiko", paytiko_callback(status="Rejected"), {})

        assert transition_updates(mock_supabase) == []
        assert all(not d.contexts for d in dispatchers)

    @pytest.mark.asyncio
    async def test_redelivery_is_idempotent(
        self,
        service: ReconciliationService,
        mock_supabase: MagicMock,
        mock_purchases: MagicMock,
        sample_purchase: dict,
        dispatchers: list[RecordingDispatcher],
    ) -> None:
        """Test that a repeated success callback does not repeat side effects."""
        mock_purchases.get_by_order_number.return_value = {**sample_purchase, "status": "completed"}

        ack = await service.handle("paytiko", paytiko_callback(), {})

        assert ack.status == "received"
        assert transition_updates(mock_supabase) == []
        assert all(not d.contexts for d in dispatchers)

    @pytest.mark.asyncio
    async def test_lost_race_rereads_and_stops(
        self,
        service: ReconciliationService,
        mock_supabase: MagicMock,
        mock_purchases: MagicMock,
        sample_purchase: dict,
        dispatchers: list[RecordingDispatcher],
    ) -> None:
        """Test that losing the conditional write to another callback changes nothing."""
        transition = guarded_write(mock_supabase)
        transition.execute.side_effect = None
        transition.execute.return_value = MagicMock(data=[])
        mock_purchases.get_by_order_number.side_effect = [
            sample_purchase,
            {**sample_purchase, "status": "completed"},
        ]

        await service.handle("paytiko", paytiko_callback(), {})

        assert len(transition_updates(mock_supabase)) == 1
        assert all(not d.contexts for d in dispatchers)

    @pytest.mark.asyncio
    async def test_lost_race_retries_once(
        self,
        service: ReconciliationService,
        mock_supabase: MagicMock,
        dispatchers: list[RecordingDispatcher],
        sample_purchase: dict,
    ) -> None:
        """Test that a write lost to a non-status change is retried."""
        transition = guarded_write(mock_supabase)
        transition.execute.side_effect = [
            MagicMock(data=[]),
            MagicMock(data=[{**sample_purchase, "status": "completed"}]),
            MagicMock(data=[{**sample_purchase, "status": "completed"}]),
        ]

        await service.handle("paytiko", paytiko_callback(), {})

        assert len(transition_updates(mock_supabase)) == 2
        assert all(len(d.contexts) == 1 for d in dispatchers)

    @pytest.mark.asyncio
    async def test_heals_price_mirror_drift(
        self, service: ReconciliationService, mock_supabase: MagicMock, sample_purchase: dict
    ) -> None:
        """Test that drifted mirrors are rewritten from the root prices."""
        sample_purchase["metadata"]["totalPrice"] = 150

        await service.handle("paytiko", paytiko_callback(status="Chargeback"), {})

        [update] = mock_supabase.table.return_value.update.call_args_list
        healed = update.args[0]["metadata"]
        assert healed["totalPrice"] == 184
        assert healed["originalPrice"] == 160
        assert healed["priceFixedBy"] == "paytiko-webhook"
        assert "status" not in update.args[0]
        mock_supabase.table.return_value.update.return_value.eq.assert_called_with("order_number", "100123")
        guarded = mock_supabase.table.return_value.update.return_value.eq.return_value.eq.return_value
        guarded.eq.assert_called_with("updated_at", "2026-03-01T10:00:00+00:00")

    @pytest.mark.asyncio
    async def test_heal_travels_with_transition(
        self, service: ReconciliationService, mock_supabase: MagicMock, sample_purchase: dict
    ) -> None:
        """Test that the mirror repair and the status change are a single write."""
        sample_purchase["metadata"]["totalPrice"] = 999

        await service.handle("paytiko", paytiko_callback(), {})

        changes = mock_supabase.table.return_value.update.call_args_list[0].args[0]
        assert changes["status"] == "completed"
        assert changes["metadata"]["totalPrice"] == 184
        assert changes["metadata"]["priceFixedBy"] == "paytiko-webhook"
        assert "paytiko" in changes["metadata"]

    @pytest.mark.asyncio
    async def test_stale_heal_keeps_concurrent_gateway_record(
        self,
        service: ReconciliationService,
        mock_supabase: MagicMock,
        mock_purchases: MagicMock,
        sample_purchase: dict,
        dispatchers: list[RecordingDispatcher],
    ) -> None:
        """Test that a repair based on a stale read never drops another callback's record."""
        stale = {**sample_purchase, "metadata": {**sample_purchase["metadata"], "totalPrice": 999}}
        latest = {
            **sample_purchase,
            "status": "completed",
            "updated_at": "2026-03-01T10:05:00+00:00",
            "metadata": {**stale["metadata"], "paytiko": {"vendorStatus": "Success", "transactionId": "tx-0"}},
        }
        mock_purchases.get_by_order_number.side_effect = [stale, latest]
        guarded_write(mock_supabase).execute.side_effect = [MagicMock(data=[]), MagicMock(data=[latest])]

        await service.handle("paytiko", paytiko_callback(), {})

        first, second = (c.args[0] for c in mock_supabase.table.return_value.update.call_args_list)
        assert first["status"] == "completed"
        assert "status" not in second
        assert second["metadata"]["paytiko"] == {"vendorStatus": "Success", "transactionId": "tx-0"}
        assert second["metadata"]["totalPrice"] == 184
        guarded = mock_supabase.table.return_value.update.return_value.eq.return_value
        guarded.eq.assert_called_with("status", "completed")
        guarded.eq.return_value.eq.assert_called_with("updated_at", "2026-03-01T10:05:00+00:00")
        assert all(not d.contexts for d in dispatchers)

    @pytest.mark.asyncio
    async def test_markers_merge_into_latest_row(
        self,
        service: ReconciliationService,
        mock_supabase: MagicMock,
        mock_purchases: MagicMock,
        sample_purchase: dict,
    ) -> None:
        """Test that a marker write losing a race is re-merged onto a fresh read."""
        completed = {**sample_purchase, "status": "completed"}
        refreshed = {
            **completed,
            "updated_at": "2026-03-01T10:06:00+00:00",
            "metadata": {**sample_purchase["metadata"], "confirmo": {"invoiceId": "inv-1"}},
        }
        mock_purchases.get_by_order_number.side_effect = [sample_purchase, completed, refreshed]
        guarded_write(mock_supabase).execute.side_effect = [
            MagicMock(data=[completed]),
            MagicMock(data=[]),
            MagicMock(data=[refreshed]),
        ]

        await service.handle("paytiko", paytiko_callback(), {})

        markers = mock_supabase.table.return_value.update.call_args_list[-1].args[0]["metadata"]
        assert markers["confirmo"] == {"invoiceId": "inv-1"}
        assert markers["mirror"]["completedSent"] is True
        assert markers["crm"]["completedSent"] is True
        assert mock_supabase.table.return_value.update.call_count == 3

    @pytest.mark.asyncio
    async def test_program_lookup_failure_still_dispatches(
        self,
        service: ReconciliationService,
        mock_catalog: MagicMock,
        dispatchers: list[RecordingDispatcher],
    ) -> None:
        """Test that catalog errors degrade the context instead of skipping notifications."""
        mock_catalog.get_program.side_effect = RuntimeError("supabase unavailable")

        await service.handle("paytiko", paytiko_callback(), {})

        assert all(len(d.contexts) == 1 for d in dispatchers)
        ctx = dispatchers[1].contexts[0]
        assert ctx.program is None
        assert ctx.program_name == "Evaluation Program"
        assert ctx.line.product_id == "1001"

    @pytest.mark.asyncio
    async def test_line_lookup_failure_still_dispatches(
        self,
        service: ReconciliationService,
        mock_catalog: MagicMock,
        dispatchers: list[RecordingDispatcher],
    ) -> None:
        mock_catalog.find_product_mapping.side_effect = RuntimeError("supabase unavailable")

        await service.handle("paytiko", paytiko_callback(), {})

        assert all(len(d.contexts) == 1 for d in dispatchers)
        assert dispatchers[0].contexts[0].line is None
        assert dispatchers[0].contexts[0].program_name == "Two Step Challenge"

    @pytest.mark.asyncio
    async def test_dispatcher_failure_is_isolated(
        self,
        service: ReconciliationService,
        mock_supabase: MagicMock,
        mock_purchases: MagicMock,
        sample_purchase: dict,
    ) -> None:
        """Test that one failing dispatcher neither blocks others nor the ack."""
        mock_purchases.get_by_order_number.side_effect = [
            sample_purchase,
            {**sample_purchase, "status": "completed", "metadata": {"crm": {"note": "kept"}}},
        ]
        service.dispatchers = [
            RecordingDispatcher("mirror", {"completed"}, error=DownstreamError("boom", status_code=500)),
            RecordingDispatcher("crm", {"completed"}),
        ]

        ack = await service.handle("paytiko", paytiko_callback(), {})

        assert ack.status == "received"
        markers = mock_supabase.table.return_value.update.call_args_list[-1].args[0]["metadata"]
        assert markers["mirror"]["completedSent"] is False
        assert markers["mirror"]["completedError"] == "boom"
        assert markers["crm"]["completedSent"] is True
        assert markers["crm"]["ref"] == "crm-100123"
        assert markers["crm"]["note"] == "kept"
