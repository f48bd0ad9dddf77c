"""Tests for the MCP tool functions, called directly with a bound service."""

from __future__ import annotations

import pytest

from agrotrust_escrow.mcp_server import tools
from agrotrust_escrow.payments.simulated import SimulatedPaymentAuthority
from agrotrust_escrow.services.escrow_service import EscrowService


@pytest.fixture
def bound(service):  # noqa: ANN001, ANN201
    tools.bind_service(service)
    yield service
    tools.bind_service(None)


class TestMcpTools:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, bound, payments) -> None:
        opened = await tools.init_escrow("RFQ-1", "1000", product_name="Pomegranates")
        contract_id = opened["contract_id"]
        assert opened["status"] == "awaiting_deposit"
        assert opened["fee_amount"] == "15.00"
        assert opened["checkout_url"]
        assert opened["client_secret"] is None

        contract = await bound.get_contract(contract_id)
        payments.authorize(contract.external_payment_ref)
        synced = await tools.sync_escrow(contract_id)
        assert synced["status"] == "funded"

        released = await tools.release_escrow(contract_id, verdict="passed", notes="ok")
        assert released["status"] == "released"

        status = await tools.check_status(contract_id)
        assert status["status"] == "released"
        assert status["allowed_events"] == []

    @pytest.mark.asyncio
    async def test_direct_provider_returns_client_secret(self, store, settings) -> None:
        tools.bind_service(EscrowService(store, SimulatedPaymentAuthority(redirect=False), settings))
        try:
            opened = await tools.init_escrow("RFQ-1", "1000")
        finally:
            tools.bind_service(None)

        assert opened["checkout_url"] is None
        assert opened["client_secret"].endswith("_secret")

    @pytest.mark.asyncio
    async def test_release_accepts_fail_label(self, bound, payments) -> None:
        opened = await tools.init_escrow("RFQ-1", "50")
        contract = await bound.get_contract(opened["contract_id"])
        payments.authorize(contract.external_payment_ref)

        result = await tools.release_escrow(opened["contract_id"], verdict="FAIL")

        assert result["status"] == "refunded"

    @pytest.mark.asyncio
    async def test_oversized_rfq_rejected(self, bound, payments) -> None:
        result = await tools.init_escrow("R" * 65, "50")

        assert result["error"] == "VALIDATION_ERROR"
        assert payments.calls["create_intent"] == 0

    @pytest.mark.asyncio
    async def test_invalid_amount(self, bound) -> None:
        result = await tools.init_escrow("RFQ-1", "lots")
        assert result["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_domain_error_returned_as_dict(self, bound) -> None:
        opened = await tools.init_escrow("RFQ-1", "50")

        result = await tools.release_escrow(opened["contract_id"], verdict="passed")

        assert result["error"] == "NOT_YET_FUNDED"
        assert result["contract"]["status"] == "awaiting_deposit"

    @pytest.mark.asyncio
    async def test_cancel(self, bound) -> None:
        opened = await tools.init_escrow("RFQ-1", "50")
        result = await tools.cancel_escrow(opened["contract_id"], reason="duplicate")
        assert result["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_unbound_service(self) -> None:
        tools.bind_service(None)
        with pytest.raises(RuntimeError):
            await tools.check_status("c-1")
