"""Tests for the in-memory contract store."""

from __future__ import annotations

import dataclasses
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from agrotrust_escrow.domain.enums import Currency, EscrowStatus
from agrotrust_escrow.domain.exceptions import (
    ConcurrentModificationError,
    ContractConflictError,
    ContractNotFoundError,
)
from agrotrust_escrow.domain.models import Amounts, EscrowContract, Inspection
from agrotrust_escrow.domain.store_protocol import ContractStore
from agrotrust_escrow.infrastructure.memory_store import InMemoryContractStore

T0 = datetime(2024, 5, 1, tzinfo=UTC)


def _contract(contract_id: str, rfq_id: str = "RFQ-1", offset_minutes: int = 0) -> EscrowContract:
    created = T0 + timedelta(minutes=offset_minutes)
    return EscrowContract(
        id=contract_id,
        rfq_id=rfq_id,
        amounts=Amounts(Decimal("10.00"), Currency.AZN, Decimal("0.15"), Decimal("9.85")),
        status=EscrowStatus.AWAITING_DEPOSIT,
        inspection=Inspection(),
        milestones=(),
        created_at=created,
        updated_at=created,
    )


class TestInMemoryContractStore:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(InMemoryContractStore(), ContractStore)

    @pytest.mark.asyncio
    async def test_insert_sets_version(self, store) -> None:
        stored = await store.insert(_contract("c-1"))
        assert stored.version == 1
        assert await store.get("c-1") == stored

    @pytest.mark.asyncio
    async def test_insert_duplicate(self, store) -> None:
        await store.insert(_contract("c-1"))
        with pytest.raises(ContractConflictError):
            await store.insert(_contract("c-1"))

    @pytest.mark.asyncio
    async def test_compare_and_swap(self, store) -> None:
        stored = await store.insert(_contract("c-1"))
        funded = dataclasses.replace(stored, status=EscrowStatus.FUNDED)

        written = await store.put_if_unchanged(funded, 1)
        with pytest.raises(ConcurrentModificationError):
            await store.put_if_unchanged(funded, 1)

        assert written.version == 2
        assert (await store.get("c-1")).status is EscrowStatus.FUNDED
        assert store.writes == 2

    @pytest.mark.asyncio
    async def test_missing(self, store) -> None:
        with pytest.raises(ContractNotFoundError):
            await store.get("nope")
        with pytest.raises(ContractNotFoundError):
            await store.put_if_unchanged(_contract("nope"), 1)

    @pytest.mark.asyncio
    async def test_list_by_rfq(self, store) -> None:
        await store.insert(_contract("a", offset_minutes=0))
        await store.insert(_contract("b", offset_minutes=10))
        await store.insert(_contract("c", rfq_id="RFQ-9"))

        assert [c.id for c in await store.list_by_rfq("RFQ-1")] == ["b", "a"]
        assert await store.list_by_rfq("RFQ-404") == []
