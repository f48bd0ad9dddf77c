"""Tests for the SQLAlchemy contract store, against a temporary SQLite file."""

from __future__ import annotations

import dataclasses
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from agrotrust_escrow.domain.enums import Currency, EscrowStatus, MilestoneType, PartyRole
from agrotrust_escrow.domain.exceptions import (
    ConcurrentModificationError,
    ContractConflictError,
    ContractNotFoundError,
)
from agrotrust_escrow.domain.milestones import build_milestone
from agrotrust_escrow.domain.models import (
    Actor,
    Amounts,
    EscrowContract,
    Inspection,
    Milestone,
    Party,
)
from agrotrust_escrow.domain.store_protocol import ContractStore
from agrotrust_escrow.infrastructure.database import Base, SqlContractStore
from agrotrust_escrow.payments.simulated import SimulatedPaymentAuthority
from agrotrust_escrow.services.escrow_service import EscrowService

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)


@pytest_asyncio.fixture
async def sql_store(tmp_path):  # noqa: ANN001, ANN201
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'escrow.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    yield SqlContractStore(factory)
    await engine.dispose()


def _contract(contract_id: str = "c-1", rfq_id: str = "RFQ-1", created_at: datetime = T0) -> EscrowContract:
    return EscrowContract(
        id=contract_id,
        rfq_id=rfq_id,
        lot_id="LOT-7",
        buyer=Party(role=PartyRole.BUYER, name="Nadia", country="DE"),
        product_name="Pomegranates",
        quantity_kg=Decimal("12000.500"),
        amounts=Amounts(Decimal("1000.00"), Currency.USD, Decimal("15.00"), Decimal("985.00")),
        status=EscrowStatus.AWAITING_DEPOSIT,
        inspection=Inspection(required=True, location="Red Bridge"),
        milestones=(
            build_milestone(MilestoneType.CONTRACT_CREATED, created_at),
            build_milestone(
                MilestoneType.DEPOSIT_REQUESTED,
                created_at,
                actor=Actor(role=PartyRole.SYSTEM, name="AgroTrust Escrow"),
            ),
        ),
        external_payment_ref="pi_sim_1",
        created_at=created_at,
        updated_at=created_at,
    )


class TestSqlContractStore:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(SqlContractStore(None), ContractStore)

    @pytest.mark.asyncio
    async def test_insert_and_get_round_trip(self, sql_store) -> None:
        contract = _contract()

        stored = await sql_store.insert(contract)
        loaded = await sql_store.get("c-1")

        assert stored.version == 1
        assert loaded == stored
        assert loaded.created_at.tzinfo is not None
        assert loaded.buyer.name == "Nadia"
        assert loaded.milestones[1].actor.role is PartyRole.SYSTEM

    @pytest.mark.asyncio
    async def test_duplicate_insert_conflicts(self, sql_store) -> None:
        await sql_store.insert(_contract())
        with pytest.raises(ContractConflictError):
            await sql_store.insert(_contract())

    @pytest.mark.asyncio
    async def test_get_missing(self, sql_store) -> None:
        with pytest.raises(ContractNotFoundError):
            await sql_store.get("missing")

    @pytest.mark.asyncio
    async def test_put_if_unchanged_advances_version(self, sql_store) -> None:
        stored = await sql_store.insert(_contract())
        funded = dataclasses.replace(
            stored,
            status=EscrowStatus.FUNDED,
            milestones=(
                *stored.milestones,
                build_milestone(MilestoneType.DEPOSIT_RECEIVED, T0 + timedelta(minutes=5)),
            ),
            updated_at=T0 + timedelta(minutes=5),
        )

        written = await sql_store.put_if_unchanged(funded, expected_version=1)
        loaded = await sql_store.get("c-1")

        assert written.version == 2
        assert loaded.version == 2
        assert loaded.status is EscrowStatus.FUNDED
        assert loaded.milestone_types[-1] is MilestoneType.DEPOSIT_RECEIVED

    @pytest.mark.asyncio
    async def test_stale_write_rejected(self, sql_store) -> None:
        stored = await sql_store.insert(_contract())
        await sql_store.put_if_unchanged(stored, expected_version=1)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            await sql_store.put_if_unchanged(stored, expected_version=1)

        assert exc_info.value.expected_version == 1
        assert (await sql_store.get("c-1")).version == 2

    @pytest.mark.asyncio
    async def test_put_missing(self, sql_store) -> None:
        with pytest.raises(ContractNotFoundError):
            await sql_store.put_if_unchanged(_contract("ghost"), expected_version=1)

    @pytest.mark.asyncio
    async def test_list_by_rfq_newest_first(self, sql_store) -> None:
        await sql_store.insert(_contract("c-old", created_at=T0))
        await sql_store.insert(_contract("c-new", created_at=T0 + timedelta(hours=1)))
        await sql_store.insert(_contract("c-other", rfq_id="RFQ-2"))

        listed = await sql_store.list_by_rfq("RFQ-1")

        assert [c.id for c in listed] == ["c-new", "c-old"]

    @pytest.mark.asyncio
    async def test_unparsable_milestone_date_preserved(self, sql_store) -> None:
        contract = _contract()
        legacy = Milestone(id="M-legacy", type=MilestoneType.CUSTOM, date="last Tuesday")
        await sql_store.insert(dataclasses.replace(contract, milestones=(*contract.milestones, legacy)))

        loaded = await sql_store.get("c-1")

        assert loaded.milestones[-1].date == "last Tuesday"


@pytest.mark.integration
class TestServiceOnSql:
    @pytest.mark.asyncio
    async def test_full_release(self, sql_store, settings, make_command) -> None:
        payments = SimulatedPaymentAuthority()
        service = EscrowService(sql_store, payments, settings)

        created = (await service.init_contract(make_command())).contract
        payments.authorize(created.external_payment_ref)
        await service.sync_contract(created.id)
        released = await service.release_contract(created.id, "passed")
        loaded = await sql_store.get(created.id)

        assert loaded.status is EscrowStatus.RELEASED
        assert loaded.version == released.version == 3
        assert loaded.amounts.net_amount == Decimal("985.00")
        assert payments.effective_captures == [created.id]
