"""SQL-backed contract store.

The store translates between the EscrowContract aggregate and the
escrow_contracts row, and owns its short-lived sessions: each operation opens
a session from the factory, does one unit of work and commits. Updates are
conditional on the version the caller read.
"""

from __future__ import annotations

import dataclasses
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from agrotrust_escrow.domain.enums import Currency, EscrowStatus
from agrotrust_escrow.domain.exceptions import (
    ConcurrentModificationError,
    ContractConflictError,
    ContractNotFoundError,
)
from agrotrust_escrow.domain.models import (
    Amounts,
    EscrowContract,
    Inspection,
    Milestone,
    Party,
)
from agrotrust_escrow.infrastructure.database.orm_models import EscrowContractRow
from agrotrust_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def contract_to_values(contract: EscrowContract) -> dict[str, Any]:
    """Column values for a contract, excluding the version."""
    return {
        "id": contract.id,
        "rfq_id": contract.rfq_id,
        "lot_id": contract.lot_id,
        "passport_id": contract.passport_id,
        "buyer": contract.buyer.to_dict() if contract.buyer else None,
        "seller": contract.seller.to_dict() if contract.seller else None,
        "product_name": contract.product_name,
        "quantity_kg": contract.quantity_kg,
        "incoterms": contract.incoterms,
        "destination_country": contract.destination_country,
        "amount": contract.amounts.amount,
        "currency": contract.amounts.currency.value,
        "fee_amount": contract.amounts.fee_amount,
        "net_amount": contract.amounts.net_amount,
        "external_payment_ref": contract.external_payment_ref,
        "checkout_url": contract.checkout_url,
        "status": contract.status.value,
        "inspection": contract.inspection.to_dict(),
        "milestones": contract.milestones_as_dicts(),
        "created_at": contract.created_at,
        "updated_at": contract.updated_at,
    }


def row_to_contract(row: EscrowContractRow) -> EscrowContract:
    return EscrowContract(
        id=row.id,
        rfq_id=row.rfq_id,
        lot_id=row.lot_id,
        passport_id=row.passport_id,
        buyer=Party.from_dict(row.buyer) if row.buyer else None,
        seller=Party.from_dict(row.seller) if row.seller else None,
        product_name=row.product_name,
        quantity_kg=row.quantity_kg,
        incoterms=row.incoterms,
        destination_country=row.destination_country,
        amounts=Amounts(
            amount=Decimal(row.amount),
            currency=Currency(row.currency),
            fee_amount=Decimal(row.fee_amount),
            net_amount=Decimal(row.net_amount),
        ),
        external_payment_ref=row.external_payment_ref,
        checkout_url=row.checkout_url,
        status=EscrowStatus(row.status),
        inspection=Inspection.from_dict(row.inspection),
        milestones=tuple(Milestone.from_dict(m) for m in row.milestones or []),
        version=row.version,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


class SqlContractStore:
    """ContractStore over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, contract_id: str) -> EscrowContract:
        async with self._session_factory() as session:
            row = await session.get(EscrowContractRow, contract_id)
            if row is None:
                raise ContractNotFoundError(contract_id)
            return row_to_contract(row)

    async def insert(self, contract: EscrowContract) -> EscrowContract:
        async with self._session_factory() as session:
            session.add(EscrowContractRow(**contract_to_values(contract), version=1))
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                logger.warning("store.insert_conflict", contract_id=contract.id, error=str(exc.orig))
                raise ContractConflictError(contract.id) from exc
        return dataclasses.replace(contract, version=1)

    async def put_if_unchanged(
        self, contract: EscrowContract, expected_version: int
    ) -> EscrowContract:
        values = contract_to_values(contract)
        values.pop("id")
        values.pop("created_at")
        async with self._session_factory() as session:
            result = await session.execute(
                update(EscrowContractRow)
                .where(
                    EscrowContractRow.id == contract.id,
                    EscrowContractRow.version == expected_version,
                )
                .values(**values, version=expected_version + 1)
            )
            await session.commit()
            if result.rowcount == 0:
                exists = await session.scalar(
                    select(EscrowContractRow.id).where(EscrowContractRow.id == contract.id)
                )
                if exists is None:
                    raise ContractNotFoundError(contract.id)
                logger.debug(
                    "store.version_mismatch",
                    contract_id=contract.id,
                    expected=expected_version,
                )
                raise ConcurrentModificationError(contract.id, expected_version)
        return dataclasses.replace(contract, version=expected_version + 1)

    async def list_by_rfq(self, rfq_id: str) -> list[EscrowContract]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(EscrowContractRow)
                .where(EscrowContractRow.rfq_id == rfq_id)
                .order_by(EscrowContractRow.created_at.desc())
            )
            return [row_to_contract(row) for row in result.scalars().all()]
