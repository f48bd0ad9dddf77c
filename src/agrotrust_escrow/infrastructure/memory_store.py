"""In-process contract store.

Contracts are frozen dataclasses, so the store keeps them as-is. An asyncio
lock makes each compare-and-swap atomic with respect to other coroutines on
the same event loop.
"""

from __future__ import annotations

import asyncio
import dataclasses

from agrotrust_escrow.domain.exceptions import (
    ConcurrentModificationError,
    ContractConflictError,
    ContractNotFoundError,
)
from agrotrust_escrow.domain.models import EscrowContract
from agrotrust_escrow.logging_config import get_logger

logger = get_logger(__name__)


class InMemoryContractStore:
    """Dict-backed ContractStore with optimistic versioning."""

    def __init__(self) -> None:
        self._contracts: dict[str, EscrowContract] = {}
        self._lock = asyncio.Lock()
        self.writes = 0

    async def get(self, contract_id: str) -> EscrowContract:
        contract = self._contracts.get(contract_id)
        if contract is None:
            raise ContractNotFoundError(contract_id)
        return contract

    async def insert(self, contract: EscrowContract) -> EscrowContract:
        async with self._lock:
            if contract.id in self._contracts:
                raise ContractConflictError(contract.id)
            stored = dataclasses.replace(contract, version=1)
            self._contracts[contract.id] = stored
            self.writes += 1
        return stored

    async def put_if_unchanged(
        self, contract: EscrowContract, expected_version: int
    ) -> EscrowContract:
        async with self._lock:
            current = self._contracts.get(contract.id)
            if current is None:
                raise ContractNotFoundError(contract.id)
            if current.version != expected_version:
                logger.debug(
                    "store.version_mismatch",
                    contract_id=contract.id,
                    expected=expected_version,
                    actual=current.version,
                )
                raise ConcurrentModificationError(contract.id, expected_version)
            stored = dataclasses.replace(contract, version=expected_version + 1)
            self._contracts[contract.id] = stored
            self.writes += 1
        return stored

    async def list_by_rfq(self, rfq_id: str) -> list[EscrowContract]:
        matches = [c for c in self._contracts.values() if c.rfq_id == rfq_id]
        return sorted(matches, key=lambda c: c.created_at, reverse=True)
