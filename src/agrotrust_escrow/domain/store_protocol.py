"""Contract Store Protocol.

The durable home of escrow contracts, one row per contract. Writes are
conditional on the version read earlier (optimistic concurrency), so two
callers racing on the same contract can never both win.

Concrete implementations:
    - infrastructure/database/repositories.py  (async SQLAlchemy)
    - infrastructure/memory_store.py           (in-process, for dev and tests)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from agrotrust_escrow.domain.models import EscrowContract


@runtime_checkable
class ContractStore(Protocol):
    async def get(self, contract_id: str) -> EscrowContract:
        """Return the contract or raise ContractNotFoundError."""
        ...

    async def insert(self, contract: EscrowContract) -> EscrowContract:
        """Persist a new contract or raise ContractConflictError."""
        ...

    async def put_if_unchanged(
        self, contract: EscrowContract, expected_version: int
    ) -> EscrowContract:
        """Replace the stored row if its version still equals ``expected_version``.

        Returns the stored contract with its version advanced. Raises
        ConcurrentModificationError when the row changed since it was read.
        """
        ...

    async def list_by_rfq(self, rfq_id: str) -> list[EscrowContract]:
        """Return all contracts for an RFQ, newest first."""
        ...
