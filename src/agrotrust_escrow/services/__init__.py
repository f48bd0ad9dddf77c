"""Application services — use case orchestration."""

from agrotrust_escrow.services.escrow_service import EscrowService

__all__ = ["EscrowService"]
