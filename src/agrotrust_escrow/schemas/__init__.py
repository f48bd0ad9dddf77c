"""Pydantic API schemas."""

from agrotrust_escrow.schemas.escrow import (
    ActorIn,
    CancelRequest,
    ContractEnvelope,
    ContractListResponse,
    ContractStatusResponse,
    ErrorResponse,
    EscrowResponse,
    HealthResponse,
    InitEscrowRequest,
    InitEscrowResponse,
    MilestoneResponse,
    PartyIn,
    ReleaseRequest,
    StartInspectionRequest,
)

__all__ = [
    "ActorIn",
    "CancelRequest",
    "ContractEnvelope",
    "ContractListResponse",
    "ContractStatusResponse",
    "ErrorResponse",
    "EscrowResponse",
    "HealthResponse",
    "InitEscrowRequest",
    "InitEscrowResponse",
    "MilestoneResponse",
    "PartyIn",
    "ReleaseRequest",
    "StartInspectionRequest",
]
