"""Escrow contract REST API routes.

These endpoints provide the HTTP interface for opening escrows, reconciling
deposits with the payment provider, recording inspection outcomes and
settling funds. The MCP tools in mcp_server/tools.py call the same service
layer, ensuring consistency.

Routes:
    POST   /api/v1/escrow/init              — Open an escrow and request the deposit
    GET    /api/v1/escrow/init              — Checkout redirect landing (triggers sync)
    POST   /api/v1/escrow/release           — Settle per inspection verdict
    GET    /api/v1/escrow?rfqId=            — Contracts for an RFQ
    GET    /api/v1/escrow/{id}              — Get contract details
    GET    /api/v1/escrow/{id}/status       — Lightweight status check
    GET    /api/v1/escrow/{id}/milestones   — Sorted timeline
    POST   /api/v1/escrow/{id}/sync         — Reconcile with the payment provider
    POST   /api/v1/escrow/{id}/inspection   — Start the border inspection
    POST   /api/v1/escrow/{id}/cancel       — Cancel and void the deposit hold
"""

from __future__ import annotations

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Query, Response
from redis.exceptions import RedisError

from agrotrust_escrow.api.deps import get_escrow_service, get_redis_client
from agrotrust_escrow.domain.milestones import sort_by_date
from agrotrust_escrow.domain.models import EscrowContract
from agrotrust_escrow.infrastructure.redis_client import recall_init, remember_init
from agrotrust_escrow.logging_config import get_logger
from agrotrust_escrow.schemas.escrow import (
    CancelRequest,
    ContractEnvelope,
    ContractListResponse,
    ContractStatusResponse,
    ErrorResponse,
    EscrowResponse,
    InitEscrowRequest,
    InitEscrowResponse,
    MilestoneResponse,
    ReleaseRequest,
    StartInspectionRequest,
)
from agrotrust_escrow.services.escrow_service import EscrowService

router = APIRouter(
    prefix="/api/v1/escrow",
    tags=["Escrow"],
    responses={
        400: {"model": ErrorResponse, "description": "Invalid request"},
        404: {"model": ErrorResponse, "description": "Contract not found"},
        409: {"model": ErrorResponse, "description": "Contract state conflict"},
        502: {"model": ErrorResponse, "description": "Payment provider rejected the call"},
        503: {"model": ErrorResponse, "description": "Payment provider unavailable"},
    },
)
logger = get_logger(__name__)


def _envelope(contract: EscrowContract) -> ContractEnvelope:
    return ContractEnvelope(contract=EscrowResponse.from_contract(contract))


# ---------------------------------------------------------------------------
# Init
# ---------------------------------------------------------------------------


@router.post(
    "/init",
    response_model=InitEscrowResponse,
    status_code=201,
    summary="Open an escrow contract",
)
async def init_escrow(
    request: InitEscrowRequest,
    response: Response,
    svc: EscrowService = Depends(get_escrow_service),
    redis: aioredis.Redis | None = Depends(get_redis_client),
) -> InitEscrowResponse:
    """Create a contract in awaiting_deposit and start the deposit authorization.

    With an ``idempotencyKey``, a replayed request returns the contract the
    first request created (status 200) instead of opening a second escrow.
    """
    key = request.idempotency_key
    if key and redis is None:
        logger.warning("idempotency.unavailable", reason="redis not connected")
    elif key:
        try:
            replay = await recall_init(redis, key)
        except RedisError as exc:
            logger.warning("idempotency.lookup_failed", error=str(exc))
            replay, redis = None, None
        if replay:
            contract = await svc.get_contract(replay["contract_id"])
            logger.info("idempotency.replayed", contract_id=contract.id)
            response.status_code = 200
            return InitEscrowResponse(
                contract=EscrowResponse.from_contract(contract),
                checkout_url=contract.checkout_url,
                client_secret=replay.get("client_secret"),
            )

    result = await svc.init_contract(request.to_command())

    if key and redis is not None:
        try:
            await remember_init(redis, key, result.contract.id, result.client_secret)
        except RedisError as exc:
            logger.warning("idempotency.store_failed", error=str(exc))

    return InitEscrowResponse(
        contract=EscrowResponse.from_contract(result.contract),
        checkout_url=result.checkout_url,
        client_secret=result.client_secret,
    )


@router.get(
    "/init",
    response_model=ContractEnvelope,
    summary="Checkout redirect landing",
)
async def checkout_landing(
    escrow_id: str = Query(..., alias="escrowId", min_length=1),
    sync: bool = Query(default=False),
    result: str | None = Query(default=None),
    svc: EscrowService = Depends(get_escrow_service),
) -> ContractEnvelope:
    """Where the provider sends the buyer back. ``result`` is informational only."""
    if sync:
        contract = await svc.sync_contract(escrow_id, hint=result)
    else:
        contract = await svc.get_contract(escrow_id)
    return _envelope(contract)


# ---------------------------------------------------------------------------
# Release
# ---------------------------------------------------------------------------


@router.post(
    "/release",
    response_model=ContractEnvelope,
    summary="Release or refund per inspection verdict",
)
async def release_escrow(
    request: ReleaseRequest,
    svc: EscrowService = Depends(get_escrow_service),
) -> ContractEnvelope:
    contract = await svc.release_contract(
        request.contract_id,
        verdict=request.verdict,
        notes=request.notes,
        actor=request.actor.to_domain() if request.actor else None,
    )
    return _envelope(contract)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=ContractListResponse,
    summary="List contracts for an RFQ",
)
async def list_escrows(
    rfq_id: str = Query(..., alias="rfqId", min_length=1),
    svc: EscrowService = Depends(get_escrow_service),
) -> ContractListResponse:
    contracts = await svc.list_for_rfq(rfq_id)
    return ContractListResponse(contracts=[EscrowResponse.from_contract(c) for c in contracts])


@router.get(
    "/{contract_id}",
    response_model=ContractEnvelope,
    summary="Get contract details",
)
async def get_escrow(
    contract_id: str,
    svc: EscrowService = Depends(get_escrow_service),
) -> ContractEnvelope:
    return _envelope(await svc.get_contract(contract_id))


@router.get(
    "/{contract_id}/status",
    response_model=ContractStatusResponse,
    summary="Lightweight status check",
)
async def get_escrow_status(
    contract_id: str,
    svc: EscrowService = Depends(get_escrow_service),
) -> ContractStatusResponse:
    return ContractStatusResponse(**await svc.get_status(contract_id))


@router.get(
    "/{contract_id}/milestones",
    response_model=list[MilestoneResponse],
    summary="Get the contract timeline",
)
async def get_escrow_milestones(
    contract_id: str,
    svc: EscrowService = Depends(get_escrow_service),
) -> list[MilestoneResponse]:
    contract = await svc.get_contract(contract_id)
    return [MilestoneResponse.from_domain(m) for m in sort_by_date(contract.milestones)]


# ---------------------------------------------------------------------------
# Mutations by id
# ---------------------------------------------------------------------------


@router.post(
    "/{contract_id}/sync",
    response_model=ContractEnvelope,
    summary="Reconcile with the payment provider",
)
async def sync_escrow(
    contract_id: str,
    svc: EscrowService = Depends(get_escrow_service),
) -> ContractEnvelope:
    return _envelope(await svc.sync_contract(contract_id))


@router.post(
    "/{contract_id}/inspection",
    response_model=ContractEnvelope,
    summary="Start the border inspection",
)
async def start_inspection(
    contract_id: str,
    request: StartInspectionRequest | None = None,
    svc: EscrowService = Depends(get_escrow_service),
) -> ContractEnvelope:
    request = request or StartInspectionRequest()
    contract = await svc.start_inspection(
        contract_id,
        provider_name=request.provider_name,
        location=request.location,
        scheduled_at=request.scheduled_at,
        actor=request.actor.to_domain() if request.actor else None,
    )
    return _envelope(contract)


@router.post(
    "/{contract_id}/cancel",
    response_model=ContractEnvelope,
    summary="Cancel the contract",
)
async def cancel_escrow(
    contract_id: str,
    request: CancelRequest | None = None,
    svc: EscrowService = Depends(get_escrow_service),
) -> ContractEnvelope:
    request = request or CancelRequest()
    contract = await svc.cancel_contract(
        contract_id,
        reason=request.reason,
        actor=request.actor.to_domain() if request.actor else None,
    )
    return _envelope(contract)
