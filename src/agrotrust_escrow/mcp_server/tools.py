"""MCP Tool definitions for AgroTrust Escrow.

These tools expose the escrow lifecycle via the Model Context Protocol,
allowing trade agents to discover and call them programmatically.

Tools:
    - init_escrow: Open an escrow for an RFQ and request the buyer's deposit
    - sync_escrow: Reconcile a contract with the payment provider
    - release_escrow: Release or refund per the inspection verdict
    - cancel_escrow: Cancel a contract that has not been settled
    - check_status: Check the current status of a contract

The MCP server is mounted into FastAPI at /mcp via app.mount(). There is no
FastAPI Depends here, so the lifespan binds the shared EscrowService with
bind_service().
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from mcp.server.fastmcp import FastMCP

from agrotrust_escrow.domain.exceptions import ContractStateError, EscrowError
from agrotrust_escrow.domain.models import InitEscrowCommand
from agrotrust_escrow.logging_config import get_logger
from agrotrust_escrow.schemas.escrow import normalize_verdict

if TYPE_CHECKING:
    from agrotrust_escrow.domain.models import EscrowContract
    from agrotrust_escrow.services.escrow_service import EscrowService

logger = get_logger(__name__)

# Initialize the MCP server
# This will be mounted into the FastAPI app in main.py
mcp = FastMCP(
    "AgroTrust Escrow",
    json_response=True,
)

_service: EscrowService | None = None


def bind_service(service: EscrowService | None) -> None:
    """Attach the EscrowService the tools delegate to (None on shutdown)."""
    global _service
    _service = service


def _get_service() -> EscrowService:
    if _service is None:
        raise RuntimeError("Escrow service not initialized. Start the app lifespan first.")
    return _service


def _summary(contract: EscrowContract) -> dict[str, Any]:
    return {
        "contract_id": contract.id,
        "rfq_id": contract.rfq_id,
        "status": str(contract.status),
        "amount": str(contract.amounts.amount),
        "fee_amount": str(contract.amounts.fee_amount),
        "net_amount": str(contract.amounts.net_amount),
        "currency": str(contract.amounts.currency),
        "inspection_required": contract.inspection.required,
        "inspection_result": str(contract.inspection.result),
        "milestones": [str(t) for t in contract.milestone_types],
        "version": contract.version,
    }


def _error(tool: str, exc: EscrowError) -> dict[str, Any]:
    logger.warning(f"mcp.{tool}.error", code=exc.code, error=exc.message)
    result: dict[str, Any] = {"error": exc.code, "message": exc.message}
    if isinstance(exc, ContractStateError):
        result["contract"] = _summary(exc.contract)
    return result


@mcp.tool()
async def init_escrow(
    rfq_id: str,
    amount: str,
    currency: str = "USD",
    require_inspection: bool = True,
    lot_id: str = "",
    product_name: str = "",
) -> dict:
    """Open an escrow for an accepted RFQ and request the buyer's deposit.

    Args:
        rfq_id: The request-for-quotation id the deal belongs to.
        amount: Gross amount as a decimal string, e.g. "1000.00".
        currency: One of USD, EUR, AZN.
        require_inspection: Hold funds until a border inspection verdict.
        lot_id: Optional produce lot id.
        product_name: Optional product description.

    Returns:
        Contract summary with the checkout_url the buyer must visit, or the
        client_secret for direct confirmation, depending on the provider.
    """
    try:
        parsed_amount = Decimal(amount)
    except InvalidOperation:
        return {"error": "VALIDATION_ERROR", "message": f"Invalid amount: {amount!r}"}

    try:
        result = await _get_service().init_contract(
            InitEscrowCommand(
                rfq_id=rfq_id,
                amount=parsed_amount,
                currency=currency,
                require_inspection=require_inspection,
                lot_id=lot_id or None,
                product_name=product_name or None,
            )
        )
    except EscrowError as exc:
        return _error("init_escrow", exc)

    return {
        **_summary(result.contract),
        "checkout_url": result.checkout_url,
        "client_secret": result.client_secret,
        "message": "Escrow opened. Next step: the buyer authorizes the deposit.",
    }


@mcp.tool()
async def sync_escrow(contract_id: str) -> dict:
    """Reconcile an escrow with the payment provider.

    Args:
        contract_id: Id of the escrow contract.

    Returns:
        Contract summary after reconciliation.
    """
    try:
        contract = await _get_service().sync_contract(contract_id)
    except EscrowError as exc:
        return _error("sync_escrow", exc)
    return _summary(contract)


@mcp.tool()
async def release_escrow(contract_id: str, verdict: str = "", notes: str = "") -> dict:
    """Settle a funded escrow according to the inspection verdict.

    Args:
        contract_id: Id of the escrow contract.
        verdict: 'passed' (or 'PASS') releases funds to the seller, 'failed'
            (or 'FAIL') refunds the buyer. Required when the contract requires
            inspection.
        notes: Optional inspector notes.

    Returns:
        Contract summary with the final status.
    """
    try:
        contract = await _get_service().release_contract(
            contract_id, verdict=normalize_verdict(verdict), notes=notes or None
        )
    except EscrowError as exc:
        return _error("release_escrow", exc)
    return {
        **_summary(contract),
        "message": f"Escrow settled. Contract is now {contract.status}.",
    }


@mcp.tool()
async def cancel_escrow(contract_id: str, reason: str = "") -> dict:
    """Cancel an escrow that has not been settled and void the deposit hold.

    Args:
        contract_id: Id of the escrow contract.
        reason: Why the deal is being cancelled.

    Returns:
        Contract summary with cancelled status.
    """
    try:
        contract = await _get_service().cancel_contract(contract_id, reason=reason or None)
    except EscrowError as exc:
        return _error("cancel_escrow", exc)
    return _summary(contract)


@mcp.tool()
async def check_status(contract_id: str) -> dict:
    """Check the current status of an escrow contract.

    Args:
        contract_id: Id of the escrow contract.

    Returns:
        Current status, inspection state, and allowed next actions.
    """
    try:
        return await _get_service().get_status(contract_id)
    except EscrowError as exc:
        return _error("check_status", exc)
