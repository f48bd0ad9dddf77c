"""Inspection adjudicator.

Pure decision table mapping the current contract status, whether an
inspection is required, and the inspector's verdict to the next lifecycle
action:

    status                        required  verdict   action
    funded                        no        -         capture + released
    funded / inspection_pending   yes       passed    capture + released
    funded / inspection_pending   yes       failed    cancel  + refunded
    released / refunded / cancelled  -      -         AlreadyFinalized
    draft / awaiting_deposit      -         -         NotYetFunded
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from agrotrust_escrow.domain.enums import EscrowStatus, InspectionVerdict, LifecycleAction
from agrotrust_escrow.domain.exceptions import (
    AlreadyFinalizedError,
    EscrowValidationError,
    InvalidStateTransitionError,
    NotYetFundedError,
)

if TYPE_CHECKING:
    from agrotrust_escrow.domain.models import EscrowContract

_RELEASABLE = frozenset({EscrowStatus.FUNDED, EscrowStatus.INSPECTION_PENDING})
_UNFUNDED = frozenset({EscrowStatus.DRAFT, EscrowStatus.AWAITING_DEPOSIT})


def decide(
    current_status: EscrowStatus | str,
    inspection_required: bool,
    verdict: InspectionVerdict | str | None,
) -> LifecycleAction:
    """Return the lifecycle action for a release request.

    Raises:
        EscrowValidationError: inspection is required but no verdict given.
        InvalidStateTransitionError: status cannot be released from.
    """
    status = EscrowStatus(current_status)
    if status not in _RELEASABLE:
        raise InvalidStateTransitionError(status, "release")

    if not inspection_required:
        return LifecycleAction.CAPTURE_AND_RELEASE

    if verdict is None:
        raise EscrowValidationError(
            "An inspection verdict is required to release this contract",
            field="verdict",
        )
    if InspectionVerdict(verdict) is InspectionVerdict.PASSED:
        return LifecycleAction.CAPTURE_AND_RELEASE
    return LifecycleAction.CANCEL_AND_REFUND


def adjudicate(
    contract: EscrowContract,
    verdict: InspectionVerdict | str | None,
) -> LifecycleAction:
    """Apply the decision table to a loaded contract.

    Terminal and unfunded contracts are rejected with errors that carry the
    contract, so callers can report its current state.
    """
    if contract.status.is_terminal:
        raise AlreadyFinalizedError(contract)
    if contract.status in _UNFUNDED:
        raise NotYetFundedError(contract)
    return decide(contract.status, contract.inspection.required, verdict)
