"""Escrow Contract State Machine Guard.

Uses python-statemachine to enforce legal state transitions at the domain level.
No matter what the API or a provider reports, an illegal transition
(e.g., awaiting_deposit -> released) raises TransitionNotAllowed.

Transitions are driven by milestones: each status-bearing milestone type maps
to exactly one event, so replaying a contract's milestones through the machine
reproduces its status.

Transition table:
    draft              -> awaiting_deposit    (request_deposit)
    awaiting_deposit   -> funded              (receive_deposit)
    funded             -> inspection_pending  (start_inspection)
    funded             -> inspection_passed   (pass_inspection)
    inspection_pending -> inspection_passed   (pass_inspection)
    funded             -> inspection_failed   (fail_inspection)
    inspection_pending -> inspection_failed   (fail_inspection)
    funded             -> released            (release_funds, inspection waived)
    inspection_passed  -> released            (release_funds)
    inspection_failed  -> refunded            (refund_funds)
    draft | awaiting_deposit | funded | inspection_pending -> cancelled (cancel_contract)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from agrotrust_escrow.domain.enums import EscrowStatus, MilestoneType
from agrotrust_escrow.domain.exceptions import InvalidStateTransitionError

# Status-bearing milestone -> state machine event.
MILESTONE_EVENTS: dict[MilestoneType, str] = {
    MilestoneType.DEPOSIT_REQUESTED: "request_deposit",
    MilestoneType.DEPOSIT_RECEIVED: "receive_deposit",
    MilestoneType.INSPECTION_STARTED: "start_inspection",
    MilestoneType.INSPECTION_PASSED: "pass_inspection",
    MilestoneType.INSPECTION_FAILED: "fail_inspection",
    MilestoneType.RELEASED: "release_funds",
    MilestoneType.REFUNDED: "refund_funds",
    MilestoneType.CANCELLED: "cancel_contract",
}


class EscrowStateMachine(StateMachine):
    """State machine that guards escrow contract lifecycle transitions.

    Usage:
        sm = EscrowStateMachine(current_status="funded")
        sm.pass_inspection()  # transitions to inspection_passed
        sm.status             # "inspection_passed"
    """

    # --- States ---
    draft = State("Draft", value="draft", initial=True)
    awaiting_deposit = State("Awaiting deposit", value="awaiting_deposit")
    funded = State("Funded", value="funded")
    inspection_pending = State("Inspection pending", value="inspection_pending")
    inspection_passed = State("Inspection passed", value="inspection_passed")
    inspection_failed = State("Inspection failed", value="inspection_failed")
    released = State("Released", value="released", final=True)
    refunded = State("Refunded", value="refunded", final=True)
    cancelled = State("Cancelled", value="cancelled", final=True)

    # --- Events / Transitions ---

    # Funding
    request_deposit = draft.to(awaiting_deposit)
    receive_deposit = awaiting_deposit.to(funded)

    # Inspection
    start_inspection = funded.to(inspection_pending)
    pass_inspection = funded.to(inspection_passed) | inspection_pending.to(inspection_passed)
    fail_inspection = funded.to(inspection_failed) | inspection_pending.to(inspection_failed)

    # Settlement
    release_funds = funded.to(released) | inspection_passed.to(released)
    refund_funds = inspection_failed.to(refunded)

    # Cancellation
    cancel_contract = (
        draft.to(cancelled)
        | awaiting_deposit.to(cancelled)
        | funded.to(cancelled)
        | inspection_pending.to(cancelled)
    )

    def __init__(self, current_status: str = "draft") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current EscrowStatus value (e.g., "funded").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=str(current_status))

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches EscrowStatus enum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.name for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns the
    resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = EscrowStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status


def apply_milestone(current_status: str, milestone_type: str) -> EscrowStatus:
    """Return the status after recording a milestone of the given type.

    Informational milestones leave the status unchanged. A status-bearing
    milestone that is illegal from ``current_status`` raises
    InvalidStateTransitionError.
    """
    event_name = MILESTONE_EVENTS.get(MilestoneType(milestone_type))
    if event_name is None:
        return EscrowStatus(current_status)
    try:
        return EscrowStatus(validate_transition(current_status, event_name))
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(str(current_status), str(milestone_type)) from err
