"""Tests for the EscrowStateMachine domain guard.

These tests verify that:
    1. All valid transitions are allowed.
    2. All invalid transitions are blocked.
    3. The convenience functions validate_transition and apply_milestone work.
    4. Edge cases (cancellation, terminal states) behave correctly.
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from agrotrust_escrow.domain.enums import EscrowStatus, MilestoneType
from agrotrust_escrow.domain.exceptions import InvalidStateTransitionError
from agrotrust_escrow.domain.state_machine import (
    EscrowStateMachine,
    apply_milestone,
    validate_transition,
)


class TestHappyPath:
    """Test the full happy-path lifecycle: draft -> released."""

    def test_full_lifecycle_with_inspection(self) -> None:
        sm = EscrowStateMachine("draft")
        assert sm.status == "draft"

        sm.request_deposit()
        assert sm.status == "awaiting_deposit"

        sm.receive_deposit()
        assert sm.status == "funded"

        sm.start_inspection()
        assert sm.status == "inspection_pending"

        sm.pass_inspection()
        assert sm.status == "inspection_passed"

        sm.release_funds()
        assert sm.status == "released"

    def test_release_without_inspection(self) -> None:
        sm = EscrowStateMachine("funded")
        sm.release_funds()
        assert sm.status == "released"


class TestRefundPath:
    def test_failed_inspection_refunds(self) -> None:
        sm = EscrowStateMachine("inspection_pending")
        sm.fail_inspection()
        assert sm.status == "inspection_failed"

        sm.refund_funds()
        assert sm.status == "refunded"

    def test_cannot_release_after_failed_inspection(self) -> None:
        sm = EscrowStateMachine("inspection_failed")
        with pytest.raises(TransitionNotAllowed):
            sm.release_funds()


class TestCancellation:
    @pytest.mark.parametrize(
        "status", ["draft", "awaiting_deposit", "funded", "inspection_pending"]
    )
    def test_cancel_from_pre_terminal(self, status: str) -> None:
        sm = EscrowStateMachine(status)
        sm.cancel_contract()
        assert sm.status == "cancelled"

    @pytest.mark.parametrize("status", ["inspection_passed", "inspection_failed"])
    def test_cannot_cancel_after_verdict(self, status: str) -> None:
        sm = EscrowStateMachine(status)
        with pytest.raises(TransitionNotAllowed):
            sm.cancel_contract()


class TestInvalidTransitions:
    def test_cannot_release_awaiting_deposit(self) -> None:
        sm = EscrowStateMachine("awaiting_deposit")
        with pytest.raises(TransitionNotAllowed):
            sm.release_funds()

    def test_cannot_fund_twice(self) -> None:
        sm = EscrowStateMachine("funded")
        with pytest.raises(TransitionNotAllowed):
            sm.receive_deposit()

    @pytest.mark.parametrize("status", ["released", "refunded", "cancelled"])
    def test_terminal_states_have_no_events(self, status: str) -> None:
        sm = EscrowStateMachine(status)
        assert sm.get_allowed_events() == []

    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            EscrowStateMachine("COMPLETED")


class TestValidateTransition:
    def test_returns_new_status(self) -> None:
        assert validate_transition("awaiting_deposit", "receive_deposit") == "funded"

    def test_unknown_event(self) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            validate_transition("funded", "teleport")

    def test_illegal_event(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition("draft", "release_funds")


class TestApplyMilestone:
    def test_status_bearing_milestone(self) -> None:
        assert apply_milestone("awaiting_deposit", MilestoneType.DEPOSIT_RECEIVED) is EscrowStatus.FUNDED

    @pytest.mark.parametrize(
        "milestone_type",
        [
            MilestoneType.CONTRACT_CREATED,
            MilestoneType.SHIPMENT_DISPATCHED,
            MilestoneType.SHIPMENT_ARRIVED,
            MilestoneType.RELEASE_REQUESTED,
            MilestoneType.REFUND_REQUESTED,
            MilestoneType.CUSTOM,
        ],
    )
    def test_informational_milestone_keeps_status(self, milestone_type: MilestoneType) -> None:
        assert apply_milestone("funded", milestone_type) is EscrowStatus.FUNDED

    def test_illegal_milestone_raises_domain_error(self) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            apply_milestone("awaiting_deposit", MilestoneType.RELEASED)
        assert exc_info.value.code == "INVALID_STATE_TRANSITION"
