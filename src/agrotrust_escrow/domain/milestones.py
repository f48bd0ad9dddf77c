"""Milestone ledger: the append-only audit trail of a contract.

Pure functions over milestone sequences. Persistence is the contract store's
job; these helpers never mutate their inputs.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import UTC, datetime

from agrotrust_escrow.domain.enums import EscrowStatus, MilestoneType
from agrotrust_escrow.domain.models import Actor, Milestone, parse_timestamp
from agrotrust_escrow.domain.state_machine import apply_milestone

# Default wording for the timeline when callers don't supply their own.
MILESTONE_TITLES: dict[MilestoneType, str] = {
    MilestoneType.CONTRACT_CREATED: "Contract created",
    MilestoneType.DEPOSIT_REQUESTED: "Deposit requested",
    MilestoneType.DEPOSIT_RECEIVED: "Deposit received",
    MilestoneType.SHIPMENT_DISPATCHED: "Shipment dispatched",
    MilestoneType.SHIPMENT_ARRIVED: "Shipment arrived",
    MilestoneType.INSPECTION_STARTED: "Inspection started",
    MilestoneType.INSPECTION_PASSED: "Inspection passed",
    MilestoneType.INSPECTION_FAILED: "Inspection failed",
    MilestoneType.RELEASE_REQUESTED: "Release requested",
    MilestoneType.RELEASED: "Funds released",
    MilestoneType.REFUND_REQUESTED: "Refund requested",
    MilestoneType.REFUNDED: "Refunded",
    MilestoneType.CANCELLED: "Cancelled",
    MilestoneType.CUSTOM: "Update",
}

_FAR_PAST = datetime.min.replace(tzinfo=UTC)


def build_milestone(
    milestone_type: MilestoneType,
    date: datetime,
    description: str | None = None,
    actor: Actor | None = None,
    title: str | None = None,
) -> Milestone:
    return Milestone(
        id=f"M-{uuid.uuid4().hex[:12]}",
        type=milestone_type,
        date=date,
        title=title or MILESTONE_TITLES[milestone_type],
        description=description,
        actor=actor,
    )


def _last_valid_date(milestones: Sequence[Milestone]) -> datetime | None:
    for milestone in reversed(milestones):
        parsed = parse_timestamp(milestone.date)
        if parsed is not None:
            return parsed
    return None


def append_milestone(
    milestones: Sequence[Milestone],
    milestone: Milestone,
    now: datetime,
) -> tuple[Milestone, ...]:
    """Append one milestone, keeping dates non-decreasing.

    A milestone dated before the previous one is re-stamped with ``now``
    (clamped so it never precedes the previous milestone either).
    """
    previous = _last_valid_date(milestones)
    date = parse_timestamp(milestone.date)
    if previous is not None and (date is None or date < previous):
        date = max(parse_timestamp(now) or previous, previous)
    elif date is None:
        date = parse_timestamp(now) or now
    return (*milestones, replace(milestone, date=date))


def append_milestones(
    milestones: Sequence[Milestone],
    additions: Iterable[Milestone],
    now: datetime,
) -> tuple[Milestone, ...]:
    result = tuple(milestones)
    for milestone in additions:
        result = append_milestone(result, milestone, now)
    return result


def sort_by_date(milestones: Iterable[Milestone]) -> list[Milestone]:
    """Stable ascending sort by date; milestones with unparsable dates go last."""

    def key(milestone: Milestone) -> tuple[int, datetime]:
        parsed = parse_timestamp(milestone.date)
        if parsed is None:
            return (1, _FAR_PAST)
        return (0, parsed)

    return sorted(milestones, key=key)


def project_status(milestones: Iterable[Milestone]) -> EscrowStatus:
    """Replay milestones through the state machine and return the status.

    An empty ledger projects to ``draft``. Raises InvalidStateTransitionError
    if the sequence contains an illegal transition.
    """
    status = EscrowStatus.DRAFT
    for milestone in milestones:
        status = apply_milestone(status, milestone.type)
    return status
