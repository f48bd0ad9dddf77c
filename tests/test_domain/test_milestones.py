"""Tests for the milestone ledger helpers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from agrotrust_escrow.domain.enums import EscrowStatus, MilestoneType
from agrotrust_escrow.domain.exceptions import InvalidStateTransitionError
from agrotrust_escrow.domain.milestones import (
    append_milestone,
    append_milestones,
    build_milestone,
    project_status,
    sort_by_date,
)
from agrotrust_escrow.domain.models import Milestone

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)


def _ledger(*types: MilestoneType) -> tuple[Milestone, ...]:
    return append_milestones(
        (),
        [build_milestone(t, T0 + timedelta(minutes=i)) for i, t in enumerate(types)],
        T0,
    )


class TestBuildMilestone:
    def test_default_title_and_unique_ids(self) -> None:
        a = build_milestone(MilestoneType.DEPOSIT_RECEIVED, T0)
        b = build_milestone(MilestoneType.DEPOSIT_RECEIVED, T0)
        assert a.title == "Deposit received"
        assert a.id.startswith("M-")
        assert a.id != b.id


class TestAppend:
    def test_append_returns_new_tuple(self) -> None:
        first = (build_milestone(MilestoneType.CONTRACT_CREATED, T0),)
        second = build_milestone(MilestoneType.DEPOSIT_REQUESTED, T0 + timedelta(seconds=1))
        result = append_milestone(first, second, now=T0)
        assert len(first) == 1
        assert [m.type for m in result] == [
            MilestoneType.CONTRACT_CREATED,
            MilestoneType.DEPOSIT_REQUESTED,
        ]

    def test_backdated_milestone_is_restamped_with_now(self) -> None:
        ledger = (build_milestone(MilestoneType.CONTRACT_CREATED, T0),)
        late = build_milestone(MilestoneType.DEPOSIT_REQUESTED, T0 - timedelta(days=1))
        now = T0 + timedelta(hours=1)
        result = append_milestone(ledger, late, now=now)
        assert result[-1].date == now

    def test_restamped_date_never_precedes_previous(self) -> None:
        ledger = (build_milestone(MilestoneType.CONTRACT_CREATED, T0),)
        late = build_milestone(MilestoneType.DEPOSIT_REQUESTED, T0 - timedelta(days=1))
        skewed_now = T0 - timedelta(minutes=5)
        result = append_milestone(ledger, late, now=skewed_now)
        assert result[-1].date == T0

    def test_dates_are_non_decreasing(self) -> None:
        ledger = _ledger(
            MilestoneType.CONTRACT_CREATED,
            MilestoneType.DEPOSIT_REQUESTED,
            MilestoneType.DEPOSIT_RECEIVED,
        )
        dates = [m.date for m in ledger]
        assert dates == sorted(dates)


class TestSortByDate:
    def test_stable_sort_with_unparsable_last(self) -> None:
        broken = Milestone(id="M-x", type=MilestoneType.CUSTOM, date="sometime in May")
        a = Milestone(id="M-a", type=MilestoneType.CUSTOM, date=T0)
        b = Milestone(id="M-b", type=MilestoneType.CUSTOM, date=T0)
        earlier = Milestone(id="M-0", type=MilestoneType.CUSTOM, date=T0 - timedelta(days=1))
        ordered = sort_by_date([broken, a, b, earlier])
        assert [m.id for m in ordered] == ["M-0", "M-a", "M-b", "M-x"]


class TestProjectStatus:
    def test_empty_ledger_is_draft(self) -> None:
        assert project_status(()) is EscrowStatus.DRAFT

    def test_full_release_path(self) -> None:
        ledger = _ledger(
            MilestoneType.CONTRACT_CREATED,
            MilestoneType.DEPOSIT_REQUESTED,
            MilestoneType.DEPOSIT_RECEIVED,
            MilestoneType.INSPECTION_PASSED,
            MilestoneType.RELEASE_REQUESTED,
            MilestoneType.RELEASED,
        )
        assert project_status(ledger) is EscrowStatus.RELEASED

    def test_informational_milestones_do_not_change_status(self) -> None:
        ledger = _ledger(
            MilestoneType.CONTRACT_CREATED,
            MilestoneType.DEPOSIT_REQUESTED,
            MilestoneType.DEPOSIT_RECEIVED,
            MilestoneType.SHIPMENT_DISPATCHED,
            MilestoneType.SHIPMENT_ARRIVED,
        )
        assert project_status(ledger) is EscrowStatus.FUNDED

    def test_illegal_sequence_raises(self) -> None:
        ledger = _ledger(
            MilestoneType.CONTRACT_CREATED,
            MilestoneType.DEPOSIT_REQUESTED,
            MilestoneType.RELEASED,
        )
        with pytest.raises(InvalidStateTransitionError):
            project_status(ledger)
