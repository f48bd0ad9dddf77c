"""Domain enumerations for the AgroTrust escrow service.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class EscrowStatus(enum.StrEnum):
    """Lifecycle states of an escrow contract.

    The status of a contract is always the projection of its milestone list.
    See domain/state_machine.py for the transition table.
    """

    DRAFT = "draft"
    AWAITING_DEPOSIT = "awaiting_deposit"
    FUNDED = "funded"
    INSPECTION_PENDING = "inspection_pending"
    INSPECTION_PASSED = "inspection_passed"
    INSPECTION_FAILED = "inspection_failed"
    RELEASED = "released"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_funded(self) -> bool:
        """True once the buyer's deposit has been authorized by the provider."""
        return STATUS_RANK[self] >= STATUS_RANK[EscrowStatus.FUNDED]


TERMINAL_STATUSES = frozenset(
    {EscrowStatus.RELEASED, EscrowStatus.REFUNDED, EscrowStatus.CANCELLED}
)

# Partial order used by the monotonic-status invariant. Statuses sharing a
# rank are mutually exclusive outcomes; CANCELLED sits above every
# pre-terminal state.
STATUS_RANK: dict[EscrowStatus, int] = {
    EscrowStatus.DRAFT: 0,
    EscrowStatus.AWAITING_DEPOSIT: 1,
    EscrowStatus.FUNDED: 2,
    EscrowStatus.INSPECTION_PENDING: 3,
    EscrowStatus.INSPECTION_PASSED: 4,
    EscrowStatus.INSPECTION_FAILED: 4,
    EscrowStatus.RELEASED: 5,
    EscrowStatus.REFUNDED: 5,
    EscrowStatus.CANCELLED: 5,
}


class MilestoneType(enum.StrEnum):
    """Types of milestones recorded in a contract's audit trail.

    Status-bearing milestones move the contract through the state machine;
    the rest are informational and leave the status unchanged.
    """

    CONTRACT_CREATED = "contract_created"
    DEPOSIT_REQUESTED = "deposit_requested"
    DEPOSIT_RECEIVED = "deposit_received"
    SHIPMENT_DISPATCHED = "shipment_dispatched"
    SHIPMENT_ARRIVED = "shipment_arrived"
    INSPECTION_STARTED = "inspection_started"
    INSPECTION_PASSED = "inspection_passed"
    INSPECTION_FAILED = "inspection_failed"
    RELEASE_REQUESTED = "release_requested"
    RELEASED = "released"
    REFUND_REQUESTED = "refund_requested"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"
    CUSTOM = "custom"


class Currency(enum.StrEnum):
    """Settlement currencies accepted by the escrow service."""

    USD = "USD"
    EUR = "EUR"
    AZN = "AZN"


# Number of decimal places in the currency's minor unit.
CURRENCY_MINOR_UNITS: dict[Currency, int] = {
    Currency.USD: 2,
    Currency.EUR: 2,
    Currency.AZN: 2,
}


class PartyRole(enum.StrEnum):
    BUYER = "buyer"
    SELLER = "seller"
    INSPECTOR = "inspector"
    ADMIN = "admin"
    SYSTEM = "system"


class InspectionResult(enum.StrEnum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


class InspectionVerdict(enum.StrEnum):
    """Outcome reported by an inspector when releasing a contract."""

    PASSED = "passed"
    FAILED = "failed"


class IntentState(enum.StrEnum):
    """Provider-side state of a payment authorization, as seen by the engine."""

    AUTHORIZED = "authorized"
    PAID = "paid"
    CANCELED = "canceled"
    REQUIRES_ACTION = "requires_action"
    FAILED = "failed"


class LifecycleAction(enum.StrEnum):
    """Decision produced by the inspection adjudicator."""

    CAPTURE_AND_RELEASE = "capture_and_release"
    CANCEL_AND_REFUND = "cancel_and_refund"
