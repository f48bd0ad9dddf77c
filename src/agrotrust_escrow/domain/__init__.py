"""Domain layer — pure business logic with zero framework dependencies."""

from agrotrust_escrow.domain.adjudicator import adjudicate, decide
from agrotrust_escrow.domain.enums import (
    Currency,
    EscrowStatus,
    InspectionVerdict,
    IntentState,
    LifecycleAction,
    MilestoneType,
)
from agrotrust_escrow.domain.exceptions import (
    AlreadyFinalizedError,
    ConcurrentModificationError,
    ContractNotFoundError,
    EscrowError,
    EscrowValidationError,
    InvalidStateTransitionError,
    NotYetFundedError,
    PaymentProviderError,
)
from agrotrust_escrow.domain.fees import FeeSplit, calculate_fee_split
from agrotrust_escrow.domain.models import EscrowContract, InitEscrowCommand, Milestone
from agrotrust_escrow.domain.payment_protocol import (
    IntentStatus,
    PaymentAuthority,
    PaymentIntent,
)
from agrotrust_escrow.domain.state_machine import (
    EscrowStateMachine,
    validate_transition,
)
from agrotrust_escrow.domain.store_protocol import ContractStore

__all__ = [
    "Currency",
    "EscrowStatus",
    "InspectionVerdict",
    "IntentState",
    "LifecycleAction",
    "MilestoneType",
    "AlreadyFinalizedError",
    "ConcurrentModificationError",
    "ContractNotFoundError",
    "EscrowError",
    "EscrowValidationError",
    "InvalidStateTransitionError",
    "NotYetFundedError",
    "PaymentProviderError",
    "FeeSplit",
    "calculate_fee_split",
    "EscrowContract",
    "InitEscrowCommand",
    "Milestone",
    "IntentStatus",
    "PaymentAuthority",
    "PaymentIntent",
    "EscrowStateMachine",
    "validate_transition",
    "ContractStore",
    "adjudicate",
    "decide",
]
