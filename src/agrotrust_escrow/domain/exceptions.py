"""Domain exceptions for the AgroTrust escrow service.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agrotrust_escrow.domain.models import EscrowContract


class EscrowError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "ESCROW_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Input Errors ---


class EscrowValidationError(EscrowError):
    """Raised when a request is malformed. Nothing is persisted."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")
        self.field = field


class InvalidAmountError(EscrowValidationError):
    """Raised by the fee calculator for non-finite or negative amounts."""

    def __init__(self, amount: object) -> None:
        super().__init__(
            message=f"Amount must be a finite, non-negative number, got {amount!r}",
            field="amount",
        )
        self.code = "INVALID_AMOUNT"
        self.amount = amount


# --- State Machine Errors ---


class InvalidStateTransitionError(EscrowError):
    """Raised when an attempted state transition is not allowed.

    Example: awaiting_deposit -> released (must be funded first)
    """

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {current_state} -> {attempted}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted = attempted


class ContractStateError(EscrowError):
    """Base for rejected transitions that report the current contract back."""

    def __init__(self, message: str, code: str, contract: EscrowContract) -> None:
        super().__init__(message=message, code=code)
        self.contract = contract


class NotYetFundedError(ContractStateError):
    """Raised when releasing a contract whose deposit has not been authorized."""

    def __init__(self, contract: EscrowContract) -> None:
        super().__init__(
            message=f"Contract {contract.id} is not funded yet (status: {contract.status})",
            code="NOT_YET_FUNDED",
            contract=contract,
        )


class AlreadyFinalizedError(ContractStateError):
    """Raised when a terminal contract is asked to transition again.

    The unchanged contract is attached so that a retrying caller can read the
    outcome instead of parsing the message.
    """

    def __init__(self, contract: EscrowContract) -> None:
        super().__init__(
            message=f"Contract {contract.id} is already finalized (status: {contract.status})",
            code="ALREADY_FINALIZED",
            contract=contract,
        )


# --- Contract Store Errors ---


class ContractNotFoundError(EscrowError):
    """Raised when a contract ID does not exist."""

    def __init__(self, contract_id: str) -> None:
        super().__init__(
            message=f"Contract not found: {contract_id}",
            code="CONTRACT_NOT_FOUND",
        )
        self.contract_id = contract_id


class ContractConflictError(EscrowError):
    """Raised when inserting a contract whose ID already exists."""

    def __init__(self, contract_id: str) -> None:
        super().__init__(
            message=f"Contract already exists: {contract_id}",
            code="CONTRACT_CONFLICT",
        )
        self.contract_id = contract_id


class ConcurrentModificationError(EscrowError):
    """Raised when a conditional write loses the optimistic-lock race."""

    def __init__(self, contract_id: str, expected_version: int) -> None:
        super().__init__(
            message=(
                f"Contract {contract_id} was modified concurrently "
                f"(expected version {expected_version})"
            ),
            code="CONCURRENT_MODIFICATION",
        )
        self.contract_id = contract_id
        self.expected_version = expected_version


# --- Payment Errors ---


class PaymentProviderError(EscrowError):
    """Raised when the payment provider rejects or fails an operation.

    Transient errors (network, timeout, rate limit) are safe to retry with the
    same idempotency key. Permanent errors (declined, invalid state) are
    surfaced and leave the contract unchanged.
    """

    def __init__(
        self,
        message: str,
        transient: bool,
        operation: str = "",
        provider_code: str | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="PAYMENT_PROVIDER_TRANSIENT" if transient else "PAYMENT_PROVIDER_PERMANENT",
        )
        self.transient = transient
        self.operation = operation
        self.provider_code = provider_code

    @property
    def kind(self) -> str:
        return "transient" if self.transient else "permanent"
