"""Escrow Service — the contract lifecycle engine.

This is the application layer that coordinates between:
    - Domain state machine and milestone ledger (transition guard, projection)
    - Inspection adjudicator (release vs refund)
    - Payment authority (authorize, capture, cancel)
    - Contract store (optimistic, versioned writes)

Both REST routes and MCP tools call into this service, ensuring a single
source of truth for all business rules.

Every mutation follows the same shape: read the contract, decide (calling
the provider at most once), compute the complete next state, then write it
with put_if_unchanged. A lost write re-reads and decides again, so a
concurrent finalization is observed instead of overwritten.
"""

from __future__ import annotations

import asyncio
import dataclasses
import uuid
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from agrotrust_escrow.config import Settings, get_settings
from agrotrust_escrow.domain.adjudicator import adjudicate
from agrotrust_escrow.domain.enums import (
    Currency,
    EscrowStatus,
    InspectionResult,
    InspectionVerdict,
    IntentState,
    LifecycleAction,
    MilestoneType,
)
from agrotrust_escrow.domain.exceptions import (
    AlreadyFinalizedError,
    ConcurrentModificationError,
    EscrowValidationError,
    InvalidAmountError,
    InvalidStateTransitionError,
    NotYetFundedError,
    PaymentProviderError,
)
from agrotrust_escrow.domain.fees import calculate_fee_split
from agrotrust_escrow.domain.milestones import append_milestones, build_milestone, project_status
from agrotrust_escrow.domain.models import (
    INCOTERMS_MAX_LENGTH,
    PRODUCT_NAME_MAX_LENGTH,
    REFERENCE_MAX_LENGTH,
    SYSTEM_ACTOR,
    Amounts,
    EscrowContract,
    Inspection,
    InitResult,
    utc_now,
)
from agrotrust_escrow.domain.state_machine import EscrowStateMachine
from agrotrust_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from tenacity import RetryCallState

    from agrotrust_escrow.domain.models import Actor, InitEscrowCommand, Milestone
    from agrotrust_escrow.domain.payment_protocol import IntentStatus, PaymentAuthority
    from agrotrust_escrow.domain.store_protocol import ContractStore

    Decision = Callable[[EscrowContract], Awaitable[EscrowContract | None]]

logger = get_logger(__name__)

_MAX_AMOUNT_PLACES = 2


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, PaymentProviderError) and exc.transient


class EscrowService:
    """Manages the escrow contract lifecycle."""

    def __init__(
        self,
        store: ContractStore,
        payments: PaymentAuthority,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
        rfq_exists: Callable[[str], Awaitable[bool]] | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: Durable contract store.
            payments: Payment authority adapter.
            settings: Fee rate, provider call policy and CAS bounds.
            clock: Source of "now" for milestone dates.
            rfq_exists: Optional lookup confirming an RFQ id before init.
        """
        self._store = store
        self._payments = payments
        self._settings = settings or get_settings()
        self._clock = clock
        self._rfq_exists = rfq_exists

    # ------------------------------------------------------------------
    # Init
    # ------------------------------------------------------------------

    async def init_contract(self, command: InitEscrowCommand) -> InitResult:
        """Create a contract and start the buyer's deposit authorization.

        Nothing is persisted when validation or the provider fails. If the
        insert fails after the intent was created, the intent is cancelled
        before the error propagates.
        """
        rfq_id = (command.rfq_id or "").strip()
        if not rfq_id:
            raise EscrowValidationError("rfq_id is required", field="rfq_id")
        self._check_lengths(command, rfq_id)
        if self._rfq_exists is not None and not await self._rfq_exists(rfq_id):
            raise EscrowValidationError(f"Unknown RFQ: {rfq_id}", field="rfq_id")

        currency = self._parse_currency(command.currency)
        amount = self._parse_amount(command.amount)
        split = calculate_fee_split(amount, self._settings.escrow_fee_rate_percent, currency)

        contract_id = str(uuid.uuid4())
        now = self._clock()
        metadata = {
            **{k: str(v) for k, v in command.metadata.items()},
            "escrow_id": contract_id,
            "rfq_id": rfq_id,
        }
        for key, value in (
            ("lot_id", command.lot_id),
            ("passport_id", command.passport_id),
            ("product_name", command.product_name),
        ):
            if value:
                metadata[key] = value

        intent = await self._call_provider(
            "create_intent",
            self._payments.create_intent,
            split.amount,
            currency,
            metadata,
            f"escrow-init:{contract_id}",
        )

        creator = command.buyer.as_actor() if command.buyer else SYSTEM_ACTOR
        milestones = append_milestones(
            (),
            [
                build_milestone(MilestoneType.CONTRACT_CREATED, now, actor=creator),
                build_milestone(
                    MilestoneType.DEPOSIT_REQUESTED,
                    now,
                    description=f"Deposit of {split.amount} {currency} requested from buyer",
                    actor=SYSTEM_ACTOR,
                ),
            ],
            now,
        )
        contract = EscrowContract(
            id=contract_id,
            rfq_id=rfq_id,
            lot_id=command.lot_id,
            passport_id=command.passport_id,
            buyer=command.buyer,
            seller=command.seller,
            product_name=command.product_name,
            quantity_kg=command.quantity_kg,
            incoterms=command.incoterms,
            destination_country=command.destination_country,
            amounts=Amounts(
                amount=split.amount,
                currency=currency,
                fee_amount=split.fee_amount,
                net_amount=split.net_amount,
            ),
            status=project_status(milestones),
            inspection=Inspection(
                required=command.require_inspection,
                provider_name=command.inspection_provider
                or self._settings.default_inspection_provider,
                location=command.inspection_location
                or self._settings.default_inspection_location,
                scheduled_at=command.inspection_scheduled_at,
            ),
            milestones=milestones,
            external_payment_ref=intent.external_ref,
            checkout_url=intent.checkout_url,
            created_at=now,
            updated_at=now,
        )

        try:
            stored = await self._store.insert(contract)
        except Exception:
            await self._compensate_init(contract)
            raise

        logger.info(
            "escrow.created",
            contract_id=contract_id,
            rfq_id=rfq_id,
            amount=str(split.amount),
            fee=str(split.fee_amount),
            currency=str(currency),
            external_ref=intent.external_ref,
        )
        return InitResult(
            contract=stored,
            checkout_url=intent.checkout_url,
            client_secret=intent.client_secret,
        )

    # ------------------------------------------------------------------
    # Sync with provider
    # ------------------------------------------------------------------

    async def sync_contract(self, contract_id: str, hint: str | None = None) -> EscrowContract:
        """Reconcile the contract with the provider's view of the deposit.

        ``hint`` comes from a checkout redirect and is only logged; the
        provider is always asked.
        """
        if hint:
            logger.info("escrow.sync_hint", contract_id=contract_id, hint=hint)

        async def decide(contract: EscrowContract) -> EscrowContract | None:
            if contract.is_terminal or not contract.external_payment_ref:
                return None
            status = await self._call_provider(
                "fetch_intent_status",
                self._payments.fetch_intent_status,
                contract.external_payment_ref,
            )
            return await self._reconcile(contract, status)

        contract = await self._mutate(contract_id, "sync", decide)
        logger.info("escrow.synced", contract_id=contract_id, status=str(contract.status))
        return contract

    async def _reconcile(
        self, contract: EscrowContract, status: IntentStatus
    ) -> EscrowContract | None:
        if status.state in (IntentState.AUTHORIZED, IntentState.PAID):
            if contract.status is not EscrowStatus.AWAITING_DEPOSIT:
                return None
            return self._advance(
                contract,
                [
                    build_milestone(
                        MilestoneType.DEPOSIT_RECEIVED,
                        self._clock(),
                        description=(
                            f"Deposit of {contract.amounts.amount} "
                            f"{contract.amounts.currency} authorized"
                        ),
                        actor=SYSTEM_ACTOR,
                    )
                ],
            )

        if status.state in (IntentState.CANCELED, IntentState.FAILED):
            if not self._can_cancel(contract.status):
                logger.warning(
                    "escrow.provider_cancel_ignored",
                    contract_id=contract.id,
                    status=str(contract.status),
                    provider_state=str(status.state),
                )
                return None
            if status.state is IntentState.FAILED:
                # The intent may still accept a new payment method; void it so
                # no later authorization lands on a cancelled contract.
                await self._call_provider(
                    "cancel_authorization",
                    self._payments.cancel_authorization,
                    contract.external_payment_ref,
                    contract.id,
                )
            return self._advance(
                contract,
                [
                    build_milestone(
                        MilestoneType.CANCELLED,
                        self._clock(),
                        description=f"Payment {status.state} at provider ({status.provider_status})",
                        actor=SYSTEM_ACTOR,
                    )
                ],
            )

        if status.details.get("last_payment_error"):
            logger.info(
                "escrow.deposit_declined",
                contract_id=contract.id,
                provider_code=status.details["last_payment_error"],
            )
        return None

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    async def start_inspection(
        self,
        contract_id: str,
        provider_name: str | None = None,
        location: str | None = None,
        scheduled_at: datetime | None = None,
        actor: Actor | None = None,
    ) -> EscrowContract:
        """Mark a funded contract as awaiting the inspector's verdict."""

        async def decide(contract: EscrowContract) -> EscrowContract | None:
            if contract.is_terminal:
                raise AlreadyFinalizedError(contract)
            if not contract.status.is_funded:
                raise NotYetFundedError(contract)
            if contract.status is EscrowStatus.INSPECTION_PENDING:
                return None
            if contract.status is not EscrowStatus.FUNDED:
                raise InvalidStateTransitionError(contract.status, "start_inspection")
            inspection = dataclasses.replace(
                contract.inspection,
                required=True,
                provider_name=provider_name or contract.inspection.provider_name,
                location=location or contract.inspection.location,
                scheduled_at=scheduled_at or contract.inspection.scheduled_at,
            )
            return self._advance(
                contract,
                [
                    build_milestone(
                        MilestoneType.INSPECTION_STARTED,
                        self._clock(),
                        description=inspection.location,
                        actor=actor or SYSTEM_ACTOR,
                    )
                ],
                inspection=inspection,
            )

        contract = await self._mutate(contract_id, "start_inspection", decide)
        logger.info("escrow.inspection_started", contract_id=contract_id)
        return contract

    # ------------------------------------------------------------------
    # Release / refund
    # ------------------------------------------------------------------

    async def release_contract(
        self,
        contract_id: str,
        verdict: InspectionVerdict | str | None = None,
        notes: str | None = None,
        actor: Actor | None = None,
    ) -> EscrowContract:
        """Settle the deposit according to the inspection verdict.

        A passed (or not required) inspection captures the authorization and
        releases funds to the seller; a failed one cancels the authorization
        and refunds the buyer. Provider calls use the contract id as the
        idempotency key.

        Raises:
            AlreadyFinalizedError: Contract is terminal; provider not called.
            NotYetFundedError: Deposit still not authorized after a sync.
            EscrowValidationError: Inspection required but no verdict given.
            PaymentProviderError: Provider failed; contract unchanged.
        """
        parsed_verdict = self._parse_verdict(verdict)

        current = await self._store.get(contract_id)
        if current.status is EscrowStatus.AWAITING_DEPOSIT:
            current = await self.sync_contract(contract_id)
            if current.status is EscrowStatus.AWAITING_DEPOSIT:
                raise NotYetFundedError(current)

        async def decide(contract: EscrowContract) -> EscrowContract | None:
            action = adjudicate(contract, parsed_verdict)
            if action is LifecycleAction.CAPTURE_AND_RELEASE:
                return await self._capture_and_release(contract, notes, actor)
            return await self._cancel_and_refund(contract, notes, actor)

        contract = await self._mutate(contract_id, "release", decide)
        logger.info(
            "escrow.released" if contract.status is EscrowStatus.RELEASED else "escrow.refunded",
            contract_id=contract_id,
            amount=str(contract.amounts.amount),
            net=str(contract.amounts.net_amount),
        )
        return contract

    async def _capture_and_release(
        self, contract: EscrowContract, notes: str | None, actor: Actor | None
    ) -> EscrowContract:
        await self._call_provider(
            "capture",
            self._payments.capture,
            contract.external_payment_ref,
            contract.id,
        )
        now = self._clock()
        inspector = actor or SYSTEM_ACTOR
        additions: list[Milestone] = []
        inspection = contract.inspection
        if inspection.required:
            inspection = dataclasses.replace(
                inspection,
                result=InspectionResult.PASSED,
                completed_at=now,
                notes=notes or inspection.notes,
            )
            additions.append(
                build_milestone(
                    MilestoneType.INSPECTION_PASSED, now, description=notes, actor=inspector
                )
            )
        additions += [
            build_milestone(MilestoneType.RELEASE_REQUESTED, now, actor=inspector),
            build_milestone(
                MilestoneType.RELEASED,
                now,
                description=(
                    f"{contract.amounts.net_amount} {contract.amounts.currency} released to seller"
                ),
                actor=SYSTEM_ACTOR,
            ),
        ]
        return self._advance(contract, additions, inspection=inspection)

    async def _cancel_and_refund(
        self, contract: EscrowContract, notes: str | None, actor: Actor | None
    ) -> EscrowContract:
        await self._call_provider(
            "cancel_authorization",
            self._payments.cancel_authorization,
            contract.external_payment_ref,
            contract.id,
        )
        now = self._clock()
        inspection = dataclasses.replace(
            contract.inspection,
            result=InspectionResult.FAILED,
            completed_at=now,
            notes=notes or contract.inspection.notes,
        )
        return self._advance(
            contract,
            [
                build_milestone(
                    MilestoneType.INSPECTION_FAILED,
                    now,
                    description=notes,
                    actor=actor or SYSTEM_ACTOR,
                ),
                build_milestone(
                    MilestoneType.REFUNDED,
                    now,
                    description=(
                        f"Authorization of {contract.amounts.amount} "
                        f"{contract.amounts.currency} released back to buyer"
                    ),
                    actor=SYSTEM_ACTOR,
                ),
            ],
            inspection=inspection,
        )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel_contract(
        self,
        contract_id: str,
        reason: str | None = None,
        actor: Actor | None = None,
    ) -> EscrowContract:
        """Cancel a contract that has not been settled, voiding any hold."""

        async def decide(contract: EscrowContract) -> EscrowContract | None:
            if contract.is_terminal:
                raise AlreadyFinalizedError(contract)
            if not self._can_cancel(contract.status):
                raise InvalidStateTransitionError(contract.status, "cancel_contract")
            if contract.external_payment_ref:
                await self._call_provider(
                    "cancel_authorization",
                    self._payments.cancel_authorization,
                    contract.external_payment_ref,
                    contract.id,
                )
            return self._advance(
                contract,
                [
                    build_milestone(
                        MilestoneType.CANCELLED,
                        self._clock(),
                        description=reason,
                        actor=actor or SYSTEM_ACTOR,
                    )
                ],
            )

        contract = await self._mutate(contract_id, "cancel", decide)
        logger.info("escrow.cancelled", contract_id=contract_id, reason=reason)
        return contract

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_contract(self, contract_id: str) -> EscrowContract:
        return await self._store.get(contract_id)

    async def list_for_rfq(self, rfq_id: str) -> list[EscrowContract]:
        return await self._store.list_by_rfq(rfq_id)

    async def get_status(self, contract_id: str) -> dict[str, Any]:
        """Get contract status with allowed events."""
        contract = await self._store.get(contract_id)
        sm = EscrowStateMachine(current_status=contract.status)
        return {
            "contract_id": contract.id,
            "status": str(contract.status),
            "version": contract.version,
            "inspection_required": contract.inspection.required,
            "inspection_result": str(contract.inspection.result),
            "allowed_events": sm.get_allowed_events(),
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _mutate(self, contract_id: str, operation: str, decide: Decision) -> EscrowContract:
        """Read-decide-write loop over put_if_unchanged.

        ``decide`` returns the complete next state, or None for no change.
        """
        expected_version = 0
        for attempt in range(1, self._settings.cas_max_attempts + 1):
            contract = await self._store.get(contract_id)
            updated = await decide(contract)
            if updated is None:
                return contract
            expected_version = contract.version
            try:
                return await self._store.put_if_unchanged(updated, expected_version)
            except ConcurrentModificationError:
                logger.warning(
                    "escrow.write_conflict",
                    contract_id=contract_id,
                    operation=operation,
                    attempt=attempt,
                    expected_version=expected_version,
                )
        raise ConcurrentModificationError(contract_id, expected_version)

    def _advance(
        self,
        contract: EscrowContract,
        additions: list[Milestone],
        **changes: Any,
    ) -> EscrowContract:
        """Append milestones and re-project status in one new contract object."""
        now = self._clock()
        milestones = append_milestones(contract.milestones, additions, now)
        return dataclasses.replace(
            contract,
            milestones=milestones,
            status=project_status(milestones),
            updated_at=max(now, contract.updated_at),
            **changes,
        )

    async def _call_provider(self, operation: str, fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """Call the payment authority with a timeout, retrying transient failures."""
        settings = self._settings
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(settings.provider_max_attempts),
            wait=wait_exponential(
                multiplier=settings.provider_backoff_initial_seconds,
                max=settings.provider_backoff_max_seconds,
            ),
            retry=retry_if_exception(_is_transient),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                try:
                    return await asyncio.wait_for(
                        fn(*args), timeout=settings.provider_timeout_seconds
                    )
                except TimeoutError as exc:
                    raise PaymentProviderError(
                        f"Payment provider {operation} timed out after "
                        f"{settings.provider_timeout_seconds}s",
                        transient=True,
                        operation=operation,
                    ) from exc
        raise AssertionError("unreachable")  # pragma: no cover

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "payment.retrying",
            operation=getattr(exc, "operation", ""),
            attempt=retry_state.attempt_number,
            error=str(exc),
        )

    async def _compensate_init(self, contract: EscrowContract) -> None:
        logger.error(
            "escrow.insert_failed",
            contract_id=contract.id,
            external_ref=contract.external_payment_ref,
        )
        try:
            await self._call_provider(
                "cancel_authorization",
                self._payments.cancel_authorization,
                contract.external_payment_ref,
                contract.id,
            )
        except PaymentProviderError as exc:
            logger.error(
                "payment.compensating_cancel_failed",
                contract_id=contract.id,
                external_ref=contract.external_payment_ref,
                error=str(exc),
            )

    @staticmethod
    def _can_cancel(status: EscrowStatus) -> bool:
        return "cancel_contract" in EscrowStateMachine(current_status=status).get_allowed_events()

    @staticmethod
    def _check_lengths(command: InitEscrowCommand, rfq_id: str) -> None:
        for name, value, limit in (
            ("rfq_id", rfq_id, REFERENCE_MAX_LENGTH),
            ("lot_id", command.lot_id, REFERENCE_MAX_LENGTH),
            ("passport_id", command.passport_id, REFERENCE_MAX_LENGTH),
            ("product_name", command.product_name, PRODUCT_NAME_MAX_LENGTH),
            ("incoterms", command.incoterms, INCOTERMS_MAX_LENGTH),
            ("destination_country", command.destination_country, REFERENCE_MAX_LENGTH),
        ):
            if value and len(value) > limit:
                raise EscrowValidationError(
                    f"{name} must be at most {limit} characters", field=name
                )

    @staticmethod
    def _parse_currency(value: Currency | str) -> Currency:
        try:
            return Currency(str(value).upper())
        except ValueError as err:
            valid = ", ".join(c.value for c in Currency)
            raise EscrowValidationError(
                f"Unsupported currency '{value}'. Valid currencies: {valid}",
                field="currency",
            ) from err

    @staticmethod
    def _parse_amount(value: Decimal | int | float | str) -> Decimal:
        if isinstance(value, bool):
            raise InvalidAmountError(value)
        try:
            amount = value if isinstance(value, Decimal) else Decimal(str(value))
        except (InvalidOperation, ValueError) as err:
            raise InvalidAmountError(value) from err
        if not amount.is_finite() or amount <= 0:
            raise EscrowValidationError(
                f"Amount must be a positive, finite number, got {value!r}", field="amount"
            )
        if amount.as_tuple().exponent < -_MAX_AMOUNT_PLACES:
            raise EscrowValidationError(
                f"Amount must have at most {_MAX_AMOUNT_PLACES} decimal places, got {value!r}",
                field="amount",
            )
        return amount

    @staticmethod
    def _parse_verdict(verdict: InspectionVerdict | str | None) -> InspectionVerdict | None:
        if verdict is None:
            return None
        try:
            return InspectionVerdict(verdict)
        except ValueError as err:
            raise EscrowValidationError(
                f"Unknown verdict '{verdict}'. Use 'passed' or 'failed'",
                field="verdict",
            ) from err
