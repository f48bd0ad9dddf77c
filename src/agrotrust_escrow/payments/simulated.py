"""Simulated payment authority.

An in-memory stand-in for a manual-capture card provider, used in
development, the simulation script and tests. It behaves like the real thing
where the lifecycle service cares:

    - create_intent is idempotent per key and starts in requires_action
      (redirect mode) or authorized (direct mode, auto_authorize=True)
    - capture/cancel are idempotent and reject conflicting outcomes
      (cancel after capture, capture after cancel)
    - failures can be injected per operation to exercise retry paths

The buyer's out-of-band checkout step is driven by ``authorize``,
``decline`` and ``expire``.
"""

from __future__ import annotations

import uuid
from collections import Counter, defaultdict, deque
from dataclasses import dataclass
from decimal import Decimal

from agrotrust_escrow.domain.enums import Currency, IntentState
from agrotrust_escrow.domain.exceptions import PaymentProviderError
from agrotrust_escrow.domain.payment_protocol import IntentStatus, PaymentIntent
from agrotrust_escrow.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class SimulatedIntent:
    external_ref: str
    amount: Decimal
    currency: Currency
    metadata: dict[str, str]
    state: IntentState
    capture_key: str | None = None
    cancel_key: str | None = None


@dataclass
class _InjectedFailure:
    transient: bool
    message: str


class SimulatedPaymentAuthority:
    """In-memory payment authority honouring idempotency keys."""

    def __init__(
        self,
        redirect: bool = True,
        auto_authorize: bool = False,
        checkout_base_url: str = "https://checkout.simulated.local",
    ) -> None:
        """Initialize the simulator.

        Args:
            redirect: If True, intents return a checkout_url the buyer must visit.
            auto_authorize: If True, new intents are immediately authorized.
            checkout_base_url: Base of the fake checkout URLs.
        """
        self._redirect = redirect
        self._auto_authorize = auto_authorize
        self._checkout_base_url = checkout_base_url.rstrip("/")
        self.intents: dict[str, SimulatedIntent] = {}
        self._refs_by_key: dict[str, str] = {}
        self._failures: dict[str, deque[_InjectedFailure]] = defaultdict(deque)
        self.calls: Counter[str] = Counter()
        self.effective_captures: list[str] = []
        self.effective_cancels: list[str] = []

    # ------------------------------------------------------------------
    # PaymentAuthority
    # ------------------------------------------------------------------

    async def create_intent(
        self,
        amount: Decimal,
        currency: Currency,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> PaymentIntent:
        self._record_call("create_intent")
        ref = self._refs_by_key.get(idempotency_key)
        if ref is None:
            ref = f"pi_sim_{uuid.uuid4().hex[:24]}"
            state = IntentState.AUTHORIZED if self._auto_authorize else IntentState.REQUIRES_ACTION
            self.intents[ref] = SimulatedIntent(
                external_ref=ref,
                amount=amount,
                currency=Currency(currency),
                metadata=dict(metadata),
                state=state,
            )
            self._refs_by_key[idempotency_key] = ref
            logger.info(
                "payment.intent_created",
                external_ref=ref,
                amount=str(amount),
                currency=str(currency),
                simulated=True,
            )
        checkout_url = f"{self._checkout_base_url}/{ref}" if self._redirect else None
        return PaymentIntent(
            external_ref=ref,
            checkout_url=checkout_url,
            client_secret=None if self._redirect else f"{ref}_secret",
        )

    async def fetch_intent_status(self, external_ref: str) -> IntentStatus:
        self._record_call("fetch_intent_status")
        intent = self._get(external_ref, "fetch_intent_status")
        return IntentStatus(
            external_ref=external_ref,
            state=intent.state,
            provider_status=intent.state.value,
        )

    async def capture(self, external_ref: str, idempotency_key: str) -> None:
        self._record_call("capture")
        intent = self._get(external_ref, "capture")
        if intent.state is IntentState.PAID:
            return
        if intent.state is not IntentState.AUTHORIZED:
            raise PaymentProviderError(
                f"Cannot capture intent {external_ref} in state {intent.state}",
                transient=False,
                operation="capture",
                provider_code="intent_unexpected_state",
            )
        intent.state = IntentState.PAID
        intent.capture_key = idempotency_key
        self.effective_captures.append(idempotency_key)
        logger.info("payment.captured", external_ref=external_ref, simulated=True)

    async def cancel_authorization(self, external_ref: str, idempotency_key: str) -> None:
        self._record_call("cancel_authorization")
        intent = self._get(external_ref, "cancel_authorization")
        if intent.state is IntentState.CANCELED:
            return
        if intent.state is IntentState.PAID:
            raise PaymentProviderError(
                f"Cannot cancel intent {external_ref}: already captured",
                transient=False,
                operation="cancel_authorization",
                provider_code="intent_unexpected_state",
            )
        intent.state = IntentState.CANCELED
        intent.cancel_key = idempotency_key
        self.effective_cancels.append(idempotency_key)
        logger.info("payment.authorization_canceled", external_ref=external_ref, simulated=True)

    # ------------------------------------------------------------------
    # Out-of-band buyer actions
    # ------------------------------------------------------------------

    def authorize(self, external_ref: str) -> None:
        """Buyer completed checkout; funds are now held."""
        self.intents[external_ref].state = IntentState.AUTHORIZED

    def decline(self, external_ref: str) -> None:
        """Buyer's payment method was declined."""
        self.intents[external_ref].state = IntentState.FAILED

    def expire(self, external_ref: str) -> None:
        """Authorization lapsed or the checkout was abandoned."""
        self.intents[external_ref].state = IntentState.CANCELED

    def fail_next(
        self,
        operation: str,
        transient: bool = True,
        times: int = 1,
        message: str = "Simulated provider failure",
    ) -> None:
        """Make the next ``times`` calls to ``operation`` raise."""
        for _ in range(times):
            self._failures[operation].append(_InjectedFailure(transient, message))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _record_call(self, operation: str) -> None:
        self.calls[operation] += 1
        pending = self._failures.get(operation)
        if pending:
            failure = pending.popleft()
            raise PaymentProviderError(
                failure.message, transient=failure.transient, operation=operation
            )

    def _get(self, external_ref: str, operation: str) -> SimulatedIntent:
        intent = self.intents.get(external_ref)
        if intent is None:
            raise PaymentProviderError(
                f"No such payment intent: {external_ref}",
                transient=False,
                operation=operation,
                provider_code="resource_missing",
            )
        return intent
