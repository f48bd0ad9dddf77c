"""Payment Authority Protocol.

Defines the interface the lifecycle service needs from a payment provider.
This is a Protocol (structural subtyping) so concrete adapters don't need to
inherit from a base class, they just need to match the shape.

The domain layer has ZERO imports from Stripe or any external SDK. Adapters
translate provider failures into PaymentProviderError(transient=...).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from decimal import Decimal

    from agrotrust_escrow.domain.enums import Currency, IntentState


@dataclass(frozen=True)
class PaymentIntent:
    """Handle returned when an authorization is started.

    Attributes:
        external_ref: Provider identifier (intent or checkout session id).
        checkout_url: Set by redirect-based providers; the buyer must visit it.
        client_secret: Set by direct providers for client-side confirmation.
    """

    external_ref: str
    checkout_url: str | None = None
    client_secret: str | None = None


@dataclass(frozen=True)
class IntentStatus:
    """Provider truth for one authorization."""

    external_ref: str
    state: IntentState
    provider_status: str = ""
    details: dict = field(default_factory=dict)


@runtime_checkable
class PaymentAuthority(Protocol):
    """Protocol that all payment provider adapters must satisfy.

    Concrete implementations:
        - payments/simulated.py         (in-memory provider for dev and tests)
        - payments/stripe_authority.py  (manual-capture Stripe PaymentIntents)
    """

    async def create_intent(
        self,
        amount: Decimal,
        currency: Currency,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> PaymentIntent:
        """Begin an authorization hold for ``amount``."""
        ...

    async def fetch_intent_status(self, external_ref: str) -> IntentStatus:
        """Read the current provider state. Side-effect free."""
        ...

    async def capture(self, external_ref: str, idempotency_key: str) -> None:
        """Turn a held authorization into a transfer. Safe to repeat."""
        ...

    async def cancel_authorization(self, external_ref: str, idempotency_key: str) -> None:
        """Release a held authorization without moving funds. Safe to repeat."""
        ...
