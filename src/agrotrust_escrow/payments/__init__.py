"""Payment authority implementations and factory.

Two providers:
    - SimulatedPaymentAuthority:  In-memory manual-capture provider for dev and tests
    - StripePaymentAuthority:     Manual-capture Stripe PaymentIntents

PaymentAuthorityFactory picks one based on the ``payment_provider`` setting.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from agrotrust_escrow.domain.payment_protocol import (
    IntentStatus,
    PaymentAuthority,
    PaymentIntent,
)
from agrotrust_escrow.payments.simulated import SimulatedPaymentAuthority
from agrotrust_escrow.payments.stripe_authority import StripePaymentAuthority

if TYPE_CHECKING:
    from agrotrust_escrow.config import Settings


class PaymentAuthorityFactory:
    """Factory that creates the configured payment authority.

    Usage:
        payments = PaymentAuthorityFactory.create(get_settings())
        intent = await payments.create_intent(...)
    """

    _providers: tuple[str, ...] = ("simulated", "stripe")

    @classmethod
    def create(cls, settings: Settings) -> PaymentAuthority:
        """Create a payment authority from settings.

        Raises:
            ValueError: If the provider is unknown, or Stripe is selected
                without a secret key.
        """
        provider = settings.payment_provider
        if provider == "simulated":
            return SimulatedPaymentAuthority(redirect=settings.simulated_redirect)
        if provider == "stripe":
            return StripePaymentAuthority(
                api_key=settings.stripe_secret_key,
                checkout_mode=settings.stripe_checkout_mode,
                success_url=settings.checkout_success_url,
                cancel_url=settings.checkout_cancel_url,
            )
        raise ValueError(
            f"Unknown payment provider: '{provider}'. "
            f"Valid providers: {list(cls._providers)}"
        )

    @classmethod
    def get_supported_providers(cls) -> list[str]:
        return list(cls._providers)


__all__ = [
    "IntentStatus",
    "PaymentAuthority",
    "PaymentAuthorityFactory",
    "PaymentIntent",
    "SimulatedPaymentAuthority",
    "StripePaymentAuthority",
]
