"""Stripe payment authority.

Escrow deposits are manual-capture PaymentIntents: the buyer's card is
authorized when they complete checkout, captured when inspection passes, and
the authorization is cancelled when inspection fails.

Two modes:
    checkout_session  Redirect flow. create_intent returns a Checkout Session
                      URL; external_ref is the session id (cs_...).
    payment_intent    Direct flow. create_intent returns a PaymentIntent and
                      its client_secret for client-side confirmation;
                      external_ref is the intent id (pi_...).

The Stripe SDK is synchronous, so every call runs in a worker thread. SDK
exceptions are classified into transient/permanent PaymentProviderError here
and never leak to the lifecycle service.
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import stripe

from agrotrust_escrow.domain.enums import Currency, IntentState
from agrotrust_escrow.domain.exceptions import PaymentProviderError
from agrotrust_escrow.domain.fees import to_minor_units
from agrotrust_escrow.domain.payment_protocol import IntentStatus, PaymentIntent
from agrotrust_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable
    from decimal import Decimal

logger = get_logger(__name__)

_TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)

_UNEXPECTED_STATE = "payment_intent_unexpected_state"

_INTENT_STATES: dict[str, IntentState] = {
    "requires_capture": IntentState.AUTHORIZED,
    "succeeded": IntentState.PAID,
    "canceled": IntentState.CANCELED,
    "requires_confirmation": IntentState.REQUIRES_ACTION,
    "requires_action": IntentState.REQUIRES_ACTION,
    "processing": IntentState.REQUIRES_ACTION,
    # A decline leaves the intent here with last_payment_error set; the buyer
    # can still retry on the same intent or session.
    "requires_payment_method": IntentState.REQUIRES_ACTION,
}


def map_intent_status(intent: Any) -> IntentState:
    """Map a Stripe PaymentIntent to the engine's view of it."""
    return _INTENT_STATES.get(getattr(intent, "status", ""), IntentState.REQUIRES_ACTION)


def classify_stripe_error(exc: stripe.StripeError, operation: str) -> PaymentProviderError:
    transient = isinstance(exc, _TRANSIENT_ERRORS)
    return PaymentProviderError(
        message=f"Stripe {operation} failed: {exc.user_message or str(exc)}",
        transient=transient,
        operation=operation,
        provider_code=getattr(exc, "code", None),
    )


class StripePaymentAuthority:
    """PaymentAuthority backed by Stripe manual-capture PaymentIntents."""

    def __init__(
        self,
        api_key: str,
        checkout_mode: str = "checkout_session",
        success_url: str = "",
        cancel_url: str = "",
        stripe_client: Any = stripe,
    ) -> None:
        if not api_key:
            raise ValueError("A Stripe secret key is required (set STRIPE_SECRET_KEY)")
        self._api_key = api_key
        self._checkout_mode = checkout_mode
        self._success_url = success_url
        self._cancel_url = cancel_url
        self._stripe = stripe_client

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
        minor = to_minor_units(amount, currency)
        code = Currency(currency).value.lower()

        if self._checkout_mode == "payment_intent":
            intent = await self._call(
                "create_intent",
                self._stripe.PaymentIntent.create,
                amount=minor,
                currency=code,
                capture_method="manual",
                automatic_payment_methods={"enabled": True},
                metadata=metadata,
                description=_describe(metadata),
                idempotency_key=idempotency_key,
            )
            logger.info("payment.intent_created", external_ref=intent.id, amount=minor)
            return PaymentIntent(external_ref=intent.id, client_secret=intent.client_secret)

        escrow_id = metadata.get("escrow_id", "")
        session = await self._call(
            "create_intent",
            self._stripe.checkout.Session.create,
            mode="payment",
            line_items=[
                {
                    "price_data": {
                        "currency": code,
                        "unit_amount": minor,
                        "product_data": {"name": _describe(metadata)},
                    },
                    "quantity": 1,
                }
            ],
            payment_intent_data={"capture_method": "manual", "metadata": metadata},
            metadata=metadata,
            success_url=_with_query(self._success_url, escrowId=escrow_id, sync="1", result="success"),
            cancel_url=_with_query(self._cancel_url, escrowId=escrow_id, sync="1", result="cancel"),
            idempotency_key=idempotency_key,
        )
        logger.info("payment.checkout_session_created", external_ref=session.id, amount=minor)
        return PaymentIntent(external_ref=session.id, checkout_url=session.url)

    async def fetch_intent_status(self, external_ref: str) -> IntentStatus:
        if external_ref.startswith("cs_"):
            session = await self._call(
                "fetch_intent_status",
                self._stripe.checkout.Session.retrieve,
                external_ref,
                expand=["payment_intent"],
            )
            if session.status == "expired":
                return IntentStatus(external_ref, IntentState.CANCELED, "session_expired")
            intent = session.payment_intent
            if intent is None:
                return IntentStatus(external_ref, IntentState.REQUIRES_ACTION, f"session_{session.status}")
            if isinstance(intent, str):
                intent = await self._retrieve_intent(intent)
        else:
            intent = await self._retrieve_intent(external_ref)

        details = {"payment_intent_id": intent.id}
        last_error = getattr(intent, "last_payment_error", None)
        if last_error:
            details["last_payment_error"] = _error_code(last_error)
        return IntentStatus(
            external_ref=external_ref,
            state=map_intent_status(intent),
            provider_status=intent.status,
            details=details,
        )

    async def capture(self, external_ref: str, idempotency_key: str) -> None:
        intent_id = await self._resolve_intent_id(external_ref, "capture")
        if intent_id is None:
            raise PaymentProviderError(
                f"Checkout {external_ref} has no authorization to capture",
                transient=False,
                operation="capture",
                provider_code=_UNEXPECTED_STATE,
            )
        try:
            await self._call(
                "capture",
                self._stripe.PaymentIntent.capture,
                intent_id,
                idempotency_key=f"{idempotency_key}:capture",
            )
        except PaymentProviderError as exc:
            if not await self._already_in_state(exc, external_ref, IntentState.PAID):
                raise
        logger.info("payment.captured", external_ref=external_ref, payment_intent_id=intent_id)

    async def cancel_authorization(self, external_ref: str, idempotency_key: str) -> None:
        intent_id = await self._resolve_intent_id(external_ref, "cancel_authorization")
        try:
            if intent_id is None:
                # Buyer never completed checkout: expiring the session is the cancel.
                await self._call(
                    "cancel_authorization",
                    self._stripe.checkout.Session.expire,
                    external_ref,
                    idempotency_key=f"{idempotency_key}:expire",
                )
            else:
                await self._call(
                    "cancel_authorization",
                    self._stripe.PaymentIntent.cancel,
                    intent_id,
                    idempotency_key=f"{idempotency_key}:cancel",
                )
        except PaymentProviderError as exc:
            if not await self._already_in_state(exc, external_ref, IntentState.CANCELED):
                raise
        logger.info("payment.authorization_canceled", external_ref=external_ref)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _call(self, operation: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(partial(fn, *args, api_key=self._api_key, **kwargs))
        except stripe.StripeError as exc:
            error = classify_stripe_error(exc, operation)
            logger.warning(
                "payment.provider_error",
                operation=operation,
                kind=error.kind,
                provider_code=error.provider_code,
                error=str(exc),
            )
            raise error from exc

    async def _retrieve_intent(self, intent_id: str) -> Any:
        return await self._call("fetch_intent_status", self._stripe.PaymentIntent.retrieve, intent_id)

    async def _resolve_intent_id(self, external_ref: str, operation: str) -> str | None:
        if not external_ref.startswith("cs_"):
            return external_ref
        session = await self._call(operation, self._stripe.checkout.Session.retrieve, external_ref)
        intent = session.payment_intent
        if intent is None or isinstance(intent, str):
            return intent
        return intent.id

    async def _already_in_state(
        self, exc: PaymentProviderError, external_ref: str, wanted: IntentState
    ) -> bool:
        """A repeated capture/cancel is reported by Stripe as an unexpected state."""
        if exc.transient or exc.provider_code != _UNEXPECTED_STATE:
            return False
        status = await self.fetch_intent_status(external_ref)
        return status.state is wanted


def _describe(metadata: dict[str, str]) -> str:
    product = metadata.get("product_name") or "produce export lot"
    return f"AgroTrust escrow for {product} (RFQ {metadata.get('rfq_id', '?')})"


def _error_code(last_error: Any) -> str:
    if isinstance(last_error, dict):
        return last_error.get("code") or "payment_failed"
    return getattr(last_error, "code", None) or "payment_failed"


def _with_query(base_url: str, **params: str) -> str:
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode(params)}"
