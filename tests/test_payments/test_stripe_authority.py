"""Tests for the Stripe payment authority.

Uses a mocked Stripe client to test request shaping and error
classification without hitting the real API. The exception classes are the
real ones from the SDK.
"""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import stripe

from agrotrust_escrow.config import Settings
from agrotrust_escrow.domain.enums import Currency, EscrowStatus, IntentState, MilestoneType
from agrotrust_escrow.domain.exceptions import PaymentProviderError
from agrotrust_escrow.payments import PaymentAuthorityFactory
from agrotrust_escrow.payments.simulated import SimulatedPaymentAuthority
from agrotrust_escrow.payments.stripe_authority import (
    StripePaymentAuthority,
    classify_stripe_error,
    map_intent_status,
)
from agrotrust_escrow.services.escrow_service import EscrowService

METADATA = {"escrow_id": "c-1", "rfq_id": "RFQ-1", "product_name": "Pomegranates"}


def _intent(status: str, intent_id: str = "pi_1", **extra) -> SimpleNamespace:  # noqa: ANN003
    return SimpleNamespace(id=intent_id, status=status, client_secret="pi_1_secret", **extra)


def _unexpected_state() -> stripe.InvalidRequestError:
    return stripe.InvalidRequestError(
        "This PaymentIntent's status is not valid for this action",
        None,
        code="payment_intent_unexpected_state",
    )


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def direct(client: MagicMock) -> StripePaymentAuthority:
    return StripePaymentAuthority("sk_test_123", checkout_mode="payment_intent", stripe_client=client)


@pytest.fixture
def redirect(client: MagicMock) -> StripePaymentAuthority:
    return StripePaymentAuthority(
        "sk_test_123",
        checkout_mode="checkout_session",
        success_url="https://app.example/contracts",
        cancel_url="https://app.example/contracts?tab=open",
        stripe_client=client,
    )


class TestStatusMapping:
    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            ("requires_capture", IntentState.AUTHORIZED),
            ("succeeded", IntentState.PAID),
            ("canceled", IntentState.CANCELED),
            ("requires_action", IntentState.REQUIRES_ACTION),
            ("processing", IntentState.REQUIRES_ACTION),
            ("requires_payment_method", IntentState.REQUIRES_ACTION),
        ],
    )
    def test_map_intent_status(self, status: str, expected: IntentState) -> None:
        assert map_intent_status(_intent(status, last_payment_error=None)) is expected

    def test_declined_card_can_be_retried(self) -> None:
        intent = _intent("requires_payment_method", last_payment_error={"code": "card_declined"})
        assert map_intent_status(intent) is IntentState.REQUIRES_ACTION


class TestErrorClassification:
    @pytest.mark.parametrize(
        "exc",
        [
            stripe.APIConnectionError("Network down"),
            stripe.RateLimitError("Too many requests"),
            stripe.APIError("Stripe is having a bad day"),
        ],
    )
    def test_transient(self, exc: stripe.StripeError) -> None:
        error = classify_stripe_error(exc, "capture")
        assert error.transient is True
        assert error.operation == "capture"

    def test_card_error_is_permanent(self) -> None:
        error = classify_stripe_error(
            stripe.CardError("Your card was declined", None, "card_declined"), "create_intent"
        )
        assert error.transient is False
        assert error.provider_code == "card_declined"
        assert error.code == "PAYMENT_PROVIDER_PERMANENT"


class TestCreateIntent:
    def test_requires_api_key(self) -> None:
        with pytest.raises(ValueError, match="STRIPE_SECRET_KEY"):
            StripePaymentAuthority("")

    @pytest.mark.asyncio
    async def test_direct_manual_capture_intent(self, direct, client) -> None:
        client.PaymentIntent.create.return_value = _intent("requires_payment_method")

        intent = await direct.create_intent(Decimal("1000.00"), Currency.USD, METADATA, "escrow-init:c-1")

        assert intent.external_ref == "pi_1"
        assert intent.client_secret == "pi_1_secret"
        assert intent.checkout_url is None
        kwargs = client.PaymentIntent.create.call_args.kwargs
        assert kwargs["amount"] == 100000
        assert kwargs["currency"] == "usd"
        assert kwargs["capture_method"] == "manual"
        assert kwargs["idempotency_key"] == "escrow-init:c-1"
        assert kwargs["api_key"] == "sk_test_123"
        assert kwargs["metadata"] == METADATA

    @pytest.mark.asyncio
    async def test_checkout_session(self, redirect, client) -> None:
        client.checkout.Session.create.return_value = SimpleNamespace(
            id="cs_test_1", url="https://checkout.stripe.com/c/pay/cs_test_1"
        )

        intent = await redirect.create_intent(Decimal("250.50"), Currency.EUR, METADATA, "escrow-init:c-1")

        assert intent.external_ref == "cs_test_1"
        assert intent.checkout_url == "https://checkout.stripe.com/c/pay/cs_test_1"
        kwargs = client.checkout.Session.create.call_args.kwargs
        assert kwargs["payment_intent_data"]["capture_method"] == "manual"
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 25050
        assert kwargs["line_items"][0]["price_data"]["currency"] == "eur"
        assert kwargs["success_url"] == (
            "https://app.example/contracts?escrowId=c-1&sync=1&result=success"
        )
        assert kwargs["cancel_url"] == (
            "https://app.example/contracts?tab=open&escrowId=c-1&sync=1&result=cancel"
        )

    @pytest.mark.asyncio
    async def test_sdk_error_translated(self, direct, client) -> None:
        client.PaymentIntent.create.side_effect = stripe.APIConnectionError("Network down")

        with pytest.raises(PaymentProviderError) as exc_info:
            await direct.create_intent(Decimal("10"), Currency.USD, METADATA, "k")

        assert exc_info.value.transient is True
        assert isinstance(exc_info.value.__cause__, stripe.APIConnectionError)


class TestFetchStatus:
    @pytest.mark.asyncio
    async def test_payment_intent_ref(self, direct, client) -> None:
        client.PaymentIntent.retrieve.return_value = _intent("requires_capture")

        status = await direct.fetch_intent_status("pi_1")

        assert status.state is IntentState.AUTHORIZED
        assert status.provider_status == "requires_capture"
        client.PaymentIntent.retrieve.assert_called_once_with("pi_1", api_key="sk_test_123")

    @pytest.mark.asyncio
    async def test_decline_reported_in_details(self, direct, client) -> None:
        client.PaymentIntent.retrieve.return_value = _intent(
            "requires_payment_method", last_payment_error={"code": "card_declined"}
        )

        status = await direct.fetch_intent_status("pi_1")

        assert status.state is IntentState.REQUIRES_ACTION
        assert status.details["last_payment_error"] == "card_declined"

    @pytest.mark.asyncio
    async def test_expired_session_is_canceled(self, redirect, client) -> None:
        client.checkout.Session.retrieve.return_value = SimpleNamespace(
            id="cs_1", status="expired", payment_intent=None
        )
        status = await redirect.fetch_intent_status("cs_1")
        assert status.state is IntentState.CANCELED

    @pytest.mark.asyncio
    async def test_open_session_requires_action(self, redirect, client) -> None:
        client.checkout.Session.retrieve.return_value = SimpleNamespace(
            id="cs_1", status="open", payment_intent=None
        )
        status = await redirect.fetch_intent_status("cs_1")
        assert status.state is IntentState.REQUIRES_ACTION

    @pytest.mark.asyncio
    async def test_completed_session_uses_expanded_intent(self, redirect, client) -> None:
        client.checkout.Session.retrieve.return_value = SimpleNamespace(
            id="cs_1", status="complete", payment_intent=_intent("requires_capture", "pi_9")
        )

        status = await redirect.fetch_intent_status("cs_1")

        assert status.state is IntentState.AUTHORIZED
        assert status.details == {"payment_intent_id": "pi_9"}
        assert client.checkout.Session.retrieve.call_args.kwargs["expand"] == ["payment_intent"]


class TestCaptureAndCancel:
    @pytest.mark.asyncio
    async def test_capture_namespaces_key(self, direct, client) -> None:
        await direct.capture("pi_1", "c-1")
        client.PaymentIntent.capture.assert_called_once_with(
            "pi_1", api_key="sk_test_123", idempotency_key="c-1:capture"
        )

    @pytest.mark.asyncio
    async def test_repeated_capture_is_success(self, direct, client) -> None:
        client.PaymentIntent.capture.side_effect = _unexpected_state()
        client.PaymentIntent.retrieve.return_value = _intent("succeeded")

        await direct.capture("pi_1", "c-1")

    @pytest.mark.asyncio
    async def test_capture_of_canceled_intent_fails(self, direct, client) -> None:
        client.PaymentIntent.capture.side_effect = _unexpected_state()
        client.PaymentIntent.retrieve.return_value = _intent("canceled")

        with pytest.raises(PaymentProviderError) as exc_info:
            await direct.capture("pi_1", "c-1")

        assert exc_info.value.transient is False
        assert exc_info.value.provider_code == "payment_intent_unexpected_state"

    @pytest.mark.asyncio
    async def test_capture_session_without_intent(self, redirect, client) -> None:
        client.checkout.Session.retrieve.return_value = SimpleNamespace(
            id="cs_1", status="open", payment_intent=None
        )
        with pytest.raises(PaymentProviderError):
            await redirect.capture("cs_1", "c-1")
        client.PaymentIntent.capture.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_intent(self, direct, client) -> None:
        await direct.cancel_authorization("pi_1", "c-1")
        client.PaymentIntent.cancel.assert_called_once_with(
            "pi_1", api_key="sk_test_123", idempotency_key="c-1:cancel"
        )

    @pytest.mark.asyncio
    async def test_cancel_unpaid_session_expires_it(self, redirect, client) -> None:
        client.checkout.Session.retrieve.return_value = SimpleNamespace(
            id="cs_1", status="open", payment_intent=None
        )

        await redirect.cancel_authorization("cs_1", "c-1")

        client.checkout.Session.expire.assert_called_once_with(
            "cs_1", api_key="sk_test_123", idempotency_key="c-1:expire"
        )
        client.PaymentIntent.cancel.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_session_with_intent_id(self, redirect, client) -> None:
        client.checkout.Session.retrieve.return_value = SimpleNamespace(
            id="cs_1", status="complete", payment_intent="pi_7"
        )

        await redirect.cancel_authorization("cs_1", "c-1")

        client.PaymentIntent.cancel.assert_called_once_with(
            "pi_7", api_key="sk_test_123", idempotency_key="c-1:cancel"
        )


class TestFactory:
    def test_simulated(self) -> None:
        settings = Settings(_env_file=None, payment_provider="simulated")
        assert isinstance(PaymentAuthorityFactory.create(settings), SimulatedPaymentAuthority)

    def test_stripe(self) -> None:
        settings = Settings(_env_file=None, payment_provider="stripe", stripe_secret_key="sk_test_1")
        assert isinstance(PaymentAuthorityFactory.create(settings), StripePaymentAuthority)

    def test_stripe_without_key(self) -> None:
        settings = Settings(_env_file=None, payment_provider="stripe", stripe_secret_key="")
        with pytest.raises(ValueError):
            PaymentAuthorityFactory.create(settings)

    def test_supported_providers(self) -> None:
        assert PaymentAuthorityFactory.get_supported_providers() == ["simulated", "stripe"]


class TestEscrowServiceOnStripe:
    @pytest.mark.asyncio
    async def test_direct_mode_returns_client_secret(
        self, direct, client, store, settings, make_command
    ) -> None:
        client.PaymentIntent.create.return_value = SimpleNamespace(
            id="pi_1", status="requires_payment_method", client_secret="pi_1_secret_abc"
        )
        service = EscrowService(store, direct, settings)

        result = await service.init_contract(make_command())

        assert result.client_secret == "pi_1_secret_abc"
        assert result.checkout_url is None
        assert result.contract.external_payment_ref == "pi_1"

    @pytest.mark.asyncio
    async def test_declined_card_keeps_contract_open(
        self, direct, client, store, settings, make_command
    ) -> None:
        client.PaymentIntent.create.return_value = _intent("requires_payment_method")
        service = EscrowService(store, direct, settings)
        created = (await service.init_contract(make_command())).contract

        client.PaymentIntent.retrieve.return_value = _intent(
            "requires_payment_method", last_payment_error={"code": "card_declined"}
        )
        declined = await service.sync_contract(created.id)

        assert declined.status is EscrowStatus.AWAITING_DEPOSIT
        client.PaymentIntent.cancel.assert_not_called()

        client.PaymentIntent.retrieve.return_value = _intent("requires_capture")
        funded = await service.sync_contract(created.id)

        assert funded.status is EscrowStatus.FUNDED
        assert funded.milestone_types.count(MilestoneType.CANCELLED) == 0
