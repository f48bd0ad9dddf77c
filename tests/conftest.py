"""Shared test fixtures for the AgroTrust escrow test suite.

Provides:
    - Settings with zero backoff so retry paths run instantly
    - In-memory contract store and simulated payment authority
    - An EscrowService wired to both
    - Factories for init commands and funded contracts
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from agrotrust_escrow.config import Settings
from agrotrust_escrow.domain.enums import Currency, PartyRole
from agrotrust_escrow.domain.models import InitEscrowCommand, Party
from agrotrust_escrow.infrastructure.memory_store import InMemoryContractStore
from agrotrust_escrow.payments.simulated import SimulatedPaymentAuthority
from agrotrust_escrow.services.escrow_service import EscrowService

# ---------------------------------------------------------------------------
# Infrastructure Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    """Settings independent of any local .env file."""
    return Settings(
        _env_file=None,
        app_env="development",
        payment_provider="simulated",
        database_url="sqlite+aiosqlite:///:memory:",
        escrow_fee_rate_percent=Decimal("1.5"),
        provider_timeout_seconds=1.0,
        provider_max_attempts=3,
        provider_backoff_initial_seconds=0,
        provider_backoff_max_seconds=0,
        cas_max_attempts=3,
    )


@pytest.fixture
def store() -> InMemoryContractStore:
    return InMemoryContractStore()


@pytest.fixture
def payments() -> SimulatedPaymentAuthority:
    return SimulatedPaymentAuthority(redirect=True)


@pytest.fixture
def service(store, payments, settings) -> EscrowService:  # noqa: ANN001
    return EscrowService(store=store, payments=payments, settings=settings)


# ---------------------------------------------------------------------------
# Domain Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def buyer() -> Party:
    return Party(
        role=PartyRole.BUYER,
        name="Nadia Kerimova",
        organisation="Caspian Fresh Imports",
        country="DE",
    )


@pytest.fixture
def make_command(buyer):  # noqa: ANN001, ANN201
    """Return a factory for InitEscrowCommand with sensible defaults."""

    def _make(**overrides) -> InitEscrowCommand:  # noqa: ANN003
        data = {
            "rfq_id": "RFQ-1",
            "amount": Decimal("1000"),
            "currency": Currency.USD,
            "buyer": buyer,
            "product_name": "Fresh pomegranates",
            "quantity_kg": Decimal("12000"),
        }
        data.update(overrides)
        return InitEscrowCommand(**data)

    return _make


@pytest.fixture
def open_funded(service, payments, make_command):  # noqa: ANN001, ANN201
    """Return a coroutine factory that opens a contract and funds it."""

    async def _open(**overrides):  # noqa: ANN003, ANN202
        result = await service.init_contract(make_command(**overrides))
        payments.authorize(result.contract.external_payment_ref)
        return await service.sync_contract(result.contract.id)

    return _open
