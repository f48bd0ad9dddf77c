#!/usr/bin/env python3
"""AgroTrust Escrow — End-to-End Simulation.

Simulates five scenarios with a BuyerBot and an InspectorBot against the
simulated payment provider:

    Scenario A: Open escrow
        - Buyer opens a 1000 USD escrow for RFQ-1 -> awaiting_deposit,
          fee 15.00, net 985.00, two milestones

    Scenario B: Deposit authorized
        - Buyer completes checkout, contract syncs -> funded
        - A second sync adds no milestone

    Scenario C: Inspection passed
        - Inspector records a passed verdict -> one capture, released

    Scenario D: Inspection failed
        - Inspector records a failed verdict -> one cancel, refunded

    Scenario E: Release after settlement
        - Release on a released contract -> AlreadyFinalized, provider untouched

Usage:
    # In-memory store (instant, no Docker):
    uv run python simulation.py

    # SQLite store via aiosqlite:
    uv run python simulation.py --sqlite

    # Run a specific scenario:
    uv run python simulation.py --scenario C
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from agrotrust_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from agrotrust_escrow.config import Settings  # noqa: E402
from agrotrust_escrow.domain.enums import Currency, PartyRole  # noqa: E402
from agrotrust_escrow.domain.exceptions import AlreadyFinalizedError  # noqa: E402
from agrotrust_escrow.domain.milestones import sort_by_date  # noqa: E402
from agrotrust_escrow.domain.models import Actor, InitEscrowCommand, Party  # noqa: E402
from agrotrust_escrow.infrastructure.memory_store import InMemoryContractStore  # noqa: E402
from agrotrust_escrow.payments.simulated import SimulatedPaymentAuthority  # noqa: E402
from agrotrust_escrow.services.escrow_service import EscrowService  # noqa: E402

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from agrotrust_escrow.domain.models import EscrowContract
    from agrotrust_escrow.domain.store_protocol import ContractStore

# Module-level state
_sqlite_engine: AsyncEngine | None = None
_use_sqlite = False


# ---------------------------------------------------------------------------
# Store lifecycle helpers
# ---------------------------------------------------------------------------
async def build_store() -> ContractStore:
    """Return a fresh contract store (in-memory, or SQLite in-memory)."""
    global _sqlite_engine

    if not _use_sqlite:
        return InMemoryContractStore()

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from agrotrust_escrow.infrastructure.database import Base, SqlContractStore

    await shutdown_store()
    _sqlite_engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with _sqlite_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database.sqlite_initialized")
    return SqlContractStore(
        async_sessionmaker(
            bind=_sqlite_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    )


async def shutdown_store() -> None:
    """Close database connections."""
    global _sqlite_engine
    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None


async def build_service() -> tuple[EscrowService, SimulatedPaymentAuthority]:
    payments = SimulatedPaymentAuthority(redirect=True)
    settings = Settings(
        payment_provider="simulated",
        provider_backoff_initial_seconds=0,
        provider_backoff_max_seconds=0,
    )
    service = EscrowService(await build_store(), payments, settings)
    return service, payments


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class BuyerBot:
    """Simulated importer that opens escrows and pays the deposit."""

    party: Party = field(
        default_factory=lambda: Party(
            role=PartyRole.BUYER,
            name="Nadia Kerimova",
            organisation="Caspian Fresh Imports",
            country="DE",
        )
    )

    async def open_escrow(self, svc: EscrowService, rfq_id: str, amount: Decimal) -> EscrowContract:
        result = await svc.init_contract(
            InitEscrowCommand(
                rfq_id=rfq_id,
                amount=amount,
                currency=Currency.USD,
                buyer=self.party,
                seller=Party(
                    role=PartyRole.SELLER,
                    name="Goychay Orchards",
                    organisation="Goychay Orchards LLC",
                    country="AZ",
                ),
                product_name="Fresh pomegranates",
                quantity_kg=Decimal("12000"),
                incoterms="FCA",
                destination_country="DE",
            )
        )
        logger.info(
            "BUYER: escrow opened",
            contract_id=result.contract.id,
            checkout_url=result.checkout_url,
        )
        return result.contract

    async def pay_deposit(
        self, svc: EscrowService, payments: SimulatedPaymentAuthority, contract: EscrowContract
    ) -> EscrowContract:
        """Complete checkout at the provider, then land on the redirect URL."""
        payments.authorize(contract.external_payment_ref)
        synced = await svc.sync_contract(contract.id, hint="success")
        logger.info("BUYER: deposit authorized", contract_id=contract.id, status=str(synced.status))
        return synced


@dataclass
class InspectorBot:
    """Simulated border inspector recording verdicts."""

    actor: Actor = field(
        default_factory=lambda: Actor(
            role=PartyRole.INSPECTOR,
            name="Border inspector",
            organisation="AZ Border Inspection Service",
        )
    )

    async def record_verdict(
        self, svc: EscrowService, contract_id: str, verdict: str, notes: str
    ) -> EscrowContract:
        contract = await svc.release_contract(contract_id, verdict=verdict, notes=notes, actor=self.actor)
        logger.info("INSPECTOR: verdict recorded", contract_id=contract_id, verdict=verdict)
        return contract


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


def print_contract(contract: EscrowContract) -> None:
    amounts = contract.amounts
    print(f"  Status: {contract.status}")
    print(f"  Amount: {amounts.amount} {amounts.currency}")
    print(f"  Fee:    {amounts.fee_amount}   Net: {amounts.net_amount}")
    print(f"  Inspection: {contract.inspection.result} (required={contract.inspection.required})")


def print_timeline(contract: EscrowContract) -> None:
    """Print the milestone timeline for a contract."""
    print("\n  Timeline:")
    for i, milestone in enumerate(sort_by_date(contract.milestones), 1):
        who = milestone.actor.name if milestone.actor else "-"
        print(f"    {i}. [{milestone.type}] {milestone.title} (by {who})")
    print()


def check(condition: bool, message: str) -> None:
    if not condition:
        raise SystemExit(f"  FAILED: {message}")
    print(f"  ok: {message}")


# ===========================================================================
# Scenarios
# ===========================================================================
async def scenario_a_open_escrow() -> None:
    """Buyer opens a 1000 USD escrow."""
    banner("SCENARIO A: Open escrow")
    svc, _ = await build_service()

    contract = await BuyerBot().open_escrow(svc, "RFQ-1", Decimal("1000"))
    print_contract(contract)
    print_timeline(contract)

    check(str(contract.status) == "awaiting_deposit", "status is awaiting_deposit")
    check(contract.amounts.fee_amount == Decimal("15.00"), "fee is 15.00")
    check(contract.amounts.net_amount == Decimal("985.00"), "net is 985.00")
    check(len(contract.milestones) == 2, "two milestones recorded")


async def scenario_b_deposit_authorized() -> None:
    """Deposit authorized; repeated sync is a no-op."""
    banner("SCENARIO B: Deposit authorized")
    svc, payments = await build_service()
    buyer = BuyerBot()

    section("Step 1: Buyer opens escrow")
    contract = await buyer.open_escrow(svc, "RFQ-2", Decimal("2500.00"))

    section("Step 2: Buyer pays deposit")
    contract = await buyer.pay_deposit(svc, payments, contract)
    print_contract(contract)

    section("Step 3: Second sync")
    again = await svc.sync_contract(contract.id)
    print_timeline(again)

    check(str(again.status) == "funded", "status is funded")
    check(again.milestone_types.count("deposit_received") == 1, "one deposit_received milestone")


async def scenario_c_inspection_passed() -> None:
    """Inspection passes; funds released to the seller."""
    banner("SCENARIO C: Inspection passed")
    svc, payments = await build_service()
    buyer = BuyerBot()

    contract = await buyer.open_escrow(svc, "RFQ-3", Decimal("1000.00"))
    contract = await buyer.pay_deposit(svc, payments, contract)

    section("Inspector records PASSED")
    contract = await InspectorBot().record_verdict(
        svc, contract.id, "passed", "Phytosanitary certificate verified"
    )
    print_contract(contract)
    print_timeline(contract)

    check(str(contract.status) == "released", "status is released")
    check(payments.calls["capture"] == 1, "exactly one capture")
    check(
        [str(t) for t in contract.milestone_types[-3:]]
        == ["inspection_passed", "release_requested", "released"],
        "milestones inspection_passed, release_requested, released",
    )


async def scenario_d_inspection_failed() -> None:
    """Inspection fails; the deposit hold is voided."""
    banner("SCENARIO D: Inspection failed")
    svc, payments = await build_service()
    buyer = BuyerBot()

    contract = await buyer.open_escrow(svc, "RFQ-4", Decimal("1000.00"))
    contract = await buyer.pay_deposit(svc, payments, contract)

    section("Inspector records FAILED")
    contract = await InspectorBot().record_verdict(
        svc, contract.id, "failed", "Residue levels above EU MRL"
    )
    print_contract(contract)
    print_timeline(contract)

    check(str(contract.status) == "refunded", "status is refunded")
    check(payments.calls["cancel_authorization"] == 1, "exactly one cancelAuthorization")


async def scenario_e_release_after_settlement() -> None:
    """A second release is rejected and reports the settled contract."""
    banner("SCENARIO E: Release after settlement")
    svc, payments = await build_service()
    buyer = BuyerBot()
    inspector = InspectorBot()

    contract = await buyer.open_escrow(svc, "RFQ-5", Decimal("1000.00"))
    contract = await buyer.pay_deposit(svc, payments, contract)
    released = await inspector.record_verdict(svc, contract.id, "passed", "OK")
    calls_before = sum(payments.calls.values())

    section("Inspector records PASSED again")
    try:
        await inspector.record_verdict(svc, contract.id, "passed", "Duplicate")
    except AlreadyFinalizedError as exc:
        print(f"  Rejected: {exc.code}")
        check(
            exc.contract.version == released.version and exc.contract.status == released.status,
            "error carries the unchanged contract",
        )
    else:
        raise SystemExit("  FAILED: second release was accepted")

    check(sum(payments.calls.values()) == calls_before, "provider not called")


SCENARIOS = {
    "A": scenario_a_open_escrow,
    "B": scenario_b_deposit_authorized,
    "C": scenario_c_inspection_passed,
    "D": scenario_d_inspection_failed,
    "E": scenario_e_release_after_settlement,
}


async def run_all(use_sqlite: bool = False) -> None:
    """Run all scenarios sequentially."""
    global _use_sqlite
    _use_sqlite = use_sqlite
    try:
        print("\n" + "=" * 70)
        print("  AGROTRUST ESCROW — END-TO-END SIMULATION")
        print(f"  Store: {'SQLite (in-memory)' if use_sqlite else 'in-memory'}")
        print("=" * 70 + "\n")

        for scenario in SCENARIOS.values():
            await scenario()

        print("\n" + "=" * 70)
        print("  ALL SCENARIOS COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")
    finally:
        await shutdown_store()


async def run_scenario(name: str, use_sqlite: bool = False) -> None:
    """Run a specific scenario."""
    global _use_sqlite
    _use_sqlite = use_sqlite
    try:
        scenario = SCENARIOS.get(name.upper())
        if scenario is None:
            print(f"Unknown scenario {name}. Available: {', '.join(SCENARIOS)}")
            return
        await scenario()
    finally:
        await shutdown_store()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="AgroTrust Escrow Simulation")
    parser.add_argument(
        "--scenario",
        default="",
        help="Run a specific scenario (A-E). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use the SQL store on SQLite in-memory instead of the in-memory store.",
    )
    args = parser.parse_args()

    if not args.scenario:
        asyncio.run(run_all(use_sqlite=args.sqlite))
    else:
        asyncio.run(run_scenario(args.scenario, use_sqlite=args.sqlite))
