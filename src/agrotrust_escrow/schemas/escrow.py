"""Pydantic schemas for the Escrow API.

These schemas define the request/response shapes for the REST API and
MCP tools. They are separate from the domain dataclasses to maintain clean
boundaries between the API and the lifecycle engine. JSON field names are
camelCase; snake_case is accepted on input as well.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from agrotrust_escrow.domain.enums import Currency, InspectionVerdict, PartyRole
from agrotrust_escrow.domain.models import (
    INCOTERMS_MAX_LENGTH,
    PRODUCT_NAME_MAX_LENGTH,
    REFERENCE_MAX_LENGTH,
    Actor,
    EscrowContract,
    Inspection,
    InitEscrowCommand,
    Milestone,
    Party,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


_VERDICT_LABELS = {"pass": InspectionVerdict.PASSED, "fail": InspectionVerdict.FAILED}


def normalize_verdict(value: object) -> object:
    """Accept PASS/FAIL labels and any casing of passed/failed."""
    if isinstance(value, str):
        label = value.strip().lower()
        return _VERDICT_LABELS.get(label, label) if label else None
    return value


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class PartyIn(CamelModel):
    """Buyer or seller descriptor."""

    role: PartyRole
    name: str = Field(..., min_length=1, max_length=255)
    organisation: str | None = None
    country: str | None = None
    email: str | None = None
    phone: str | None = None

    def to_domain(self) -> Party:
        return Party(**self.model_dump())


class ActorIn(CamelModel):
    """Who is performing the action (recorded on milestones)."""

    role: PartyRole
    name: str = Field(..., min_length=1, max_length=255)
    organisation: str | None = None

    def to_domain(self) -> Actor:
        return Actor(**self.model_dump())


class InitEscrowRequest(CamelModel):
    """Request body for creating a new escrow contract."""

    rfq_id: str = Field(
        ...,
        min_length=1,
        max_length=REFERENCE_MAX_LENGTH,
        description="Request-for-quotation the deal belongs to",
        examples=["RFQ-2024-0117"],
    )
    amount: Decimal = Field(
        ...,
        description="Gross amount the buyer deposits (positive, at most 2 decimals)",
        examples=["1000.00"],
    )
    currency: Currency = Currency.USD
    lot_id: str | None = Field(default=None, max_length=REFERENCE_MAX_LENGTH)
    passport_id: str | None = Field(
        default=None,
        max_length=REFERENCE_MAX_LENGTH,
        description="Produce passport (traceability record) of the lot",
    )
    buyer: PartyIn | None = None
    seller: PartyIn | None = None
    product_name: str | None = Field(
        default=None, max_length=PRODUCT_NAME_MAX_LENGTH, examples=["Fresh pomegranates"]
    )
    quantity_kg: Decimal | None = Field(default=None, ge=0)
    incoterms: str | None = Field(default=None, max_length=INCOTERMS_MAX_LENGTH, examples=["FCA"])
    destination_country: str | None = Field(default=None, max_length=REFERENCE_MAX_LENGTH)
    require_inspection: bool = Field(
        default=True,
        description="Hold funds until a border inspection verdict is recorded",
    )
    inspection_provider: str | None = None
    inspection_location: str | None = None
    inspection_scheduled_at: datetime | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    idempotency_key: str | None = Field(
        default=None,
        max_length=255,
        description="Optional key; a replayed request returns the originally created contract",
    )

    def to_command(self) -> InitEscrowCommand:
        return InitEscrowCommand(
            rfq_id=self.rfq_id,
            amount=self.amount,
            currency=self.currency,
            lot_id=self.lot_id,
            passport_id=self.passport_id,
            buyer=self.buyer.to_domain() if self.buyer else None,
            seller=self.seller.to_domain() if self.seller else None,
            product_name=self.product_name,
            quantity_kg=self.quantity_kg,
            incoterms=self.incoterms,
            destination_country=self.destination_country,
            require_inspection=self.require_inspection,
            inspection_provider=self.inspection_provider,
            inspection_location=self.inspection_location,
            inspection_scheduled_at=self.inspection_scheduled_at,
            metadata=dict(self.metadata),
        )


class ReleaseRequest(CamelModel):
    """Request body for settling a funded contract."""

    contract_id: str = Field(..., min_length=1)
    verdict: InspectionVerdict | None = Field(
        default=None,
        validation_alias=AliasChoices("verdict", "inspectionResult", "inspection_result"),
        description="Inspection outcome; required when the contract requires inspection",
    )
    notes: str | None = Field(default=None, max_length=5000)
    actor: ActorIn | None = None

    @field_validator("verdict", mode="before")
    @classmethod
    def coerce_verdict(cls, v: object) -> object:
        return normalize_verdict(v)


class StartInspectionRequest(CamelModel):
    provider_name: str | None = None
    location: str | None = None
    scheduled_at: datetime | None = None
    actor: ActorIn | None = None


class CancelRequest(CamelModel):
    reason: str | None = Field(default=None, max_length=2000)
    actor: ActorIn | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class PartyResponse(CamelModel):
    role: str
    name: str
    organisation: str | None = None
    country: str | None = None
    email: str | None = None
    phone: str | None = None


class ActorResponse(CamelModel):
    role: str
    name: str
    organisation: str | None = None


class InspectionResponse(CamelModel):
    required: bool
    provider_name: str | None = None
    location: str | None = None
    scheduled_at: datetime | None = None
    completed_at: datetime | None = None
    result: str
    notes: str | None = None

    @classmethod
    def from_domain(cls, inspection: Inspection) -> InspectionResponse:
        return cls(
            required=inspection.required,
            provider_name=inspection.provider_name,
            location=inspection.location,
            scheduled_at=inspection.scheduled_at,
            completed_at=inspection.completed_at,
            result=inspection.result.value,
            notes=inspection.notes,
        )


class MilestoneResponse(CamelModel):
    """One entry of a contract's timeline."""

    id: str
    type: str
    date: datetime | str
    title: str | None = None
    description: str | None = None
    actor: ActorResponse | None = None

    @classmethod
    def from_domain(cls, milestone: Milestone) -> MilestoneResponse:
        actor = milestone.actor
        return cls(
            id=milestone.id,
            type=milestone.type.value,
            date=milestone.date,
            title=milestone.title,
            description=milestone.description,
            actor=ActorResponse(**actor.to_dict()) if actor else None,
        )


class EscrowResponse(CamelModel):
    """Response schema for an escrow contract."""

    id: str
    rfq_id: str
    lot_id: str | None = None
    passport_id: str | None = None
    buyer: PartyResponse | None = None
    seller: PartyResponse | None = None
    product_name: str | None = None
    quantity_kg: Decimal | None = None
    incoterms: str | None = None
    destination_country: str | None = None
    amount: Decimal
    currency: str
    fee_amount: Decimal
    net_amount: Decimal
    status: str
    inspection: InspectionResponse
    milestones: list[MilestoneResponse]
    external_payment_ref: str | None = None
    checkout_url: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_contract(cls, contract: EscrowContract) -> EscrowResponse:
        return cls(
            id=contract.id,
            rfq_id=contract.rfq_id,
            lot_id=contract.lot_id,
            passport_id=contract.passport_id,
            buyer=PartyResponse(**contract.buyer.to_dict()) if contract.buyer else None,
            seller=PartyResponse(**contract.seller.to_dict()) if contract.seller else None,
            product_name=contract.product_name,
            quantity_kg=contract.quantity_kg,
            incoterms=contract.incoterms,
            destination_country=contract.destination_country,
            amount=contract.amounts.amount,
            currency=contract.amounts.currency.value,
            fee_amount=contract.amounts.fee_amount,
            net_amount=contract.amounts.net_amount,
            status=contract.status.value,
            inspection=InspectionResponse.from_domain(contract.inspection),
            milestones=[MilestoneResponse.from_domain(m) for m in contract.milestones],
            external_payment_ref=contract.external_payment_ref,
            checkout_url=contract.checkout_url,
            version=contract.version,
            created_at=contract.created_at,
            updated_at=contract.updated_at,
        )


class InitEscrowResponse(CamelModel):
    """Created contract plus what the buyer needs to authorize the deposit.

    Redirect providers return ``checkoutUrl``; direct providers return
    ``clientSecret`` for client-side confirmation of the payment intent.
    """

    contract: EscrowResponse
    checkout_url: str | None = None
    client_secret: str | None = None


class ContractEnvelope(CamelModel):
    contract: EscrowResponse


class ContractListResponse(CamelModel):
    contracts: list[EscrowResponse]


class ContractStatusResponse(CamelModel):
    """Lightweight status check response."""

    contract_id: str
    status: str
    version: int
    inspection_required: bool
    inspection_result: str
    allowed_events: list[str] = Field(
        description="State machine events that can fire from the current status"
    )


class ErrorResponse(CamelModel):
    """Body of every error response.

    ``field`` names the offending input of a validation error, ``kind`` tells
    transient from permanent provider failures and ``contract`` is the
    current snapshot on state conflicts.
    """

    error: str
    message: str
    field: str | None = None
    kind: str | None = None
    details: Any | None = None
    contract: EscrowResponse | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    payment_provider: str = "unknown"
