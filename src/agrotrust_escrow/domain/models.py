"""Escrow aggregate and value objects.

The contract is an event-sourced aggregate: ``milestones`` is the append-only
source of truth and ``status`` is its cached projection. All objects are
frozen dataclasses; the lifecycle service computes a complete next-state
object with ``dataclasses.replace`` before writing it back in one conditional
update.

``to_dict`` / ``from_dict`` produce the JSON shapes persisted by the contract
stores. Dates are serialized as ISO-8601 strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from agrotrust_escrow.domain.enums import (
    Currency,
    EscrowStatus,
    InspectionResult,
    MilestoneType,
    PartyRole,
)

# Column widths of the persisted contract; longer values are rejected up front.
REFERENCE_MAX_LENGTH = 64
PRODUCT_NAME_MAX_LENGTH = 255
INCOTERMS_MAX_LENGTH = 16


def utc_now() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: object) -> datetime | None:
    """Parse a datetime or ISO-8601 string; return None when unparsable.

    Naive values are assumed to be UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _iso(value: datetime | str | None) -> str | None:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class Party:
    """A buyer, seller or inspector descriptor. Informational only."""

    role: PartyRole
    name: str
    organisation: str | None = None
    country: str | None = None
    email: str | None = None
    phone: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "role": self.role.value,
                "name": self.name,
                "organisation": self.organisation,
                "country": self.country,
                "email": self.email,
                "phone": self.phone,
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Party:
        return cls(
            role=PartyRole(data.get("role", PartyRole.BUYER)),
            name=data.get("name", ""),
            organisation=data.get("organisation"),
            country=data.get("country"),
            email=data.get("email"),
            phone=data.get("phone"),
        )

    def as_actor(self) -> Actor:
        return Actor(role=self.role, name=self.name, organisation=self.organisation)


@dataclass(frozen=True)
class Actor:
    """Who caused a milestone."""

    role: PartyRole
    name: str
    organisation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {"role": self.role.value, "name": self.name, "organisation": self.organisation}
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Actor:
        return cls(
            role=PartyRole(data.get("role", PartyRole.SYSTEM)),
            name=data.get("name", ""),
            organisation=data.get("organisation"),
        )


SYSTEM_ACTOR = Actor(role=PartyRole.SYSTEM, name="AgroTrust Escrow")


@dataclass(frozen=True)
class Amounts:
    amount: Decimal
    currency: Currency
    fee_amount: Decimal
    net_amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount": str(self.amount),
            "currency": self.currency.value,
            "fee_amount": str(self.fee_amount),
            "net_amount": str(self.net_amount),
        }


@dataclass(frozen=True)
class Inspection:
    required: bool = True
    provider_name: str | None = None
    location: str | None = None
    scheduled_at: datetime | None = None
    completed_at: datetime | None = None
    result: InspectionResult = InspectionResult.PENDING
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "required": self.required,
                "provider_name": self.provider_name,
                "location": self.location,
                "scheduled_at": _iso(self.scheduled_at),
                "completed_at": _iso(self.completed_at),
                "result": self.result.value,
                "notes": self.notes,
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Inspection:
        if not data:
            return cls()
        return cls(
            required=bool(data.get("required", True)),
            provider_name=data.get("provider_name"),
            location=data.get("location"),
            scheduled_at=parse_timestamp(data.get("scheduled_at")),
            completed_at=parse_timestamp(data.get("completed_at")),
            result=InspectionResult(data.get("result", InspectionResult.PENDING)),
            notes=data.get("notes"),
        )


@dataclass(frozen=True)
class Milestone:
    """One immutable fact in a contract's history.

    ``date`` is normally a datetime; rows written by older clients may carry
    an unparsable string, which is preserved verbatim and sorts last.
    """

    id: str
    type: MilestoneType
    date: datetime | str
    title: str | None = None
    description: str | None = None
    actor: Actor | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "type": self.type.value,
                "date": _iso(self.date),
                "title": self.title,
                "description": self.description,
                "actor": self.actor.to_dict() if self.actor else None,
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Milestone:
        raw_date = data.get("date")
        actor = data.get("actor")
        return cls(
            id=data["id"],
            type=MilestoneType(data["type"]),
            date=parse_timestamp(raw_date) or (raw_date if isinstance(raw_date, str) else ""),
            title=data.get("title"),
            description=data.get("description"),
            actor=Actor.from_dict(actor) if actor else None,
        )


@dataclass(frozen=True)
class EscrowContract:
    """Aggregate root tracking a buyer's conditional payment for one deal."""

    id: str
    rfq_id: str
    amounts: Amounts
    status: EscrowStatus
    inspection: Inspection
    milestones: tuple[Milestone, ...]
    created_at: datetime
    updated_at: datetime
    version: int = 0
    lot_id: str | None = None
    passport_id: str | None = None
    buyer: Party | None = None
    seller: Party | None = None
    product_name: str | None = None
    quantity_kg: Decimal | None = None
    incoterms: str | None = None
    destination_country: str | None = None
    external_payment_ref: str | None = None
    checkout_url: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def milestone_types(self) -> list[MilestoneType]:
        return [m.type for m in self.milestones]

    def milestones_as_dicts(self) -> list[dict[str, Any]]:
        return [m.to_dict() for m in self.milestones]

    def __repr__(self) -> str:
        return (
            f"<EscrowContract id={self.id} status={self.status} "
            f"amount={self.amounts.amount} {self.amounts.currency} v{self.version}>"
        )


@dataclass(frozen=True)
class InitEscrowCommand:
    """Typed input to the init operation, built once at the API edge."""

    rfq_id: str
    amount: Decimal
    currency: Currency | str = Currency.USD
    lot_id: str | None = None
    passport_id: str | None = None
    buyer: Party | None = None
    seller: Party | None = None
    product_name: str | None = None
    quantity_kg: Decimal | None = None
    incoterms: str | None = None
    destination_country: str | None = None
    require_inspection: bool = True
    inspection_provider: str | None = None
    inspection_location: str | None = None
    inspection_scheduled_at: datetime | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class InitResult:
    contract: EscrowContract
    checkout_url: str | None = None
    client_secret: str | None = None
