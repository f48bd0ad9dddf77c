"""SQLAlchemy 2.0 ORM model for AgroTrust escrow contracts.

One table:
    escrow_contracts  — one row per contract; the milestone timeline lives in
                        a JSON column alongside the scalar fields.

Design decisions:
    - UUID4 strings as primary keys (portable across PostgreSQL and SQLite).
    - Numeric for money (no floating point rounding errors).
    - JSONB on PostgreSQL, plain JSON elsewhere, for parties, inspection and
      milestones. Milestones are append-only at the application level.
    - ``version`` is the optimistic concurrency token; every accepted write
      is an UPDATE ... WHERE version = :expected.
    - CHECK constraints on status values and a positive amount.
    - Indexes on hot-path query columns (status, rfq_id, created_at).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]
from typing import Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from agrotrust_escrow.domain.enums import EscrowStatus
from agrotrust_escrow.domain.models import (
    INCOTERMS_MAX_LENGTH,
    PRODUCT_NAME_MAX_LENGTH,
    REFERENCE_MAX_LENGTH,
)

JsonColumn = JSON().with_variant(JSONB(), "postgresql")

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in EscrowStatus)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class EscrowContractRow(Base):
    """Persisted form of an EscrowContract aggregate."""

    __tablename__ = "escrow_contracts"

    # --- Primary Key ---
    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # --- References ---
    rfq_id: Mapped[str] = mapped_column(
        String(REFERENCE_MAX_LENGTH),
        nullable=False,
        comment="Request-for-quotation this deal belongs to",
    )
    lot_id: Mapped[str | None] = mapped_column(String(REFERENCE_MAX_LENGTH), nullable=True)
    passport_id: Mapped[str | None] = mapped_column(
        String(REFERENCE_MAX_LENGTH),
        nullable=True,
        comment="Produce passport (traceability record) of the lot",
    )

    # --- Parties & commercial terms ---
    buyer: Mapped[dict[str, Any] | None] = mapped_column(JsonColumn, nullable=True)
    seller: Mapped[dict[str, Any] | None] = mapped_column(JsonColumn, nullable=True)
    product_name: Mapped[str | None] = mapped_column(String(PRODUCT_NAME_MAX_LENGTH), nullable=True)
    quantity_kg: Mapped[Decimal | None] = mapped_column(Numeric(14, 3), nullable=True)
    incoterms: Mapped[str | None] = mapped_column(String(INCOTERMS_MAX_LENGTH), nullable=True)
    destination_country: Mapped[str | None] = mapped_column(String(REFERENCE_MAX_LENGTH), nullable=True)

    # --- Financials ---
    amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        comment="Gross amount the buyer deposits",
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    fee_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        comment="Amount paid out to the seller on release",
    )
    external_payment_ref: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Payment provider intent or checkout session id",
    )
    checkout_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Status (projection of milestones) ---
    status: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        comment="Cached projection of the milestone list",
    )
    inspection: Mapped[dict[str, Any]] = mapped_column(JsonColumn, nullable=False)
    milestones: Mapped[list[dict[str, Any]]] = mapped_column(
        JsonColumn,
        nullable=False,
        comment="Append-only timeline; source of truth for status",
    )

    # --- Concurrency ---
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_escrow_valid_status"),
        CheckConstraint("amount > 0", name="ck_escrow_positive_amount"),
        CheckConstraint(
            "fee_amount >= 0 AND net_amount >= 0 AND net_amount <= amount",
            name="ck_escrow_fee_split",
        ),
        Index("idx_escrow_status", "status"),
        Index("idx_escrow_rfq", "rfq_id"),
        Index("idx_escrow_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowContractRow id={self.id} status={self.status} "
            f"amount={self.amount} {self.currency} v{self.version}>"
        )
