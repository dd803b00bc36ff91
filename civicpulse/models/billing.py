"""
CivicPulse - Billing Change & Ledger Models

A BillingChange records an intended plan or add-on mutation together with
its proration. The ledger is append-only: rows are inserted once and never
updated or deleted, and the balance is always derived by query.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, DateTime, Enum as SQLEnum, ForeignKey, Integer, Numeric, String, Text, event, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from civicpulse.database import Base
from civicpulse.models.base import BaseModel
from civicpulse.models.billing_enums import (
    BillingChangeStatus,
    BillingChangeType,
    BillingInterval,
    LedgerEntryType,
    PaymentMethod,
)
from civicpulse.utils.dates import utcnow


class BillingChange(BaseModel):
    """Plan swap or add-on quantity change, PENDING until applied."""

    __tablename__ = "billing_changes"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    change_type: Mapped[BillingChangeType] = mapped_column(
        SQLEnum(BillingChangeType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )

    # Plan change
    from_plan_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("plans.id"), nullable=True
    )
    to_plan_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("plans.id"), nullable=True
    )
    from_billing_interval: Mapped[Optional[BillingInterval]] = mapped_column(
        SQLEnum(BillingInterval, values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )
    to_billing_interval: Mapped[Optional[BillingInterval]] = mapped_column(
        SQLEnum(BillingInterval, values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )

    # Add-on change
    addon_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("addons.id"), nullable=True
    )
    from_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    to_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    effective_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    # Proration (both >= 0; a plan upgrade carries both)
    prorata_credit: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    prorata_debit: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    days_in_period: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    days_remaining: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    status: Mapped[BillingChangeStatus] = mapped_column(
        SQLEnum(BillingChangeStatus, values_callable=lambda x: [e.value for e in x]),
        default=BillingChangeStatus.PENDING,
        nullable=False,
        index=True,
    )
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SQLEnum(PaymentMethod, values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )

    applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    requested_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<BillingChange(id={self.id}, type={self.change_type.value}, status={self.status.value})>"


class LedgerEntry(Base):
    """
    Append-only credit/debit row.

    Balance = sum(CREDIT) - sum(DEBIT), derived on every read.
    """

    __tablename__ = "ledger_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    billing_change_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("billing_changes.id"),
        nullable=True,
        index=True,
    )
    entry_type: Mapped[LedgerEntryType] = mapped_column(
        SQLEnum(LedgerEntryType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamp (immutable)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<LedgerEntry(id={self.id}, type={self.entry_type.value}, amount={self.amount})>"


class LedgerImmutableError(RuntimeError):
    """Raised when a flush would update or delete a ledger row."""


@event.listens_for(LedgerEntry, "before_update")
def _refuse_ledger_update(mapper, connection, target):
    raise LedgerImmutableError(f"Ledger entry {target.id} is append-only")


@event.listens_for(LedgerEntry, "before_delete")
def _refuse_ledger_delete(mapper, connection, target):
    raise LedgerImmutableError(f"Ledger entry {target.id} is append-only")
