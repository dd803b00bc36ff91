"""
CivicPulse - Administrative Mandate Models

Purchase-order billing rail for public-sector buyers:
- MandateOrder: order lifecycle (validation, purchase order, acceptance, invoicing)
- MandateSubscription: one-year subscription opened on acceptance
- MandateInvoice: invoice generated from an accepted order
- MandateReminder: dunning and renewal reminders, swept when due
- MandateDocument: uploaded purchase-order/engagement metadata
- MandateActivity: immutable audit trail of every transition
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Enum as SQLEnum, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from civicpulse.database import Base
from civicpulse.models.base import BaseModel, SoftDeleteMixin
from civicpulse.models.billing_enums import (
    ActorType,
    BillingInterval,
    MandateActivityType,
    MandateDocumentType,
    MandateInvoiceStatus,
    MandateOrderSource,
    MandateOrderStatus,
    MandateSubscriptionStatus,
    ReminderType,
)
from civicpulse.utils.dates import utcnow


class MandateOrder(BaseModel, SoftDeleteMixin):
    """
    Purchase-order-backed subscription request.

    ``addons_snapshot`` is the JSON text of the priced add-on lines frozen at
    creation; it is the legal record of what is billed and is never re-priced.
    """

    __tablename__ = "mandate_orders"

    order_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    commande_number: Mapped[Optional[str]] = mapped_column(String(30), unique=True, nullable=True)
    source: Mapped[MandateOrderSource] = mapped_column(
        SQLEnum(MandateOrderSource, values_callable=lambda x: [e.value for e in x]),
        default=MandateOrderSource.MANUAL,
        nullable=False,
    )
    quote_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("quotes.id", ondelete="SET NULL"), nullable=True
    )
    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("plans.id"), nullable=False)

    status: Mapped[MandateOrderStatus] = mapped_column(
        SQLEnum(MandateOrderStatus, values_callable=lambda x: [e.value for e in x]),
        default=MandateOrderStatus.PENDING_VALIDATION,
        nullable=False,
        index=True,
    )
    billing_cycle: Mapped[BillingInterval] = mapped_column(
        SQLEnum(BillingInterval, values_callable=lambda x: [e.value for e in x]),
        default=BillingInterval.YEARLY,
        nullable=False,
    )

    # Amounts
    plan_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    addons_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    addons_snapshot: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    annual_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    final_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Client identity
    client_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    client_siret: Mapped[Optional[str]] = mapped_column(String(14), nullable=True)
    client_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    billing_service: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    accounting_contact_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    accounting_contact_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    accounting_contact_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Public procurement references
    purchase_order_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    engagement_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    service_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    client_validated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    validated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    validated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<MandateOrder(number={self.order_number}, status={self.status.value})>"


class MandateSubscription(BaseModel):
    """One-year subscription; the sole source of truth for active mandate billing."""

    __tablename__ = "mandate_subscriptions"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("mandate_orders.id"), nullable=False)
    plan_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("plans.id"), nullable=False)
    status: Mapped[MandateSubscriptionStatus] = mapped_column(
        SQLEnum(MandateSubscriptionStatus, values_callable=lambda x: [e.value for e in x]),
        default=MandateSubscriptionStatus.ACTIVE,
        nullable=False,
        index=True,
    )

    # [start_date, end_date)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    # Set once; at most one renewal order per subscription
    renewal_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("mandate_orders.id"), nullable=True
    )

    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    activated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class MandateInvoice(BaseModel, SoftDeleteMixin):
    """Invoice (facture) generated from an accepted mandate order."""

    __tablename__ = "mandate_invoices"

    invoice_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("mandate_orders.id"), nullable=False)
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("mandate_subscriptions.id"), nullable=False
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[MandateInvoiceStatus] = mapped_column(
        SQLEnum(MandateInvoiceStatus, values_callable=lambda x: [e.value for e in x]),
        default=MandateInvoiceStatus.DRAFT,
        nullable=False,
    )

    # Amounts mirrored from the order snapshot
    plan_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    addons_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    addons_snapshot: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Client snapshot
    client_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    client_siret: Mapped[Optional[str]] = mapped_column(String(14), nullable=True)
    client_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    billing_service: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    purchase_order_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    engagement_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    service_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Emitter snapshot
    emitter_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    emitter_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    emitter_siret: Mapped[Optional[str]] = mapped_column(String(14), nullable=True)
    emitter_tva: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    emitter_iban: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    emitter_bic: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)

    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    mandated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<MandateInvoice(number={self.invoice_number}, status={self.status.value})>"


class MandateReminder(BaseModel):
    """
    Dunning or renewal reminder. ``sent_at`` null means pending.

    At most one reminder per (subscription_id, reminder_type, reminder_level).
    """

    __tablename__ = "mandate_reminders"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("mandate_subscriptions.id"), nullable=False, index=True
    )
    invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("mandate_invoices.id"), nullable=True, index=True
    )
    reminder_type: Mapped[ReminderType] = mapped_column(
        SQLEnum(ReminderType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    reminder_level: Mapped[int] = mapped_column(Integer, nullable=False)
    scheduled_for: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    email_to: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class MandateDocument(BaseModel):
    """Metadata of an uploaded purchase-order or engagement document."""

    __tablename__ = "mandate_documents"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("mandate_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True
    )
    document_type: Mapped[MandateDocumentType] = mapped_column(
        SQLEnum(MandateDocumentType, values_callable=lambda x: [e.value for e in x]),
        default=MandateDocumentType.PURCHASE_ORDER,
        nullable=False,
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    uploaded_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


class MandateActivity(Base):
    """
    Immutable audit trail row, written in the same transaction as the
    transition it records.
    """

    __tablename__ = "mandate_activities"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True, index=True
    )
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("mandate_orders.id", ondelete="SET NULL"), nullable=True, index=True
    )
    subscription_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("mandate_subscriptions.id", ondelete="SET NULL"), nullable=True
    )
    invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("mandate_invoices.id", ondelete="SET NULL"), nullable=True
    )
    activity_type: Mapped[MandateActivityType] = mapped_column(
        SQLEnum(MandateActivityType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    old_value: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    new_value: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    performed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    performed_by_type: Mapped[ActorType] = mapped_column(
        SQLEnum(ActorType, values_callable=lambda x: [e.value for e in x]),
        default=ActorType.SYSTEM,
        nullable=False,
    )

    # Timestamp (immutable)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<MandateActivity(type={self.activity_type.value}, order={self.order_id})>"
