"""
CivicPulse - Quote Models

Commercial proposal sent before a subscription exists. Clients open it
through an unauthenticated public token.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Date, DateTime, Enum as SQLEnum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from civicpulse.models.base import BaseModel
from civicpulse.models.billing_enums import BillingInterval, PaymentMethod, QuoteStatus


class Quote(BaseModel):
    """Quote (devis) with plan and add-on line items."""

    __tablename__ = "quotes"

    quote_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("plans.id"), nullable=False)

    # Client
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_email: Mapped[str] = mapped_column(String(255), nullable=False)
    client_siret: Mapped[Optional[str]] = mapped_column(String(14), nullable=True)
    client_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    status: Mapped[QuoteStatus] = mapped_column(
        SQLEnum(QuoteStatus, values_callable=lambda x: [e.value for e in x]),
        default=QuoteStatus.DRAFT,
        nullable=False,
    )
    billing_interval: Mapped[BillingInterval] = mapped_column(
        SQLEnum(BillingInterval, values_callable=lambda x: [e.value for e in x]),
        default=BillingInterval.YEARLY,
        nullable=False,
    )

    # Amounts
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    valid_until: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SQLEnum(PaymentMethod, values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )
    public_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_by_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    accepted_by_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Mandate follow-up, the only field still editable once accepted
    administrative_mandate_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    line_items: Mapped[List["QuoteLineItem"]] = relationship(
        "QuoteLineItem",
        back_populates="quote",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="QuoteLineItem.position",
    )


class QuoteLineItem(BaseModel):
    __tablename__ = "quote_line_items"

    quote_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("quotes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    plan_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("plans.id"), nullable=True)
    addon_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("addons.id"), nullable=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    quote: Mapped["Quote"] = relationship("Quote", back_populates="line_items")
