"""
CivicPulse - Tenant Models

The tenant is the billing subject. Live entitlements are the plan id plus
the add-on quantities held in ``tenant_addons`` (or, for tenants created
before add-on rows existed, the legacy ``purchased_*`` columns).
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum as SQLEnum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from civicpulse.models.base import BaseModel
from civicpulse.models.billing_enums import BillingInterval, BillingStatus


class Tenant(BaseModel):
    """Municipality, inter-municipal body or association."""

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    siret: Mapped[Optional[str]] = mapped_column(String(14), nullable=True)
    contact_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    subscription_plan_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("plans.id", ondelete="SET NULL"),
        nullable=True,
    )
    billing_interval: Mapped[Optional[BillingInterval]] = mapped_column(
        SQLEnum(BillingInterval, values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )
    billing_status: Mapped[BillingStatus] = mapped_column(
        SQLEnum(BillingStatus, values_callable=lambda x: [e.value for e in x]),
        default=BillingStatus.TRIAL,
        nullable=False,
    )
    trial_ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Legacy quantities, used when no tenant_addons row exists
    purchased_admins: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    purchased_associations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    purchased_communes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Card rail (absent for mandate-only tenants)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Mandate billing identity
    billing_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    billing_service: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    accounting_contact_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    accounting_contact_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    accounting_contact_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    service_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    engagement_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


class TenantAddon(BaseModel):
    """Explicit add-on quantity held by a tenant."""

    __tablename__ = "tenant_addons"
    __table_args__ = (
        UniqueConstraint("tenant_id", "addon_id", name="uq_tenant_addons_tenant_addon"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    addon_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("addons.id", ondelete="CASCADE"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
