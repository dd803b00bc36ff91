"""
CivicPulse - Pricing Catalog Models

Plans, add-ons and the per-plan add-on access mapping. Prices are whole
currency units (EUR) stored as NUMERIC(12, 2).
"""

import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from civicpulse.models.base import BaseModel


class Plan(BaseModel):
    """Subscription plan."""

    __tablename__ = "plans"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    monthly_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    yearly_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    # Included quantities
    max_admins: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    associations_included: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    communes_included: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Addon(BaseModel):
    """Purchasable add-on with default unit prices."""

    __tablename__ = "addons"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    default_monthly_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    default_yearly_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class PlanAddonAccess(BaseModel):
    """
    Per-plan add-on availability and price override.

    A null override price means the add-on default applies.
    """

    __tablename__ = "plan_addon_access"
    __table_args__ = (
        UniqueConstraint("plan_id", "addon_id", name="uq_plan_addon_access_plan_addon"),
    )

    plan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    addon_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("addons.id", ondelete="CASCADE"),
        nullable=False,
    )
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    monthly_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    yearly_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
