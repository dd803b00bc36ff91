"""
CivicPulse - Billing Schemas

Request/response models for add-on and plan changes, the ledger and
tenant entitlements.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from civicpulse.models.billing_enums import (
    BillingChangeStatus,
    BillingChangeType,
    BillingInterval,
    LedgerEntryType,
    PaymentMethod,
)


# ===========================================
# REQUEST SCHEMAS
# ===========================================

class AddonChangeRequest(BaseModel):
    """Change the quantity of an add-on."""
    tenant_id: UUID
    addon_id: UUID
    new_quantity: int = Field(..., ge=0, description="Target quantity")
    immediate: bool = Field(False, description="Apply now instead of on the 1st of next month")


class PlanChangeRequest(BaseModel):
    """Swap plans on the 1st of next month."""
    tenant_id: UUID
    new_plan_id: UUID
    new_interval: Optional[BillingInterval] = None


# ===========================================
# RESPONSE SCHEMAS
# ===========================================

class BillingChangeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    change_type: BillingChangeType
    status: BillingChangeStatus
    from_plan_id: Optional[UUID] = None
    to_plan_id: Optional[UUID] = None
    from_billing_interval: Optional[BillingInterval] = None
    to_billing_interval: Optional[BillingInterval] = None
    addon_id: Optional[UUID] = None
    from_quantity: Optional[int] = None
    to_quantity: Optional[int] = None
    effective_date: date
    prorata_credit: Decimal
    prorata_debit: Decimal
    days_in_period: Optional[int] = None
    days_remaining: Optional[int] = None
    payment_method: Optional[PaymentMethod] = None
    applied_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime


class BillingChangeResultResponse(BaseModel):
    change: BillingChangeResponse
    message: str


class LedgerEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    billing_change_id: Optional[UUID] = None
    entry_type: LedgerEntryType
    amount: Decimal
    description: Optional[str] = None
    created_at: datetime


class LedgerResponse(BaseModel):
    tenant_id: UUID
    currency: str
    balance: Decimal
    entries: List[LedgerEntryResponse]


class EffectiveAddonResponse(BaseModel):
    addon_id: UUID
    code: str
    name: str
    quantity: int
    source: str


class EntitlementsResponse(BaseModel):
    tenant_id: UUID
    plan_id: Optional[UUID] = None
    billing_interval: Optional[BillingInterval] = None
    addons: List[EffectiveAddonResponse]


class DueChangesResponse(BaseModel):
    applied: int
    failed: int
