"""
CivicPulse - Administrative Mandate Schemas

Request/response models for mandate orders, invoices, reminders and the
activity log.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from civicpulse.models.billing_enums import (
    ActorType,
    MandateActivityType,
    MandateDocumentType,
    MandateInvoiceStatus,
    MandateOrderSource,
    MandateOrderStatus,
    MandateSubscriptionStatus,
    ReminderType,
)


# ===========================================
# REQUEST SCHEMAS
# ===========================================

class AddonQuantity(BaseModel):
    addon_id: UUID
    quantity: int = Field(..., ge=0)


class ClientDetails(BaseModel):
    """Buyer identity printed on orders and invoices."""
    name: Optional[str] = Field(None, max_length=255)
    siret: Optional[str] = Field(None, max_length=14)
    address: Optional[str] = Field(None, max_length=500)
    billing_service: Optional[str] = None
    accounting_contact_name: Optional[str] = None
    accounting_contact_email: Optional[str] = None
    accounting_contact_phone: Optional[str] = None
    service_code: Optional[str] = None
    engagement_number: Optional[str] = None


class MandateOrderCreate(BaseModel):
    plan_id: UUID
    tenant_id: Optional[UUID] = None
    quote_id: Optional[UUID] = None
    addons: List[AddonQuantity] = Field(default_factory=list)
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    source: MandateOrderSource = MandateOrderSource.MANUAL
    client: ClientDetails = Field(default_factory=ClientDetails)
    notes: Optional[str] = None


class MandateOrderForTenantCreate(BaseModel):
    """Signup path: the order mirrors the tenant's live plan and add-ons."""
    tenant_id: UUID
    discount_amount: Decimal = Field(Decimal("0"), ge=0)


class LinkTenantRequest(BaseModel):
    tenant_id: UUID


class AttachDocumentRequest(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    file_url: str = Field(..., min_length=1, max_length=1000)
    document_type: MandateDocumentType = MandateDocumentType.PURCHASE_ORDER
    reference: Optional[str] = None


class ValidateOrderRequest(BaseModel):
    has_purchase_order: bool
    purchase_order_number: Optional[str] = None


class RejectOrderRequest(BaseModel):
    reason: str


class MarkPaidRequest(BaseModel):
    payment_reference: Optional[str] = None


class CancelInvoiceRequest(BaseModel):
    reason: Optional[str] = None


# ===========================================
# RESPONSE SCHEMAS
# ===========================================

class MandateOrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    commande_number: Optional[str] = None
    source: MandateOrderSource
    quote_id: Optional[UUID] = None
    tenant_id: Optional[UUID] = None
    plan_id: UUID
    status: MandateOrderStatus
    plan_amount: Decimal
    addons_amount: Decimal
    addons_snapshot: str
    annual_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    client_name: Optional[str] = None
    purchase_order_number: Optional[str] = None
    validated_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime


class MandateSubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    order_id: UUID
    plan_id: UUID
    status: MandateSubscriptionStatus
    start_date: date
    end_date: date
    renewal_order_id: Optional[UUID] = None


class ValidateOrderResponse(BaseModel):
    order: MandateOrderResponse
    subscription: Optional[MandateSubscriptionResponse] = None


class MandateDocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    document_type: MandateDocumentType
    file_name: str
    file_url: str
    reference: Optional[str] = None
    uploaded_by: Optional[str] = None
    created_at: datetime


class MandateInvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_number: str
    order_id: UUID
    subscription_id: UUID
    tenant_id: UUID
    status: MandateInvoiceStatus
    plan_amount: Decimal
    addons_amount: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    period_start: date
    period_end: date
    due_date: date
    sent_at: Optional[datetime] = None
    mandated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    created_at: datetime


class MandateReminderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subscription_id: UUID
    invoice_id: Optional[UUID] = None
    reminder_type: ReminderType
    reminder_level: int
    scheduled_for: date
    sent_at: Optional[datetime] = None
    is_cancelled: bool


class InvoiceGenerationResponse(BaseModel):
    invoice: MandateInvoiceResponse
    reminders: List[MandateReminderResponse]


class MandateActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    activity_type: MandateActivityType
    title: str
    description: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    performed_by: Optional[str] = None
    performed_by_type: ActorType
    created_at: datetime


class ReminderSweepResponse(BaseModel):
    due: int
    sent: int
    failed: int
    skipped: int


class RenewalSweepResponse(BaseModel):
    reminders_created: int
    orders_created: int = 0
