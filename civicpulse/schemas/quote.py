"""
CivicPulse - Quote Schemas
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from civicpulse.models.billing_enums import BillingInterval, PaymentMethod, QuoteStatus
from civicpulse.schemas.mandate import AddonQuantity, MandateOrderResponse


class QuoteCreate(BaseModel):
    plan_id: UUID
    client_name: str = Field(..., min_length=1, max_length=255)
    client_email: EmailStr
    client_siret: Optional[str] = Field(None, max_length=14)
    client_address: Optional[str] = None
    billing_interval: BillingInterval = BillingInterval.YEARLY
    tenant_id: Optional[UUID] = None
    addons: List[AddonQuantity] = Field(default_factory=list)


class QuoteAcceptRequest(BaseModel):
    payment_method: PaymentMethod
    accepted_by_name: str = Field(..., min_length=1)
    accepted_by_email: EmailStr


class QuoteRejectRequest(BaseModel):
    reason: Optional[str] = None


class QuoteLineItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    plan_id: Optional[UUID] = None
    addon_id: Optional[UUID] = None
    description: str
    quantity: int
    unit_price: Decimal
    total: Decimal


class QuoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    quote_number: str
    tenant_id: Optional[UUID] = None
    plan_id: UUID
    client_name: str
    client_email: str
    status: QuoteStatus
    billing_interval: BillingInterval
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    valid_until: date
    payment_method: Optional[PaymentMethod] = None
    public_token: str
    sent_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    line_items: List[QuoteLineItemResponse]


class QuoteAcceptResponse(BaseModel):
    quote: QuoteResponse
    order: Optional[MandateOrderResponse] = None
