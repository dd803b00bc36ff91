"""
CivicPulse - Quotes Router

Operator endpoints to create and send quotes, and the public endpoints a
client reaches through the quote's token.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.database import get_db
from civicpulse.schemas.mandate import MandateOrderResponse
from civicpulse.schemas.quote import (
    QuoteAcceptRequest,
    QuoteAcceptResponse,
    QuoteCreate,
    QuoteRejectRequest,
    QuoteResponse,
)
from civicpulse.services.quote_service import QuoteService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/quotes", tags=["Quotes"])


class MandateStatusUpdate(BaseModel):
    administrative_mandate_status: str = Field(..., min_length=1, max_length=50)


@router.post("", response_model=QuoteResponse, status_code=status.HTTP_201_CREATED)
async def create_quote(request: QuoteCreate, db: AsyncSession = Depends(get_db)):
    return await QuoteService(db).create_quote(
        plan_id=request.plan_id,
        client_name=request.client_name,
        client_email=request.client_email,
        addon_quantities={a.addon_id: a.quantity for a in request.addons},
        billing_interval=request.billing_interval,
        tenant_id=request.tenant_id,
        client_siret=request.client_siret,
        client_address=request.client_address,
    )


@router.get("/{quote_id}", response_model=QuoteResponse)
async def get_quote(quote_id: UUID, db: AsyncSession = Depends(get_db)):
    return await QuoteService(db).get_quote(quote_id)


@router.post("/{quote_id}/send", response_model=QuoteResponse)
async def send_quote(quote_id: UUID, db: AsyncSession = Depends(get_db)):
    return await QuoteService(db).send_quote(quote_id)


@router.patch("/{quote_id}/mandate-status", response_model=QuoteResponse)
async def update_mandate_status(
    quote_id: UUID,
    request: MandateStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await QuoteService(db).update_mandate_status(quote_id, request.administrative_mandate_status)


# ===========================================
# PUBLIC (token) ENDPOINTS
# ===========================================

@router.get("/public/{token}", response_model=QuoteResponse)
async def get_public_quote(token: str, db: AsyncSession = Depends(get_db)):
    return await QuoteService(db).get_by_token(token)


@router.post("/public/{token}/accept", response_model=QuoteAcceptResponse)
async def accept_quote(token: str, request: QuoteAcceptRequest, db: AsyncSession = Depends(get_db)):
    result = await QuoteService(db).accept_quote(
        token,
        payment_method=request.payment_method,
        accepted_by_name=request.accepted_by_name,
        accepted_by_email=request.accepted_by_email,
    )
    return QuoteAcceptResponse(
        quote=QuoteResponse.model_validate(result.quote),
        order=MandateOrderResponse.model_validate(result.order) if result.order else None,
    )


@router.post("/public/{token}/reject", response_model=QuoteResponse)
async def reject_quote(token: str, request: QuoteRejectRequest, db: AsyncSession = Depends(get_db)):
    return await QuoteService(db).reject_quote(token, request.reason)
