"""
CivicPulse - Administrative Mandate Router

Mandate orders, purchase-order documents, invoices, renewals and the
operator triggers for the reminder and renewal sweeps.
"""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.database import get_db
from civicpulse.dependencies import get_actor
from civicpulse.schemas.mandate import (
    AttachDocumentRequest,
    CancelInvoiceRequest,
    InvoiceGenerationResponse,
    LinkTenantRequest,
    MandateActivityResponse,
    MandateDocumentResponse,
    MandateInvoiceResponse,
    MandateOrderCreate,
    MandateOrderForTenantCreate,
    MandateOrderResponse,
    MandateReminderResponse,
    MandateSubscriptionResponse,
    MarkPaidRequest,
    RejectOrderRequest,
    ReminderSweepResponse,
    RenewalSweepResponse,
    ValidateOrderRequest,
    ValidateOrderResponse,
)
from civicpulse.services.mandate_invoice_service import MandateInvoiceService
from civicpulse.services.mandate_order_service import MandateOrderService, OrderClient
from civicpulse.services.mandate_state_machine import Actor
from civicpulse.services.renewal_service import RenewalService
from civicpulse.tasks.scheduled_tasks import process_mandate_reminders

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/mandate", tags=["Administrative Mandate"])


# ===========================================
# ORDERS
# ===========================================

@router.post("/orders", response_model=MandateOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    request: MandateOrderCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Create an order; without tenant_id it is a lead awaiting conversion."""
    return await MandateOrderService(db).create_order(
        plan_id=request.plan_id,
        addon_quantities={a.addon_id: a.quantity for a in request.addons},
        actor=actor,
        tenant_id=request.tenant_id,
        quote_id=request.quote_id,
        discount_amount=request.discount_amount,
        source=request.source,
        client=OrderClient(**request.client.model_dump()),
        notes=request.notes,
    )


@router.post("/orders/from-tenant", response_model=MandateOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order_for_tenant(
    request: MandateOrderForTenantCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await MandateOrderService(db).create_order_for_tenant(
        tenant_id=request.tenant_id,
        actor=actor,
        discount_amount=request.discount_amount,
    )


@router.get("/orders/{order_id}", response_model=MandateOrderResponse)
async def get_order(order_id: UUID, db: AsyncSession = Depends(get_db)):
    return await MandateOrderService(db).get_order(order_id)


@router.post("/orders/{order_id}/link-tenant", response_model=MandateOrderResponse)
async def link_tenant(
    order_id: UUID,
    request: LinkTenantRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await MandateOrderService(db).link_tenant(order_id, request.tenant_id, actor)


@router.post(
    "/orders/{order_id}/documents",
    response_model=MandateDocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def attach_document(
    order_id: UUID,
    request: AttachDocumentRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await MandateOrderService(db).attach_document(
        order_id,
        file_name=request.file_name,
        file_url=request.file_url,
        document_type=request.document_type,
        reference=request.reference,
        actor=actor,
    )


@router.get("/orders/{order_id}/documents", response_model=List[MandateDocumentResponse])
async def list_documents(order_id: UUID, db: AsyncSession = Depends(get_db)):
    service = MandateOrderService(db)
    await service.get_order(order_id)
    return await service.list_documents(order_id)


@router.post("/orders/{order_id}/client-validate", response_model=MandateOrderResponse)
async def client_validate(
    order_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await MandateOrderService(db).client_validate(order_id, actor)


@router.post("/orders/{order_id}/validate", response_model=ValidateOrderResponse)
async def validate_order(
    order_id: UUID,
    request: ValidateOrderRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    result = await MandateOrderService(db).validate_order(
        order_id,
        has_purchase_order=request.has_purchase_order,
        actor=actor,
        purchase_order_number=request.purchase_order_number,
    )
    return ValidateOrderResponse(
        order=MandateOrderResponse.model_validate(result.order),
        subscription=(
            MandateSubscriptionResponse.model_validate(result.subscription)
            if result.subscription else None
        ),
    )


@router.post("/orders/{order_id}/reject", response_model=MandateOrderResponse)
async def reject_order(
    order_id: UUID,
    request: RejectOrderRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await MandateOrderService(db).reject_order(order_id, request.reason, actor)


@router.delete("/orders/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    await MandateOrderService(db).soft_delete_order(order_id, actor)


@router.get("/orders/{order_id}/activities", response_model=List[MandateActivityResponse])
async def list_activities(order_id: UUID, db: AsyncSession = Depends(get_db)):
    return await MandateOrderService(db).list_activities(order_id)


# ===========================================
# INVOICES
# ===========================================

@router.post(
    "/orders/{order_id}/invoice",
    response_model=InvoiceGenerationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_invoice(
    order_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = MandateInvoiceService(db)
    invoice = await service.generate_invoice(order_id, actor)
    reminders = await service.list_reminders(invoice.id)
    return InvoiceGenerationResponse(
        invoice=MandateInvoiceResponse.model_validate(invoice),
        reminders=[MandateReminderResponse.model_validate(r) for r in reminders],
    )


@router.get("/invoices/{invoice_id}", response_model=MandateInvoiceResponse)
async def get_invoice(invoice_id: UUID, db: AsyncSession = Depends(get_db)):
    return await MandateInvoiceService(db).get_invoice(invoice_id)


@router.post("/invoices/{invoice_id}/send", response_model=MandateInvoiceResponse)
async def send_invoice(
    invoice_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await MandateInvoiceService(db).send_invoice(invoice_id, actor)


@router.post("/invoices/{invoice_id}/mandate", response_model=MandateInvoiceResponse)
async def mark_mandated(
    invoice_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await MandateInvoiceService(db).mark_mandated(invoice_id, actor)


@router.post("/invoices/{invoice_id}/pay", response_model=MandateInvoiceResponse)
async def mark_paid(
    invoice_id: UUID,
    request: MarkPaidRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await MandateInvoiceService(db).mark_paid(invoice_id, actor, request.payment_reference)


@router.post("/invoices/{invoice_id}/cancel", response_model=MandateInvoiceResponse)
async def cancel_invoice(
    invoice_id: UUID,
    request: CancelInvoiceRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await MandateInvoiceService(db).cancel_invoice(invoice_id, actor, request.reason)


@router.get("/invoices/{invoice_id}/reminders", response_model=List[MandateReminderResponse])
async def list_invoice_reminders(invoice_id: UUID, db: AsyncSession = Depends(get_db)):
    service = MandateInvoiceService(db)
    await service.get_invoice(invoice_id)
    return await service.list_reminders(invoice_id)


# ===========================================
# RENEWALS & SWEEPS
# ===========================================

@router.post(
    "/subscriptions/{subscription_id}/renewal-order",
    response_model=MandateOrderResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_renewal_order(
    subscription_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await RenewalService(db).generate_renewal_order(subscription_id, actor)


@router.post("/jobs/process-reminders", response_model=ReminderSweepResponse)
async def run_process_reminders(db: AsyncSession = Depends(get_db)):
    return await process_mandate_reminders(db)


@router.post("/jobs/schedule-renewals", response_model=RenewalSweepResponse)
async def run_schedule_renewals(db: AsyncSession = Depends(get_db)):
    service = RenewalService(db)
    reminders_created = await service.schedule_renewal_reminders()
    orders = await service.generate_due_renewal_orders()
    return RenewalSweepResponse(reminders_created=reminders_created, orders_created=orders["created"])
