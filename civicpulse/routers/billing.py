"""
CivicPulse - Billing Router

Add-on and plan changes, the tenant ledger and live entitlements.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.config import settings
from civicpulse.database import get_db
from civicpulse.models.billing_enums import BillingChangeStatus
from civicpulse.models.tenant import Tenant
from civicpulse.schemas.billing import (
    AddonChangeRequest,
    BillingChangeResponse,
    BillingChangeResultResponse,
    DueChangesResponse,
    EffectiveAddonResponse,
    EntitlementsResponse,
    LedgerEntryResponse,
    LedgerResponse,
    PlanChangeRequest,
)
from civicpulse.dependencies import get_actor
from civicpulse.services.billing_change_service import BillingChangeResult, BillingChangeService
from civicpulse.services.entitlements import EntitlementService
from civicpulse.services.ledger_service import LedgerService
from civicpulse.services.mandate_state_machine import Actor
from civicpulse.services.pricing_catalog import PricingCatalog
from civicpulse.utils.error_handling import NotFoundException

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["Billing"])


def _result(result: BillingChangeResult) -> BillingChangeResultResponse:
    return BillingChangeResultResponse(
        change=BillingChangeResponse.model_validate(result.change),
        message=result.message,
    )


# ===========================================
# CHANGES
# ===========================================

@router.post(
    "/addon-changes",
    response_model=BillingChangeResultResponse,
    status_code=status.HTTP_201_CREATED,
)
async def schedule_addon_change(
    request: AddonChangeRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Change an add-on quantity now or on the 1st of next month."""
    service = BillingChangeService(db)
    result = await service.schedule_addon_change(
        tenant_id=request.tenant_id,
        addon_id=request.addon_id,
        new_quantity=request.new_quantity,
        immediate=request.immediate,
        requested_by=actor.id,
    )
    return _result(result)


@router.post(
    "/plan-changes",
    response_model=BillingChangeResultResponse,
    status_code=status.HTTP_201_CREATED,
)
async def schedule_plan_change(
    request: PlanChangeRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Plan changes always take effect on the 1st of next month."""
    service = BillingChangeService(db)
    result = await service.schedule_plan_change(
        tenant_id=request.tenant_id,
        new_plan_id=request.new_plan_id,
        new_interval=request.new_interval,
        requested_by=actor.id,
    )
    return _result(result)


@router.post("/changes/{change_id}/cancel", response_model=BillingChangeResultResponse)
async def cancel_change(change_id: UUID, db: AsyncSession = Depends(get_db)):
    return _result(await BillingChangeService(db).cancel_pending_change(change_id))


@router.post("/changes/{change_id}/apply", response_model=BillingChangeResultResponse)
async def apply_change(change_id: UUID, db: AsyncSession = Depends(get_db)):
    """Idempotent: applying an applied change returns it unchanged."""
    return _result(await BillingChangeService(db).apply_billing_change(change_id))


@router.get("/tenants/{tenant_id}/changes", response_model=List[BillingChangeResponse])
async def list_changes(
    tenant_id: UUID,
    change_status: Optional[BillingChangeStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
):
    return await BillingChangeService(db).list_changes(tenant_id, change_status)


# ===========================================
# LEDGER & ENTITLEMENTS
# ===========================================

@router.get("/tenants/{tenant_id}/ledger", response_model=LedgerResponse)
async def get_ledger(tenant_id: UUID, db: AsyncSession = Depends(get_db)):
    ledger = LedgerService(db)
    entries = await ledger.list_entries(tenant_id)
    return LedgerResponse(
        tenant_id=tenant_id,
        currency=settings.currency,
        balance=await ledger.get_balance(tenant_id),
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
    )


@router.get("/tenants/{tenant_id}/entitlements", response_model=EntitlementsResponse)
async def get_entitlements(tenant_id: UUID, db: AsyncSession = Depends(get_db)):
    tenant = await db.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundException("Tenant", tenant_id)
    catalog = await PricingCatalog.load(db)
    addons = await EntitlementService(db, catalog).effective_addons(tenant)
    return EntitlementsResponse(
        tenant_id=tenant.id,
        plan_id=tenant.subscription_plan_id,
        billing_interval=tenant.billing_interval,
        addons=[
            EffectiveAddonResponse(
                addon_id=a.addon_id,
                code=a.code,
                name=a.name,
                quantity=a.quantity,
                source=a.source,
            )
            for a in addons
        ],
    )


@router.post("/jobs/apply-due-changes", response_model=DueChangesResponse)
async def run_apply_due_changes(db: AsyncSession = Depends(get_db)):
    """Operator trigger for the daily sweep."""
    return await BillingChangeService(db).apply_due_changes()
