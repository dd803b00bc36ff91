"""
CivicPulse - Billing Change Scheduler

Records plan swaps and add-on quantity changes as BillingChange rows with
their proration, and applies them when due.

- Add-on changes take effect immediately (applied and posted to the ledger
  in the same transaction) or on the 1st of next month.
- Plan changes are always deferred to the 1st of next month; their
  proration is recorded but only posted to the ledger when applied.
- A PENDING change can be cancelled until applied. APPLIED is permanent;
  compensating changes are new BillingChange rows.
- Applying is idempotent: a second apply of the same change is a no-op.

The tenant row is locked (SELECT ... FOR UPDATE) around every
read-compute-write so concurrent changes for the same tenant serialize.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.database import atomic
from civicpulse.models.billing import BillingChange, LedgerEntry
from civicpulse.models.billing_enums import (
    BillingChangeStatus,
    BillingChangeType,
    BillingInterval,
    PaymentMethod,
)
from civicpulse.models.tenant import Tenant, TenantAddon
from civicpulse.services.ledger_service import LedgerService
from civicpulse.services.pricing_catalog import PricingCatalog
from civicpulse.services.proration_service import (
    LEGACY_QUANTITY_COLUMNS,
    ProrationService,
    prorate,
    prorate_plan_change,
    resolve_effective_quantity,
)
from civicpulse.utils.dates import first_of_next_month, utc_today, utcnow
from civicpulse.utils.error_handling import (
    AppException,
    InvalidStateException,
    NotFoundException,
    PreconditionFailedException,
    ValidationException,
    validate_quantity,
)

logger = logging.getLogger(__name__)


@dataclass
class BillingChangeResult:
    """A billing change plus a human-readable effective-date message."""
    change: BillingChange
    message: str
    ledger_entries: List[LedgerEntry] = field(default_factory=list)


class BillingChangeService:
    """Schedules, cancels and applies billing changes."""

    def __init__(self, db: AsyncSession, catalog: Optional[PricingCatalog] = None):
        self.db = db
        self._catalog = catalog
        self.ledger = LedgerService(db)
        self.proration = ProrationService(db)

    async def get_catalog(self) -> PricingCatalog:
        if self._catalog is None:
            self._catalog = await PricingCatalog.load(self.db)
        return self._catalog

    # ===========================================
    # LOOKUPS
    # ===========================================

    async def _lock_tenant(self, tenant_id: UUID) -> Tenant:
        result = await self.db.execute(
            select(Tenant).where(Tenant.id == tenant_id).with_for_update()
        )
        tenant = result.scalar_one_or_none()
        if tenant is None:
            raise NotFoundException("Tenant", tenant_id)
        return tenant

    async def _get_addon_row(self, tenant_id: UUID, addon_id: UUID) -> Optional[TenantAddon]:
        result = await self.db.execute(
            select(TenantAddon)
            .where(TenantAddon.tenant_id == tenant_id)
            .where(TenantAddon.addon_id == addon_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def _lock_change(self, change_id: UUID) -> BillingChange:
        result = await self.db.execute(
            select(BillingChange).where(BillingChange.id == change_id).with_for_update()
        )
        change = result.scalar_one_or_none()
        if change is None:
            raise NotFoundException("BillingChange", change_id)
        return change

    async def get_change(self, change_id: UUID) -> BillingChange:
        change = await self.db.get(BillingChange, change_id)
        if change is None:
            raise NotFoundException("BillingChange", change_id)
        return change

    async def list_changes(
        self,
        tenant_id: UUID,
        status: Optional[BillingChangeStatus] = None,
    ) -> List[BillingChange]:
        query = select(BillingChange).where(BillingChange.tenant_id == tenant_id)
        if status is not None:
            query = query.where(BillingChange.status == status)
        result = await self.db.execute(query.order_by(BillingChange.created_at.desc()))
        return list(result.scalars().all())

    @staticmethod
    def _payment_method(tenant: Tenant) -> PaymentMethod:
        if tenant.stripe_subscription_id:
            return PaymentMethod.STRIPE
        return PaymentMethod.ADMINISTRATIVE_MANDATE

    async def _supersede_pending(self, tenant_id: UUID, change_type: BillingChangeType, addon_id: Optional[UUID]) -> int:
        """Cancel earlier PENDING changes for the same add-on (or for the plan)."""
        query = (
            select(BillingChange)
            .where(BillingChange.tenant_id == tenant_id)
            .where(BillingChange.change_type == change_type)
            .where(BillingChange.status == BillingChangeStatus.PENDING)
            .with_for_update()
        )
        if addon_id is not None:
            query = query.where(BillingChange.addon_id == addon_id)
        pending = (await self.db.execute(query)).scalars().all()
        now = utcnow()
        for change in pending:
            change.status = BillingChangeStatus.CANCELLED
            change.cancelled_at = now
            logger.info(f"Billing change {change.id} superseded by a newer {change_type.value}")
        return len(pending)

    # ===========================================
    # ADD-ON CHANGES
    # ===========================================

    async def schedule_addon_change(
        self,
        tenant_id: UUID,
        addon_id: UUID,
        new_quantity: int,
        immediate: bool = False,
        today: Optional[date] = None,
        requested_by: Optional[str] = None,
    ) -> BillingChangeResult:
        """
        Record an add-on quantity change with its proration.

        Immediate changes update the quantity, post the ledger entries and
        are marked APPLIED in the same transaction.
        """
        validate_quantity(new_quantity)
        today = today or utc_today()
        catalog = await self.get_catalog()

        async with atomic(self.db):
            tenant = await self._lock_tenant(tenant_id)
            if tenant.subscription_plan_id is None:
                raise PreconditionFailedException(
                    "Tenant has no subscription plan",
                    rule="addon_change_requires_plan",
                )
            addon = catalog.get_addon(addon_id)
            interval = tenant.billing_interval or BillingInterval.MONTHLY
            unit_price = catalog.addon_unit_price(tenant.subscription_plan_id, addon_id, interval)

            row = await self._get_addon_row(tenant_id, addon_id)
            current = resolve_effective_quantity(tenant, addon.code, row)
            if new_quantity == current:
                raise ValidationException(
                    f"{addon.name} quantity is already {current}",
                    field="new_quantity",
                )

            period = await self.proration.resolve_period(tenant, interval, today)
            proration = prorate(unit_price, period.start, period.end, today, new_quantity - current)

            await self._supersede_pending(tenant_id, BillingChangeType.ADDON_CHANGE, addon_id)

            change = BillingChange(
                tenant_id=tenant_id,
                change_type=BillingChangeType.ADDON_CHANGE,
                addon_id=addon_id,
                from_quantity=current,
                to_quantity=new_quantity,
                from_billing_interval=interval,
                to_billing_interval=interval,
                effective_date=today if immediate else first_of_next_month(today),
                prorata_credit=proration.credit,
                prorata_debit=proration.debit,
                days_in_period=proration.days_in_period,
                days_remaining=proration.days_remaining,
                status=BillingChangeStatus.PENDING,
                payment_method=self._payment_method(tenant),
                requested_by=requested_by,
            )
            self.db.add(change)
            await self.db.flush()

            entries = []
            if immediate:
                entries = await self._apply(change, tenant)

        logger.info(
            f"Add-on change {change.id} for tenant {tenant_id}: {addon.code} {current} -> {new_quantity} "
            f"({'applied' if immediate else 'effective ' + str(change.effective_date)}), "
            f"credit={change.prorata_credit} debit={change.prorata_debit}"
        )
        return BillingChangeResult(change=change, message=self._message(change), ledger_entries=entries)

    # ===========================================
    # PLAN CHANGES
    # ===========================================

    async def schedule_plan_change(
        self,
        tenant_id: UUID,
        new_plan_id: UUID,
        new_interval: Optional[BillingInterval] = None,
        today: Optional[date] = None,
        requested_by: Optional[str] = None,
    ) -> BillingChangeResult:
        """Record a plan swap effective on the 1st of next month."""
        today = today or utc_today()
        catalog = await self.get_catalog()

        async with atomic(self.db):
            tenant = await self._lock_tenant(tenant_id)
            new_plan = catalog.get_plan(new_plan_id)
            if not new_plan.is_active:
                raise ValidationException(f"Plan {new_plan.code} is not available", field="new_plan_id")

            from_interval = tenant.billing_interval or BillingInterval.MONTHLY
            to_interval = new_interval or from_interval
            if tenant.subscription_plan_id == new_plan_id and to_interval == from_interval:
                raise ValidationException(f"Tenant is already on plan {new_plan.code}", field="new_plan_id")

            # Both prices are compared over the current period; a new interval
            # only takes effect from the next cycle.
            if tenant.subscription_plan_id is not None:
                old_price = catalog.plan_price(tenant.subscription_plan_id, from_interval)
            else:
                old_price = 0
            new_price = catalog.plan_price(new_plan_id, from_interval)

            period = await self.proration.resolve_period(tenant, from_interval, today)
            proration = prorate_plan_change(old_price, new_price, period.start, period.end, today)

            await self._supersede_pending(tenant_id, BillingChangeType.PLAN_CHANGE, None)

            change = BillingChange(
                tenant_id=tenant_id,
                change_type=BillingChangeType.PLAN_CHANGE,
                from_plan_id=tenant.subscription_plan_id,
                to_plan_id=new_plan_id,
                from_billing_interval=from_interval,
                to_billing_interval=to_interval,
                effective_date=first_of_next_month(today),
                prorata_credit=proration.credit,
                prorata_debit=proration.debit,
                days_in_period=proration.days_in_period,
                days_remaining=proration.days_remaining,
                status=BillingChangeStatus.PENDING,
                payment_method=self._payment_method(tenant),
                requested_by=requested_by,
            )
            self.db.add(change)
            await self.db.flush()

        logger.info(
            f"Plan change {change.id} for tenant {tenant_id} to {new_plan.code} "
            f"effective {change.effective_date}, credit={change.prorata_credit} debit={change.prorata_debit}"
        )
        return BillingChangeResult(change=change, message=self._message(change))

    # ===========================================
    # CANCEL / APPLY
    # ===========================================

    async def cancel_pending_change(self, change_id: UUID) -> BillingChangeResult:
        async with atomic(self.db):
            change = await self._lock_change(change_id)
            if change.status != BillingChangeStatus.PENDING:
                raise InvalidStateException("BillingChange", change.status.value, "cancel")
            change.status = BillingChangeStatus.CANCELLED
            change.cancelled_at = utcnow()

        logger.info(f"Billing change {change_id} cancelled")
        return BillingChangeResult(change=change, message="Change cancelled.")

    async def apply_billing_change(self, change_id: UUID) -> BillingChangeResult:
        """
        Apply a PENDING change. Already APPLIED changes are returned as-is
        without new ledger entries.
        """
        async with atomic(self.db):
            change = await self._lock_change(change_id)
            if change.status == BillingChangeStatus.APPLIED:
                logger.info(f"Billing change {change_id} already applied, skipping")
                return BillingChangeResult(change=change, message="Change already applied.")
            if change.status == BillingChangeStatus.CANCELLED:
                raise InvalidStateException("BillingChange", change.status.value, "apply")

            tenant = await self._lock_tenant(change.tenant_id)
            entries = await self._apply(change, tenant)

        logger.info(f"Billing change {change_id} applied with {len(entries)} ledger entries")
        return BillingChangeResult(change=change, message=self._message(change), ledger_entries=entries)

    async def _apply(self, change: BillingChange, tenant: Tenant) -> List[LedgerEntry]:
        """Update entitlements, post the ledger and mark APPLIED. No commit."""
        if change.change_type == BillingChangeType.ADDON_CHANGE:
            catalog = await self.get_catalog()
            addon = catalog.get_addon(change.addon_id)
            row = await self._get_addon_row(tenant.id, change.addon_id)
            if row is None:
                row = TenantAddon(tenant_id=tenant.id, addon_id=change.addon_id, quantity=change.to_quantity)
                self.db.add(row)
            else:
                row.quantity = change.to_quantity
            column = LEGACY_QUANTITY_COLUMNS.get(addon.code)
            if column is not None:
                setattr(tenant, column, change.to_quantity)
            description = f"{addon.name} {change.from_quantity} -> {change.to_quantity}"
        else:
            tenant.subscription_plan_id = change.to_plan_id
            if change.to_billing_interval is not None:
                tenant.billing_interval = change.to_billing_interval
            description = "Plan change"

        entries = self.ledger.post_change(change, description)
        change.status = BillingChangeStatus.APPLIED
        change.applied_at = utcnow()
        await self.db.flush()
        return entries

    async def apply_due_changes(self, today: Optional[date] = None) -> Dict[str, Any]:
        """Apply every PENDING change due on or before today, one transaction each."""
        today = today or utc_today()
        result = await self.db.execute(
            select(BillingChange.id)
            .where(BillingChange.status == BillingChangeStatus.PENDING)
            .where(BillingChange.effective_date <= today)
            .order_by(BillingChange.effective_date, BillingChange.created_at)
        )
        change_ids = list(result.scalars().all())
        # End the read transaction so each apply gets its own
        await self.db.commit()

        applied = 0
        failed = 0
        for change_id in change_ids:
            try:
                await self.apply_billing_change(change_id)
                applied += 1
            except AppException as e:
                failed += 1
                logger.error(f"Failed to apply billing change {change_id}: {e.message}")

        logger.info(f"Due billing changes: {applied} applied, {failed} failed")
        return {"applied": applied, "failed": failed}

    @staticmethod
    def _message(change: BillingChange) -> str:
        if change.status == BillingChangeStatus.APPLIED:
            return f"Change applied, effective {change.effective_date.strftime('%d/%m/%Y')}."
        return f"Change will take effect on {change.effective_date.strftime('%d/%m/%Y')}."
