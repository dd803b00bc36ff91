"""
CivicPulse - Mandate Renewal Engine

Renewal reminders at 60/30/15 days before a subscription ends, and at most
one renewal order per subscription. Renewal orders are priced from the
tenant's current live entitlements, not from the original order.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.config import settings
from civicpulse.database import atomic
from civicpulse.models.billing_enums import (
    BillingInterval,
    MandateActivityType,
    MandateOrderSource,
    MandateSubscriptionStatus,
    ReminderType,
)
from civicpulse.models.mandate import MandateOrder, MandateSubscription
from civicpulse.models.tenant import Tenant
from civicpulse.services.entitlements import EntitlementService
from civicpulse.services.mandate_order_service import MandateOrderService, OrderClient
from civicpulse.services.mandate_reminder_service import MandateReminderService
from civicpulse.services.mandate_state_machine import SYSTEM_ACTOR, Actor, MandateStateMachine
from civicpulse.services.pricing_catalog import PricingCatalog
from civicpulse.utils.dates import utc_today
from civicpulse.utils.error_handling import (
    AppException,
    DuplicateOperationException,
    NotFoundException,
    PreconditionFailedException,
)

logger = logging.getLogger(__name__)


class RenewalService:
    def __init__(self, db: AsyncSession, catalog: Optional[PricingCatalog] = None):
        self.db = db
        self._catalog = catalog
        self.machine = MandateStateMachine(db)
        self.reminders = MandateReminderService(db)

    async def get_catalog(self) -> PricingCatalog:
        if self._catalog is None:
            self._catalog = await PricingCatalog.load(self.db)
        return self._catalog

    async def schedule_renewal_reminders(self, today: Optional[date] = None) -> int:
        """
        Create the renewal reminders whose threshold has been reached.

        Safe to re-run: an existing (subscription, RENEWAL, level) reminder
        is left alone. Returns the number of reminders created.
        """
        today = today or utc_today()
        created = 0

        async with atomic(self.db):
            result = await self.db.execute(
                select(MandateSubscription, Tenant)
                .join(Tenant, Tenant.id == MandateSubscription.tenant_id)
                .where(MandateSubscription.status == MandateSubscriptionStatus.ACTIVE)
                .where(MandateSubscription.end_date > today)
            )
            for subscription, tenant in result.all():
                days_remaining = (subscription.end_date - today).days
                for level, threshold in enumerate(settings.renewal_reminder_thresholds_days, start=1):
                    if days_remaining > threshold:
                        continue
                    existing = await self.reminders.find_reminder(subscription.id, ReminderType.RENEWAL, level)
                    if existing is not None:
                        continue
                    await self.reminders.schedule_reminder(
                        tenant_id=tenant.id,
                        subscription_id=subscription.id,
                        reminder_type=ReminderType.RENEWAL,
                        reminder_level=level,
                        scheduled_for=subscription.end_date - timedelta(days=threshold),
                        email_to=tenant.accounting_contact_email or tenant.contact_email,
                    )
                    created += 1

        logger.info(f"Renewal reminders: {created} created")
        return created

    async def generate_renewal_order(
        self,
        subscription_id: UUID,
        actor: Actor = SYSTEM_ACTOR,
        today: Optional[date] = None,
    ) -> MandateOrder:
        """
        Create the single renewal order of a subscription.

        Raises DuplicateOperationException if one was already generated.
        """
        catalog = await self.get_catalog()

        async with atomic(self.db):
            subscription = (await self.db.execute(
                select(MandateSubscription)
                .where(MandateSubscription.id == subscription_id)
                .with_for_update()
            )).scalar_one_or_none()
            if subscription is None:
                raise NotFoundException("MandateSubscription", subscription_id)

            if subscription.renewal_order_id is not None:
                raise DuplicateOperationException(
                    "A renewal order already exists for this subscription",
                    resource_type="MandateSubscription",
                    details={"renewal_order_id": str(subscription.renewal_order_id)},
                )
            if subscription.status != MandateSubscriptionStatus.ACTIVE:
                raise PreconditionFailedException(
                    f"Only active subscriptions can be renewed (status {subscription.status.value})",
                    rule="active_subscription_required",
                )

            tenant = await self.db.get(Tenant, subscription.tenant_id)
            plan_id = tenant.subscription_plan_id or subscription.plan_id
            snapshot = await EntitlementService(self.db, catalog).live_snapshot(tenant, plan_id=plan_id)

            order = await MandateOrderService(self.db, catalog).stage_order(
                plan_id=plan_id,
                plan_amount=catalog.plan_price(plan_id, BillingInterval.YEARLY),
                snapshot=snapshot,
                actor=actor,
                tenant_id=tenant.id,
                discount_amount=Decimal("0"),
                source=MandateOrderSource.RENEWAL,
                client=OrderClient.from_tenant(tenant),
                today=today,
            )
            subscription.renewal_order_id = order.id

            self.machine.record_activity(
                MandateActivityType.RENEWAL_INITIATED,
                "Renewal order created",
                actor=actor,
                tenant_id=tenant.id,
                order_id=order.id,
                subscription_id=subscription.id,
                description=f"Renewal of subscription ending {subscription.end_date}, order {order.order_number}",
            )

        logger.info(f"Renewal order {order.order_number} created for subscription {subscription_id}")
        return order

    async def generate_due_renewal_orders(self, today: Optional[date] = None) -> Dict[str, int]:
        """Renewal orders for active subscriptions ending within the lead window."""
        today = today or utc_today()
        horizon = today + timedelta(days=settings.renewal_order_lead_days)

        result = await self.db.execute(
            select(MandateSubscription.id)
            .where(MandateSubscription.status == MandateSubscriptionStatus.ACTIVE)
            .where(MandateSubscription.renewal_order_id.is_(None))
            .where(MandateSubscription.end_date <= horizon)
            .order_by(MandateSubscription.end_date)
        )
        subscription_ids = list(result.scalars().all())
        await self.db.commit()

        created = 0
        failed = 0
        for subscription_id in subscription_ids:
            try:
                await self.generate_renewal_order(subscription_id, today=today)
                created += 1
            except AppException as e:
                failed += 1
                logger.error(f"Renewal order for subscription {subscription_id} failed: {e.message}")

        logger.info(f"Renewal orders: {created} created, {failed} failed")
        return {"created": created, "failed": failed}
