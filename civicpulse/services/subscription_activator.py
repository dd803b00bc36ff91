"""
CivicPulse - Subscription Activator

Opens the one-year mandate subscription when an order is accepted with a
purchase order, and flips the tenant's billing status to ACTIVE. The
tenant's plan assignment is left untouched.
"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.models.billing_enums import (
    BillingStatus,
    MandateActivityType,
    MandateSubscriptionStatus,
    ReminderType,
)
from civicpulse.models.mandate import MandateOrder, MandateReminder, MandateSubscription
from civicpulse.models.tenant import Tenant
from civicpulse.services.mandate_state_machine import Actor, MandateStateMachine
from civicpulse.utils.dates import add_years, utc_today, utcnow

logger = logging.getLogger(__name__)


class SubscriptionActivator:
    """Stages subscription rows in the caller's transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.machine = MandateStateMachine(db)

    async def activate(
        self,
        order: MandateOrder,
        tenant: Tenant,
        actor: Actor,
        today: Optional[date] = None,
    ) -> MandateSubscription:
        today = today or utc_today()
        now = utcnow()

        await self._supersede_active(tenant, actor)

        subscription = MandateSubscription(
            tenant_id=tenant.id,
            order_id=order.id,
            plan_id=order.plan_id,
            status=MandateSubscriptionStatus.ACTIVE,
            start_date=today,
            end_date=add_years(today, 1),
            activated_at=now,
            activated_by=actor.id,
        )
        self.db.add(subscription)
        await self.db.flush()

        old_status = tenant.billing_status
        tenant.billing_status = BillingStatus.ACTIVE

        self.machine.record_activity(
            MandateActivityType.SUBSCRIPTION_ACTIVATED,
            "Mandate subscription activated",
            actor=actor,
            tenant_id=tenant.id,
            order_id=order.id,
            subscription_id=subscription.id,
            description=f"Subscription from {subscription.start_date} to {subscription.end_date}",
            old_value=old_status.value if old_status else None,
            new_value=BillingStatus.ACTIVE.value,
        )
        logger.info(
            f"Mandate subscription {subscription.id} activated for tenant {tenant.id} "
            f"({subscription.start_date} - {subscription.end_date})"
        )
        return subscription

    async def _supersede_active(self, tenant: Tenant, actor: Actor) -> None:
        """
        Cancel the tenant's earlier ACTIVE subscriptions and their pending
        renewal reminders. Dunning on invoices already issued keeps running.
        """
        result = await self.db.execute(
            select(MandateSubscription)
            .where(MandateSubscription.tenant_id == tenant.id)
            .where(MandateSubscription.status == MandateSubscriptionStatus.ACTIVE)
            .with_for_update()
        )
        now = utcnow()
        for previous in result.scalars().all():
            previous.status = MandateSubscriptionStatus.CANCELLED
            previous.cancelled_at = now
            await self.db.execute(
                update(MandateReminder)
                .where(MandateReminder.subscription_id == previous.id)
                .where(MandateReminder.reminder_type == ReminderType.RENEWAL)
                .where(MandateReminder.sent_at.is_(None))
                .values(is_cancelled=True)
                .execution_options(synchronize_session=False)
            )
            self.machine.record_activity(
                MandateActivityType.SUBSCRIPTION_CANCELLED,
                "Mandate subscription superseded",
                actor=actor,
                tenant_id=tenant.id,
                order_id=previous.order_id,
                subscription_id=previous.id,
                old_value=MandateSubscriptionStatus.ACTIVE.value,
                new_value=MandateSubscriptionStatus.CANCELLED.value,
            )
            logger.info(f"Mandate subscription {previous.id} superseded")
