"""
CivicPulse - Mandate Reminder Service

Dunning and renewal reminders are rows with a ``scheduled_for`` date and a
null ``sent_at`` until delivered. A pull-based sweep sends whatever is due.

Delivery is at-least-once: a failed send leaves ``sent_at`` null so the
next sweep retries. The stamp is a conditional UPDATE on ``sent_at IS
NULL``, so two sweeps running at once never both record the same reminder.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.database import atomic
from civicpulse.models.billing_enums import MandateActivityType, ReminderType
from civicpulse.models.mandate import MandateInvoice, MandateReminder, MandateSubscription
from civicpulse.models.tenant import Tenant
from civicpulse.services.mandate_state_machine import MandateStateMachine
from civicpulse.utils.dates import utc_today, utcnow
from civicpulse.utils.error_handling import DuplicateOperationException, ValidationException

logger = logging.getLogger(__name__)


@dataclass
class ReminderDispatch:
    """Everything a sender needs to render one reminder."""
    reminder: MandateReminder
    tenant: Tenant
    subscription: MandateSubscription
    invoice: Optional[MandateInvoice] = None


# Returns True when the email was handed to the transport
ReminderSender = Callable[[ReminderDispatch], Awaitable[bool]]


class MandateReminderService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.machine = MandateStateMachine(db)

    async def find_reminder(
        self,
        subscription_id: UUID,
        reminder_type: ReminderType,
        reminder_level: int,
    ) -> Optional[MandateReminder]:
        result = await self.db.execute(
            select(MandateReminder)
            .where(MandateReminder.subscription_id == subscription_id)
            .where(MandateReminder.reminder_type == reminder_type)
            .where(MandateReminder.reminder_level == reminder_level)
        )
        return result.scalars().first()

    async def schedule_reminder(
        self,
        tenant_id: UUID,
        subscription_id: UUID,
        reminder_type: ReminderType,
        reminder_level: int,
        scheduled_for: date,
        invoice_id: Optional[UUID] = None,
        email_to: Optional[str] = None,
    ) -> MandateReminder:
        """
        Stage a reminder in the caller's transaction.

        Raises DuplicateOperationException when one already exists for the
        same (subscription, type, level).
        """
        if reminder_level < 1:
            raise ValidationException("Reminder level must be 1 or more", field="reminder_level")

        existing = await self.find_reminder(subscription_id, reminder_type, reminder_level)
        if existing is not None:
            raise DuplicateOperationException(
                f"{reminder_type.value} reminder level {reminder_level} already scheduled",
                resource_type="MandateReminder",
                details={"subscription_id": str(subscription_id), "reminder_id": str(existing.id)},
            )

        reminder = MandateReminder(
            tenant_id=tenant_id,
            subscription_id=subscription_id,
            invoice_id=invoice_id,
            reminder_type=reminder_type,
            reminder_level=reminder_level,
            scheduled_for=scheduled_for,
            email_to=email_to,
        )
        self.db.add(reminder)
        await self.db.flush()
        logger.debug(f"{reminder_type.value} reminder level {reminder_level} scheduled for {scheduled_for}")
        return reminder

    async def get_due_reminders(self, today: Optional[date] = None) -> List[MandateReminder]:
        today = today or utc_today()
        result = await self.db.execute(
            select(MandateReminder)
            .where(MandateReminder.scheduled_for <= today)
            .where(MandateReminder.sent_at.is_(None))
            .where(MandateReminder.is_cancelled.is_(False))
            .order_by(MandateReminder.scheduled_for, MandateReminder.reminder_level)
        )
        return list(result.scalars().all())

    async def list_reminders(self, subscription_id: UUID) -> List[MandateReminder]:
        result = await self.db.execute(
            select(MandateReminder)
            .where(MandateReminder.subscription_id == subscription_id)
            .order_by(MandateReminder.reminder_type, MandateReminder.reminder_level)
        )
        return list(result.scalars().all())

    async def _build_dispatch(self, reminder: MandateReminder) -> ReminderDispatch:
        tenant = await self.db.get(Tenant, reminder.tenant_id)
        subscription = await self.db.get(MandateSubscription, reminder.subscription_id)
        invoice = await self.db.get(MandateInvoice, reminder.invoice_id) if reminder.invoice_id else None
        return ReminderDispatch(reminder=reminder, tenant=tenant, subscription=subscription, invoice=invoice)

    async def _stamp_sent(self, reminder: MandateReminder) -> bool:
        """Record delivery unless a concurrent sweep already did."""
        async with atomic(self.db):
            result = await self.db.execute(
                update(MandateReminder)
                .where(MandateReminder.id == reminder.id)
                .where(MandateReminder.sent_at.is_(None))
                .values(sent_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False
            self.machine.record_activity(
                MandateActivityType.REMINDER_SENT,
                f"{reminder.reminder_type.value.capitalize()} reminder {reminder.reminder_level} sent",
                tenant_id=reminder.tenant_id,
                subscription_id=reminder.subscription_id,
                invoice_id=reminder.invoice_id,
                description=f"Sent to {reminder.email_to}" if reminder.email_to else None,
            )
        return True

    async def process_due_reminders(self, sender: ReminderSender, today: Optional[date] = None) -> Dict[str, int]:
        """
        Send every due reminder.

        Returns counts: ``due``, ``sent``, ``failed`` (left pending for
        retry) and ``skipped`` (already stamped by another sweep).
        """
        due = [reminder.id for reminder in await self.get_due_reminders(today)]
        # End the read transaction so each stamp commits on its own
        await self.db.commit()

        sent = failed = skipped = 0
        for reminder_id in due:
            reminder = await self.db.get(MandateReminder, reminder_id, populate_existing=True)
            if reminder is None or reminder.sent_at is not None or reminder.is_cancelled:
                skipped += 1
                continue

            dispatch = await self._build_dispatch(reminder)
            try:
                delivered = await sender(dispatch)
            except Exception as e:
                logger.warning(f"Reminder {reminder.id} delivery raised: {e}")
                delivered = False

            if not delivered:
                failed += 1
                logger.warning(
                    f"{reminder.reminder_type.value} reminder {reminder.id} not delivered, will retry on next sweep"
                )
                continue

            try:
                stamped = await self._stamp_sent(reminder)
            except SQLAlchemyError as e:
                failed += 1
                logger.error(f"Reminder {reminder_id} delivered but not recorded, will resend: {e}")
                continue

            if stamped:
                sent += 1
            else:
                skipped += 1
                logger.info(f"Reminder {reminder_id} already sent by a concurrent sweep")
            await self.db.refresh(reminder)

        logger.info(f"Reminder sweep: {len(due)} due, {sent} sent, {failed} failed, {skipped} skipped")
        return {"due": len(due), "sent": sent, "failed": failed, "skipped": skipped}
