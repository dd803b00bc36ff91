"""
CivicPulse - Scheduled Sweeps

Each sweep takes a database session and runs one pass. They are triggered
from outside the process (Celery beat, an operator endpoint, or a test),
never by an in-process loop.
"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.services.billing_change_service import BillingChangeService
from civicpulse.services.mandate_email_service import MandateEmailService
from civicpulse.services.mandate_reminder_service import MandateReminderService, ReminderSender
from civicpulse.services.renewal_service import RenewalService

logger = logging.getLogger(__name__)


# ===========================================
# BILLING CHANGES
# ===========================================

async def apply_due_billing_changes(db: AsyncSession, today: Optional[date] = None) -> dict:
    """Apply PENDING billing changes whose effective date has come. Runs daily."""
    return await BillingChangeService(db).apply_due_changes(today)


# ===========================================
# MANDATE REMINDERS
# ===========================================

async def process_mandate_reminders(
    db: AsyncSession,
    sender: Optional[ReminderSender] = None,
    today: Optional[date] = None,
) -> dict:
    """Send due dunning and renewal reminders. Runs hourly."""
    if sender is None:
        sender = MandateEmailService().send_reminder
    return await MandateReminderService(db).process_due_reminders(sender, today)


# ===========================================
# RENEWALS
# ===========================================

async def schedule_renewal_reminders(db: AsyncSession, today: Optional[date] = None) -> dict:
    created = await RenewalService(db).schedule_renewal_reminders(today)
    return {"reminders_created": created}


async def generate_due_renewal_orders(db: AsyncSession, today: Optional[date] = None) -> dict:
    return await RenewalService(db).generate_due_renewal_orders(today)


class TaskRunner:
    """
    Runs sweeps with a fresh session each, for development and one-off
    operator runs without a Celery worker.
    """

    def __init__(self, db_session_factory):
        self.db_session_factory = db_session_factory

    async def run_task(self, task_func, *args, **kwargs):
        async with self.db_session_factory() as db:
            try:
                result = await task_func(db, *args, **kwargs)
                logger.info(f"Task {task_func.__name__} completed: {result}")
                return result
            except Exception as e:
                logger.error(f"Task {task_func.__name__} failed: {e}")
                raise

    async def run_scheduled_tasks(self, today: Optional[date] = None) -> dict:
        results = {}
        tasks = [
            ("apply_due_billing_changes", apply_due_billing_changes),
            ("schedule_renewal_reminders", schedule_renewal_reminders),
            ("generate_due_renewal_orders", generate_due_renewal_orders),
            ("process_mandate_reminders", process_mandate_reminders),
        ]
        for name, task_func in tasks:
            try:
                result = await self.run_task(task_func, today=today)
                results[name] = {"status": "success", "result": result}
            except Exception as e:
                results[name] = {"status": "error", "error": str(e)}
        return results
