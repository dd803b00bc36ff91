"""
CivicPulse - Celery Tasks

Thin Celery wrappers around the scheduled sweeps, each with its own session.
"""

import asyncio
import logging
from typing import Any, Dict

from celery import shared_task

from civicpulse.database import async_session_factory
from civicpulse.tasks import scheduled_tasks

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _with_session(task_func) -> Dict[str, Any]:
    async with async_session_factory() as db:
        return await task_func(db)


# ===========================================
# BILLING TASKS
# ===========================================

@shared_task(name='civicpulse.tasks.celery_tasks.apply_due_billing_changes_task')
def apply_due_billing_changes_task() -> Dict[str, Any]:
    return run_async(_with_session(scheduled_tasks.apply_due_billing_changes))


# ===========================================
# MANDATE TASKS
# ===========================================

@shared_task(name='civicpulse.tasks.celery_tasks.process_mandate_reminders_task')
def process_mandate_reminders_task() -> Dict[str, Any]:
    """Send due dunning and renewal reminders."""
    return run_async(_with_session(scheduled_tasks.process_mandate_reminders))


@shared_task(name='civicpulse.tasks.celery_tasks.schedule_renewal_reminders_task')
def schedule_renewal_reminders_task() -> Dict[str, Any]:
    return run_async(_with_session(scheduled_tasks.schedule_renewal_reminders))


@shared_task(name='civicpulse.tasks.celery_tasks.generate_due_renewal_orders_task')
def generate_due_renewal_orders_task() -> Dict[str, Any]:
    return run_async(_with_session(scheduled_tasks.generate_due_renewal_orders))
