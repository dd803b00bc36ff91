"""
CivicPulse - Background Tasks Package

Scheduled sweeps and their Celery wrappers.
"""

from civicpulse.tasks.scheduled_tasks import (
    apply_due_billing_changes,
    process_mandate_reminders,
    schedule_renewal_reminders,
    generate_due_renewal_orders,
    TaskRunner,
)

__all__ = [
    "apply_due_billing_changes",
    "process_mandate_reminders",
    "schedule_renewal_reminders",
    "generate_due_renewal_orders",
    "TaskRunner",
]
