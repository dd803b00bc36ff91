"""
CivicPulse - Celery Configuration

Redis broker and result backend. The beat schedule is the external trigger
for every billing and mandate sweep.
"""

from celery import Celery
from celery.schedules import crontab

from civicpulse.config import settings


celery_app = Celery(
    'civicpulse',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['civicpulse.tasks.celery_tasks'],
)

celery_app.conf.update(
    # Serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone
    timezone=settings.celery_timezone,
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=300,  # 5 minutes
    task_soft_time_limit=240,

    worker_prefetch_multiplier=1,
    result_expires=86400,  # 24 hours

    beat_schedule={
        'apply-due-billing-changes': {
            'task': 'civicpulse.tasks.celery_tasks.apply_due_billing_changes_task',
            'schedule': crontab(hour=0, minute=15),
        },
        'schedule-renewal-reminders': {
            'task': 'civicpulse.tasks.celery_tasks.schedule_renewal_reminders_task',
            'schedule': crontab(hour=6, minute=0),
        },
        'generate-due-renewal-orders': {
            'task': 'civicpulse.tasks.celery_tasks.generate_due_renewal_orders_task',
            'schedule': crontab(hour=6, minute=30),
        },
        # Hourly; a failed send stays pending and is retried here
        'process-mandate-reminders': {
            'task': 'civicpulse.tasks.celery_tasks.process_mandate_reminders_task',
            'schedule': crontab(minute=0),
        },
    },
)

celery_app.conf.task_routes = {
    'civicpulse.tasks.celery_tasks.process_mandate_reminders_task': {'queue': 'email'},
    'civicpulse.tasks.celery_tasks.*': {'queue': 'default'},
}
