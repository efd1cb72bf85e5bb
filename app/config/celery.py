"""
Celery configuration for the settlement service.

Redis is both the message broker and result backend. Tasks are
auto-discovered from each installed app's tasks.py; escrow.tasks re-exports
the escrow workers.

Periodic tasks:
    - sync-open-payments: poll the gateway for charges still awaiting payment
    - retry-due-transfers: re-drive supplier transfers whose backoff elapsed
    - retry-failed-gateway-events: re-queue failed webhook events
    - cleanup-stuck-gateway-events: reset events stuck in processing

Usage:
    celery -A config worker -l info
    celery -A config beat -l info
"""

import os

from celery import Celery
from celery.schedules import crontab

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()

app.conf.beat_schedule = {
    "sync-open-payments": {
        "task": "escrow.workers.sync_worker.sync_open_payments",
        "schedule": crontab(minute="*/15"),
    },
    "retry-due-transfers": {
        "task": "escrow.workers.transfer_worker.retry_due_transfers",
        "schedule": crontab(minute="*/10"),
    },
    "retry-failed-gateway-events": {
        "task": "escrow.tasks.retry_failed_events",
        "schedule": crontab(minute="*/5"),
    },
    "cleanup-stuck-gateway-events": {
        "task": "escrow.tasks.cleanup_stuck_events",
        "schedule": crontab(minute=0),
    },
}
