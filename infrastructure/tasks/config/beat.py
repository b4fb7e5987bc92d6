"""Celery beat schedule for periodic payment housekeeping.

Entries follow the Celery docs layout so new periodic jobs can be added by
copying an existing block.
"""
from __future__ import annotations

from celery.schedules import crontab

CELERY_BEAT_SCHEDULE = {
    # Orphans that never matched a local transaction
    "payments-purge-orphan-webhooks": {
        "task": "payments.purge_orphan_webhooks",
        "schedule": crontab(hour=3, minute=0),
    },
    "payments-report-pending-transactions": {
        "task": "payments.report_pending_transactions",
        "schedule": crontab(minute=15),
    },
}
