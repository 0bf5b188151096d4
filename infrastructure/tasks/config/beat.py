"""Celery beat schedule for the payment engine's periodic passes.

Every entry drives one idempotent pass; running an extra tick (two beat
instances, a manual trigger) only finds less work to do.
"""
from __future__ import annotations

from core.settings import payment_settings

CELERY_BEAT_SCHEDULE = {
    "payments-run-due-jobs": {
        "task": "payments.run_due_jobs",
        "schedule": float(payment_settings.scheduler.tick_seconds),
        "options": {"queue": "high"},
    },
    "payments-dispatch-notifications": {
        "task": "payments.dispatch_notifications",
        "schedule": 60.0,
        "options": {"queue": "default"},
    },
    "payments-reconcile": {
        "task": "payments.reconcile",
        "schedule": payment_settings.reconciliation.interval_minutes * 60.0,
        "options": {"queue": "low"},
    },
    "payments-queue-maintenance": {
        "task": "payments.queue_maintenance",
        "schedule": payment_settings.scheduler.maintenance_minutes * 60.0,
        "options": {"queue": "low"},
    },
}
