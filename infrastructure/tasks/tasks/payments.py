"""Periodic payment passes driven by Celery beat."""
from __future__ import annotations

from celery import shared_task

from core.settings import payment_settings
from ..utils.base_task import BaseTask
from ..utils.runtime import run_with_services


@shared_task(name="payments.run_due_jobs", bind=True, base=BaseTask)
def run_due_jobs(self, limit: int | None = None) -> dict:
    """Claim and execute due scheduled jobs (capture, expiry, reminders)."""
    batch = limit or payment_settings.scheduler.batch_size

    async def _work(services):
        return (await services.scheduler.run_due(limit=batch)).to_dict()

    return run_with_services(_work)


@shared_task(name="payments.dispatch_notifications", bind=True, base=BaseTask)
def dispatch_notifications(self, limit: int | None = None) -> dict:
    batch = limit or payment_settings.notifications.batch_size

    async def _work(services):
        return (await services.notifications.dispatch_pending(limit=batch)).to_dict()

    return run_with_services(_work)


@shared_task(name="payments.reconcile", bind=True, base=BaseTask)
def reconcile(self, limit: int | None = None) -> dict:
    """Converge local authorization state with the gateway's view."""
    batch = limit or payment_settings.reconciliation.batch_size

    async def _work(services):
        return (await services.reconciliation.reconcile(limit=batch)).to_dict()

    return run_with_services(_work)


@shared_task(name="payments.queue_maintenance", bind=True, base=BaseTask)
def queue_maintenance(self) -> dict:
    stuck_minutes = payment_settings.scheduler.stuck_job_minutes

    async def _work(services):
        return await services.scheduler.run_maintenance(stuck_minutes=stuck_minutes)

    return run_with_services(_work)
