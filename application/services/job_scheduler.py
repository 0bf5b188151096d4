"""
Scheduled job runner.

One logical queue serviced by any number of workers. Exclusivity comes from
the conditional claim (pending -> running) in the repository, not from
leader election. Each job's handler runs in its own units of work; the
runner only does the job bookkeeping around it.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from application.services.authorization_service import AuthorizationService
from application.services.configuration_service import PaymentConfigurationService
from application.services.event_recorder import emit, record_event
from application.services.job_queue import JobQueue
from core.logging_config import get_logger, log_context
from domain.audit import EventType
from domain.authorization.entity import AuthorizationStatus, CaptureReason
from domain.authorization.events import CaptureReminder, ConfirmationReminder
from domain.common.exceptions import BusinessException, GatewayRejectedException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.scheduling import JobStatus, JobType, ScheduledJob
from shared.clock import utcnow

logger = get_logger(__name__)

JobHandler = Callable[[ScheduledJob], Awaitable[dict[str, Any]]]


class NonRetryableJobError(Exception):
    """Raised by a handler when retrying cannot change the outcome."""


@dataclass
class RunSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    skipped: int = 0
    claim_lost: int = 0
    by_type: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "retried": self.retried,
            "skipped": self.skipped,
            "claim_lost": self.claim_lost,
            "by_type": dict(self.by_type),
        }


def skipped(reason: str, current_status: Optional[str] = None) -> dict[str, Any]:
    result: dict[str, Any] = {"skipped": True, "reason": reason}
    if current_status is not None:
        result["current_status"] = current_status
    return result


class JobScheduler:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        authorizations: AuthorizationService,
        config: PaymentConfigurationService,
        queue: Optional[JobQueue] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._authorizations = authorizations
        self._config = config
        self._clock = clock
        self._queue = queue or JobQueue(clock=clock)
        self._handlers: dict[JobType, JobHandler] = {
            JobType.AUTO_CAPTURE: self._handle_auto_capture,
            JobType.PAYMENT_EXPIRY: self._handle_expiry,
            JobType.CONFIRMATION_REMINDER: self._handle_confirmation_reminder,
            JobType.PAYMENT_REMINDER: self._handle_payment_reminder,
        }

    # ------------------------------------------------------------------
    # runner
    # ------------------------------------------------------------------

    async def run_due(self, limit: int = 50, job_types: Optional[list[JobType]] = None) -> RunSummary:
        summary = RunSummary()
        now = self._clock()
        async with self._uow_factory(readonly=True) as uow:
            due_ids = await uow.jobs.list_due_ids(now, limit=limit, job_types=job_types)

        for job_id in due_ids:
            async with self._uow_factory() as uow:
                job = await uow.jobs.claim(job_id, self._clock())
            if job is None:
                summary.claim_lost += 1
                continue
            outcome = await self.execute(job)
            summary.processed += 1
            summary.by_type[job.job_type.value] = summary.by_type.get(job.job_type.value, 0) + 1
            if outcome == "completed":
                summary.succeeded += 1
            elif outcome == "skipped":
                summary.succeeded += 1
                summary.skipped += 1
            elif outcome == "retry":
                summary.retried += 1
            else:
                summary.failed += 1

        if summary.processed or summary.claim_lost:
            logger.info("job_run_finished", **summary.to_dict())
        return summary

    async def execute(self, job: ScheduledJob) -> str:
        """Run one claimed job; returns completed, skipped, retry or failed."""
        handler = self._handlers[job.job_type]
        started = time.monotonic()
        with log_context(job_id=job.id, job_type=job.job_type.value,
                         authorization_id=job.authorization_id):
            try:
                result = await handler(job)
            except (GatewayRejectedException, NonRetryableJobError) as exc:
                return await self._fail(job, exc, retryable=False, started=started)
            except BusinessException as exc:
                return await self._fail(job, exc, retryable=True, started=started)
            except Exception as exc:
                logger.error("job_handler_crashed", error=str(exc), exc_info=True)
                return await self._fail(job, exc, retryable=True, started=started)

            async with self._uow_factory() as uow:
                job.mark_completed(result, self._clock())
                await uow.jobs.save(job)
            outcome = "skipped" if result.get("skipped") else "completed"
            logger.info("job_completed", outcome=outcome, attempts=job.attempts,
                        elapsed_ms=int((time.monotonic() - started) * 1000))
            return outcome

    async def _fail(self, job: ScheduledJob, exc: Exception, *, retryable: bool, started: float) -> str:
        message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
        base = await self._config.get_int("retry_backoff_base_minutes")
        cap = await self._config.get_int("retry_backoff_cap_minutes")
        elapsed_ms = int((time.monotonic() - started) * 1000)

        async with self._uow_factory() as uow:
            will_retry = job.mark_failed(message, self._clock(), retryable=retryable,
                                         base_minutes=base, cap_minutes=cap)
            await uow.jobs.save(job)
            payload = {
                "job_id": job.id,
                "job_type": job.job_type.value,
                "attempts": job.attempts,
                "max_attempts": job.max_attempts,
                "error_type": exc.__class__.__name__,
            }
            if will_retry:
                payload["next_attempt_at"] = job.scheduled_at.isoformat()
                await record_event(uow, EventType.JOB_FAILED, success=False, error=message, payload=payload,
                                   processing_time_ms=elapsed_ms, authorization_id=job.authorization_id,
                                   booking_id=job.booking_id)
            else:
                # Background exhaustion has no caller: surface it to operators instead
                await record_event(uow, EventType.JOB_EXHAUSTED, success=False, error=message, payload=payload,
                                   requires_attention=True, processing_time_ms=elapsed_ms,
                                   authorization_id=job.authorization_id, booking_id=job.booking_id)

        if will_retry:
            logger.warning("job_failed_will_retry", attempts=job.attempts, error=message,
                           next_attempt_at=job.scheduled_at.isoformat())
            return "retry"
        logger.error("job_failed_terminal", attempts=job.attempts, error=message, retryable=retryable)
        return "failed"

    # ------------------------------------------------------------------
    # handlers
    # ------------------------------------------------------------------

    async def _handle_auto_capture(self, job: ScheduledJob) -> dict[str, Any]:
        if not await self._config.get_bool("enable_auto_capture"):
            return skipped("auto_capture_disabled")
        authorization = await self._authorizations.get(job.authorization_id)
        status = authorization.status
        if status == AuthorizationStatus.CAPTURED:
            return skipped("already_captured", status.value)
        if status not in (AuthorizationStatus.CONFIRMED, AuthorizationStatus.FAILED):
            return skipped("not_capturable", status.value)
        if authorization.capture_window_elapsed(self._clock()):
            return skipped("capture_window_elapsed", status.value)

        # Job-level retries drive transient failures; declines fail the job at once
        outcome = await self._authorizations.capture(
            authorization.id, CaptureReason.AUTO_SCHEDULED, schedule_retry=False
        )
        return {
            "captured": True,
            "already_captured": outcome.already_captured,
            "transaction_id": outcome.transaction_id,
        }

    async def _handle_expiry(self, job: ScheduledJob) -> dict[str, Any]:
        expiry_type = job.payload.get("expiry_type", "confirmation")
        expired = await self._authorizations.expire(job.authorization_id, expiry_type=expiry_type)
        if expired is None:
            current = await self._authorizations.get(job.authorization_id)
            return skipped("deadline_superseded", current.status.value)
        return {"expired": True, "expiry_type": expiry_type}

    async def _handle_confirmation_reminder(self, job: ScheduledJob) -> dict[str, Any]:
        return await self._remind(job, AuthorizationStatus.PENDING, ConfirmationReminder)

    async def _handle_payment_reminder(self, job: ScheduledJob) -> dict[str, Any]:
        return await self._remind(job, AuthorizationStatus.CONFIRMED, CaptureReminder)

    async def _remind(self, job: ScheduledJob, expected: AuthorizationStatus, event_cls) -> dict[str, Any]:
        async with self._uow_factory() as uow:
            authorization = await uow.authorizations.get_by_id(job.authorization_id)
            if authorization is None or authorization.status != expected:
                return skipped("status_changed", authorization.status.value if authorization else None)
            kind, deadline = authorization.active_deadline()
            await emit(uow, event_cls(
                authorization_id=authorization.id,
                booking_id=authorization.booking_id,
                amount_cents=authorization.amount_cents,
                currency=authorization.currency,
            ), extra={"deadline_type": kind, "deadline": deadline.isoformat(),
                      "auto_capture_at": authorization.auto_capture_at.isoformat()
                      if authorization.auto_capture_at else None})
        return {"reminded": True, "deadline_type": kind}

    # ------------------------------------------------------------------
    # maintenance
    # ------------------------------------------------------------------

    async def recover_stuck_jobs(self, threshold_minutes: int = 30) -> int:
        """Running longer than the threshold means the worker died; treat as a failed attempt."""
        now = self._clock()
        base = await self._config.get_int("retry_backoff_base_minutes")
        cap = await self._config.get_int("retry_backoff_cap_minutes")
        recovered = 0
        async with self._uow_factory() as uow:
            for job in await uow.jobs.list_stuck_running(now - timedelta(minutes=threshold_minutes)):
                will_retry = job.mark_failed("worker did not finish the job", now,
                                             base_minutes=base, cap_minutes=cap)
                await uow.jobs.save(job)
                await record_event(
                    uow,
                    EventType.JOB_FAILED if will_retry else EventType.JOB_EXHAUSTED,
                    success=False,
                    error="stuck in running",
                    requires_attention=not will_retry,
                    payload={"job_id": job.id, "job_type": job.job_type.value, "attempts": job.attempts},
                    authorization_id=job.authorization_id,
                    booking_id=job.booking_id,
                )
                recovered += 1
        if recovered:
            logger.warning("stuck_jobs_recovered", count=recovered, threshold_minutes=threshold_minutes)
        return recovered

    async def reschedule_orphans(self, limit: int = 200) -> int:
        """Re-create deadline jobs for live authorizations that have none pending."""
        now = self._clock()
        auto_capture_enabled = await self._config.get_bool("enable_auto_capture")
        created = 0
        async with self._uow_factory() as uow:
            for status in (AuthorizationStatus.PENDING, AuthorizationStatus.PENDING_GATEWAY_SETUP,
                           AuthorizationStatus.CONFIRMED):
                for authorization in await uow.authorizations.list_by_status(status, limit=limit):
                    live = await uow.jobs.list_for_authorization(
                        authorization.id, statuses=[JobStatus.PENDING, JobStatus.RUNNING]
                    )
                    live_types = {job.job_type for job in live}
                    kind, deadline = authorization.active_deadline()
                    if JobType.PAYMENT_EXPIRY not in live_types:
                        # An elapsed deadline gets an immediate expiry run
                        await self._queue.schedule(uow, JobType.PAYMENT_EXPIRY, authorization, max(deadline, now),
                                                   payload={"expiry_type": kind, "rescheduled": True})
                        created += 1
                    if (
                        status == AuthorizationStatus.CONFIRMED
                        and authorization.auto_capture_at is not None
                        and JobType.AUTO_CAPTURE not in live_types
                        and not authorization.capture_window_elapsed(now)
                        and auto_capture_enabled
                    ):
                        await self._queue.schedule(uow, JobType.AUTO_CAPTURE, authorization,
                                                   max(authorization.auto_capture_at, now),
                                                   payload={"rescheduled": True})
                        created += 1
        if created:
            logger.warning("orphan_jobs_rescheduled", count=created)
        return created

    async def retry_failed_jobs(self, limit: int = 100) -> int:
        now = self._clock()
        requeued = 0
        async with self._uow_factory() as uow:
            for job in await uow.jobs.list_failed(limit=limit):
                job.requeue(now)
                await uow.jobs.save(job)
                requeued += 1
        logger.info("failed_jobs_requeued", count=requeued)
        return requeued

    async def run_maintenance(self, stuck_minutes: int = 30) -> dict[str, int]:
        return {
            "stuck_recovered": await self.recover_stuck_jobs(stuck_minutes),
            "orphans_rescheduled": await self.reschedule_orphans(),
        }

    # ------------------------------------------------------------------
    # statistics
    # ------------------------------------------------------------------

    async def queue_stats(self, overdue_minutes: int = 5) -> dict[str, Any]:
        now = self._clock()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        async with self._uow_factory(readonly=True) as uow:
            by_status = await uow.jobs.count_by_status()
            return {
                "pending": by_status.get(JobStatus.PENDING.value, 0),
                "running": by_status.get(JobStatus.RUNNING.value, 0),
                "completed_today": await uow.jobs.count_finished_since(JobStatus.COMPLETED, start_of_day),
                "failed_today": await uow.jobs.count_finished_since(JobStatus.FAILED, start_of_day),
                "ready": await uow.jobs.count_ready(now),
                "overdue": await uow.jobs.count_overdue(now - timedelta(minutes=overdue_minutes)),
                "by_type": await uow.jobs.count_pending_by_type(),
                "by_status": by_status,
                "upcoming": [
                    {
                        "id": job.id,
                        "job_type": job.job_type.value,
                        "authorization_id": job.authorization_id,
                        "scheduled_at": job.scheduled_at.isoformat(),
                        "priority": job.priority,
                    }
                    for job in await uow.jobs.list_upcoming(now, limit=5)
                ],
            }

    async def performance_metrics(self, hours: int = 24) -> dict[str, Any]:
        since = self._clock() - timedelta(hours=hours)
        async with self._uow_factory(readonly=True) as uow:
            completed = await uow.jobs.count_finished_since(JobStatus.COMPLETED, since)
            failed = await uow.jobs.count_finished_since(JobStatus.FAILED, since)
            latency = await uow.jobs.average_queue_seconds(since)
            exhausted = await uow.events.count_by_type(EventType.JOB_EXHAUSTED, since)
        finished = completed + failed
        return {
            "period_hours": hours,
            "completed": completed,
            "failed": failed,
            "success_rate": round(completed / finished, 4) if finished else None,
            "average_queue_latency_seconds": round(latency, 2) if latency is not None else None,
            "exhausted_alerts": exhausted,
        }
