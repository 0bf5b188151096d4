"""
Enqueue side of the scheduled job subsystem.

Jobs are written into the caller's unit of work so scheduling and the
transition that establishes the deadline commit together.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from core.logging_config import get_logger
from domain.authorization.entity import PaymentAuthorization
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.scheduling import DEFAULT_PRIORITY, JobType, ScheduledJob
from domain.scheduling.entity import DEFAULT_MAX_ATTEMPTS
from shared.clock import utcnow

logger = get_logger(__name__)


class JobQueue:
    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    async def schedule(
        self,
        uow: AbstractUnitOfWork,
        job_type: JobType,
        authorization: PaymentAuthorization,
        scheduled_at: datetime,
        *,
        priority: Optional[int] = None,
        payload: Optional[dict[str, Any]] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> Optional[ScheduledJob]:
        """Enqueue a job; returns None without writing when ``scheduled_at`` is already past."""
        now = self._clock()
        if scheduled_at < now:
            logger.info(
                "job_schedule_skipped_past",
                job_type=JobType(job_type).value,
                authorization_id=authorization.id,
                scheduled_at=scheduled_at.isoformat(),
            )
            return None

        job = ScheduledJob(
            id=None,
            job_type=job_type,
            authorization_id=authorization.id,
            booking_id=authorization.booking_id,
            scheduled_at=scheduled_at,
            priority=DEFAULT_PRIORITY[JobType(job_type)] if priority is None else priority,
            max_attempts=max_attempts,
            payload=payload or {},
            created_at=now,
            updated_at=now,
        )
        saved = await uow.jobs.create(job)
        logger.info(
            "job_scheduled",
            job_id=saved.id,
            job_type=saved.job_type.value,
            authorization_id=authorization.id,
            scheduled_at=scheduled_at.isoformat(),
        )
        return saved

    async def cancel_for_authorization(
        self,
        uow: AbstractUnitOfWork,
        authorization_id: int,
        reason: str,
        job_types: Optional[Iterable[JobType]] = None,
    ) -> int:
        cancelled = await uow.jobs.cancel_pending(
            authorization_id, reason=reason, now=self._clock(), job_types=job_types
        )
        if cancelled:
            logger.info("jobs_cancelled", authorization_id=authorization_id, count=cancelled, reason=reason)
        return cancelled
