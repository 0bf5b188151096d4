"""
Scheduled job repository - SQLAlchemy implementation
"""
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import NotFoundException
from domain.scheduling.entity import JobStatus, JobType, ScheduledJob
from domain.scheduling.repository import ScheduledJobRepository
from infrastructure.models.scheduling import ScheduledJobModel
from shared.clock import as_utc

logger = get_logger(__name__)


class SQLAlchemyScheduledJobRepository(ScheduledJobRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: ScheduledJobModel) -> ScheduledJob:
        return ScheduledJob(
            id=model.id,
            job_type=JobType(model.job_type),
            authorization_id=model.authorization_id,
            booking_id=model.booking_id,
            scheduled_at=as_utc(model.scheduled_at),
            status=JobStatus(model.status),
            priority=model.priority,
            attempts=model.attempts,
            max_attempts=model.max_attempts,
            payload=dict(model.payload or {}),
            result=dict(model.result) if model.result is not None else None,
            error_message=model.error_message,
            started_at=as_utc(model.started_at),
            executed_at=as_utc(model.executed_at),
            cancelled_at=as_utc(model.cancelled_at),
            created_at=as_utc(model.created_at),
            updated_at=as_utc(model.updated_at),
        )

    async def create(self, job: ScheduledJob) -> ScheduledJob:
        db_job = ScheduledJobModel(
            job_type=job.job_type.value,
            authorization_id=job.authorization_id,
            booking_id=job.booking_id,
            scheduled_at=job.scheduled_at,
            status=job.status.value,
            priority=job.priority,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            payload=job.payload,
            created_at=job.created_at,
            updated_at=job.updated_at or job.created_at,
        )
        self.session.add(db_job)
        await self.session.flush()
        await self.session.refresh(db_job)
        return self._to_entity(db_job)

    async def get_by_id(self, job_id: int) -> Optional[ScheduledJob]:
        result = await self.session.execute(
            select(ScheduledJobModel)
            .where(ScheduledJobModel.id == job_id)
            .execution_options(populate_existing=True)
        )
        db_job = result.scalar_one_or_none()
        return self._to_entity(db_job) if db_job else None

    async def list_due_ids(self, now: datetime, limit: int = 50,
                           job_types: Optional[Iterable[JobType]] = None) -> List[int]:
        query = select(ScheduledJobModel.id).where(
            ScheduledJobModel.status == JobStatus.PENDING.value,
            ScheduledJobModel.scheduled_at <= now,
        )
        if job_types:
            query = query.where(ScheduledJobModel.job_type.in_([JobType(t).value for t in job_types]))
        query = query.order_by(ScheduledJobModel.priority.asc(), ScheduledJobModel.scheduled_at.asc()).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def claim(self, job_id: int, now: datetime) -> Optional[ScheduledJob]:
        # Conditional update: only one worker sees rowcount == 1
        result = await self.session.execute(
            update(ScheduledJobModel)
            .where(ScheduledJobModel.id == job_id, ScheduledJobModel.status == JobStatus.PENDING.value)
            .values(
                status=JobStatus.RUNNING.value,
                attempts=ScheduledJobModel.attempts + 1,
                started_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.debug("job_claim_lost", job_id=job_id)
            return None
        return await self.get_by_id(job_id)

    async def save(self, job: ScheduledJob) -> ScheduledJob:
        result = await self.session.execute(select(ScheduledJobModel).where(ScheduledJobModel.id == job.id))
        db_job = result.scalar_one_or_none()
        if db_job is None:
            raise NotFoundException("scheduled_job", job.id)

        db_job.scheduled_at = job.scheduled_at
        db_job.status = job.status.value
        db_job.priority = job.priority
        db_job.attempts = job.attempts
        db_job.max_attempts = job.max_attempts
        db_job.payload = job.payload
        db_job.result = job.result
        db_job.error_message = job.error_message
        db_job.started_at = job.started_at
        db_job.executed_at = job.executed_at
        db_job.cancelled_at = job.cancelled_at
        db_job.updated_at = job.updated_at

        await self.session.flush()
        return self._to_entity(db_job)

    async def list_for_authorization(self, authorization_id: int,
                                     statuses: Optional[Iterable[JobStatus]] = None) -> List[ScheduledJob]:
        query = select(ScheduledJobModel).where(ScheduledJobModel.authorization_id == authorization_id)
        if statuses:
            query = query.where(ScheduledJobModel.status.in_([JobStatus(s).value for s in statuses]))
        result = await self.session.execute(query.order_by(ScheduledJobModel.scheduled_at.asc()))
        return [self._to_entity(m) for m in result.scalars().all()]

    async def cancel_pending(self, authorization_id: int, *, reason: str, now: datetime,
                             job_types: Optional[Iterable[JobType]] = None) -> int:
        jobs = await self.list_for_authorization(authorization_id, statuses=[JobStatus.PENDING])
        wanted = {JobType(t) for t in job_types} if job_types else None
        cancelled = 0
        for job in jobs:
            if wanted is not None and job.job_type not in wanted:
                continue
            job.cancel(reason, now)
            await self.save(job)
            cancelled += 1
        return cancelled

    async def list_stuck_running(self, started_before: datetime, limit: int = 100) -> List[ScheduledJob]:
        result = await self.session.execute(
            select(ScheduledJobModel)
            .where(
                ScheduledJobModel.status == JobStatus.RUNNING.value,
                ScheduledJobModel.started_at < started_before,
            )
            .order_by(ScheduledJobModel.started_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_failed(self, limit: int = 100) -> List[ScheduledJob]:
        result = await self.session.execute(
            select(ScheduledJobModel)
            .where(ScheduledJobModel.status == JobStatus.FAILED.value)
            .order_by(ScheduledJobModel.executed_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_by_status(self) -> dict[str, int]:
        result = await self.session.execute(
            select(ScheduledJobModel.status, func.count(ScheduledJobModel.id)).group_by(ScheduledJobModel.status)
        )
        return {status: count for status, count in result.all()}

    async def count_pending_by_type(self) -> dict[str, int]:
        result = await self.session.execute(
            select(ScheduledJobModel.job_type, func.count(ScheduledJobModel.id))
            .where(ScheduledJobModel.status == JobStatus.PENDING.value)
            .group_by(ScheduledJobModel.job_type)
        )
        return {job_type: count for job_type, count in result.all()}

    async def count_finished_since(self, status: JobStatus, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count(ScheduledJobModel.id)).where(
                ScheduledJobModel.status == JobStatus(status).value,
                ScheduledJobModel.executed_at >= since,
            )
        )
        return result.scalar_one()

    async def count_ready(self, now: datetime) -> int:
        result = await self.session.execute(
            select(func.count(ScheduledJobModel.id)).where(
                ScheduledJobModel.status == JobStatus.PENDING.value,
                ScheduledJobModel.scheduled_at <= now,
            )
        )
        return result.scalar_one()

    async def count_overdue(self, late_before: datetime) -> int:
        result = await self.session.execute(
            select(func.count(ScheduledJobModel.id)).where(
                ScheduledJobModel.status == JobStatus.PENDING.value,
                ScheduledJobModel.scheduled_at < late_before,
            )
        )
        return result.scalar_one()

    async def list_upcoming(self, now: datetime, limit: int = 5) -> List[ScheduledJob]:
        result = await self.session.execute(
            select(ScheduledJobModel)
            .where(ScheduledJobModel.status == JobStatus.PENDING.value, ScheduledJobModel.scheduled_at > now)
            .order_by(ScheduledJobModel.scheduled_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def average_queue_seconds(self, since: datetime) -> Optional[float]:
        result = await self.session.execute(
            select(ScheduledJobModel.scheduled_at, ScheduledJobModel.started_at).where(
                ScheduledJobModel.started_at.is_not(None),
                ScheduledJobModel.started_at >= since,
            )
        )
        delays = [max((as_utc(started) - as_utc(scheduled)).total_seconds(), 0.0)
                  for scheduled, started in result.all()]
        if not delays:
            return None
        return sum(delays) / len(delays)
