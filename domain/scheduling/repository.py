"""
Scheduled job repository interface.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from .entity import ScheduledJob, JobType, JobStatus


class ScheduledJobRepository(ABC):

    @abstractmethod
    async def create(self, job: ScheduledJob) -> ScheduledJob:
        pass

    @abstractmethod
    async def get_by_id(self, job_id: int) -> Optional[ScheduledJob]:
        pass

    @abstractmethod
    async def list_due_ids(self, now: datetime, limit: int = 50,
                           job_types: Optional[Iterable[JobType]] = None) -> List[int]:
        """Ids of pending jobs with scheduled_at <= now ordered by (priority, scheduled_at)"""
        pass

    @abstractmethod
    async def claim(self, job_id: int, now: datetime) -> Optional[ScheduledJob]:
        """
        Atomically move one job pending -> running and increment attempts.

        Returns the claimed job, or None if another worker got there first.
        """
        pass

    @abstractmethod
    async def save(self, job: ScheduledJob) -> ScheduledJob:
        pass

    @abstractmethod
    async def list_for_authorization(self, authorization_id: int,
                                     statuses: Optional[Iterable[JobStatus]] = None) -> List[ScheduledJob]:
        pass

    @abstractmethod
    async def cancel_pending(self, authorization_id: int, *, reason: str, now: datetime,
                             job_types: Optional[Iterable[JobType]] = None) -> int:
        """Cancel pending/failed jobs for an authorization; returns how many were cancelled"""
        pass

    @abstractmethod
    async def list_stuck_running(self, started_before: datetime, limit: int = 100) -> List[ScheduledJob]:
        pass

    @abstractmethod
    async def list_failed(self, limit: int = 100) -> List[ScheduledJob]:
        pass

    @abstractmethod
    async def count_by_status(self) -> dict[str, int]:
        pass

    @abstractmethod
    async def count_pending_by_type(self) -> dict[str, int]:
        pass

    @abstractmethod
    async def count_finished_since(self, status: JobStatus, since: datetime) -> int:
        pass

    @abstractmethod
    async def count_ready(self, now: datetime) -> int:
        pass

    @abstractmethod
    async def count_overdue(self, late_before: datetime) -> int:
        pass

    @abstractmethod
    async def list_upcoming(self, now: datetime, limit: int = 5) -> List[ScheduledJob]:
        pass

    @abstractmethod
    async def average_queue_seconds(self, since: datetime) -> Optional[float]:
        """Average delay between scheduled_at and started_at for jobs run since ``since``"""
        pass
