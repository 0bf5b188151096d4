"""Scheduled job domain exports."""
from .entity import ScheduledJob, JobType, JobStatus, DEFAULT_PRIORITY, backoff_delay
from .repository import ScheduledJobRepository

__all__ = [
    "ScheduledJob",
    "JobType",
    "JobStatus",
    "DEFAULT_PRIORITY",
    "backoff_delay",
    "ScheduledJobRepository",
]
