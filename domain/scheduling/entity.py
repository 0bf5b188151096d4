"""
Scheduled job entity: one persisted, time-triggered action on an authorization.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException, InvalidStateException


class JobType(str, Enum):
    AUTO_CAPTURE = "auto_capture"
    PAYMENT_EXPIRY = "payment_expiry"
    CONFIRMATION_REMINDER = "confirmation_reminder"
    PAYMENT_REMINDER = "payment_reminder"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Lower runs sooner
DEFAULT_PRIORITY = {
    JobType.AUTO_CAPTURE: 1,
    JobType.PAYMENT_EXPIRY: 3,
    JobType.CONFIRMATION_REMINDER: 5,
    JobType.PAYMENT_REMINDER: 5,
}

DEFAULT_MAX_ATTEMPTS = 3
BACKOFF_BASE_MINUTES = 5
BACKOFF_CAP_MINUTES = 60


def backoff_delay(attempts: int, *, base_minutes: int = BACKOFF_BASE_MINUTES,
                  cap_minutes: int = BACKOFF_CAP_MINUTES) -> timedelta:
    """min(cap, 2^attempts * base) minutes; non-decreasing in ``attempts``."""
    if attempts < 0:
        raise DomainValidationException("attempts must not be negative", field="attempts")
    # Exponent is bounded so huge attempt counters do not build giant ints
    minutes = min(cap_minutes, (2 ** min(attempts, 32)) * base_minutes)
    return timedelta(minutes=minutes)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class ScheduledJob:
    """
    Business rules:
    1. attempts <= max_attempts while pending/running
    2. running always ends in completed, failed->pending (retry) or failed
    3. a retry is always scheduled strictly after the previous attempt
    4. superseded jobs are cancelled, never deleted
    """

    id: Optional[int]
    job_type: JobType
    authorization_id: int
    booking_id: int
    scheduled_at: datetime
    status: JobStatus = JobStatus.PENDING
    priority: int = 5
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    payload: dict[str, Any] = field(default_factory=dict)
    result: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.job_type = JobType(self.job_type)
        self.status = JobStatus(self.status)
        if self.max_attempts < 1:
            raise DomainValidationException("max_attempts must be at least 1", field="max_attempts")
        for name in ("scheduled_at", "started_at", "executed_at", "cancelled_at", "created_at", "updated_at"):
            setattr(self, name, _ensure_utc(getattr(self, name)))
        if self.payload is None:
            self.payload = {}

    @property
    def can_retry(self) -> bool:
        return self.attempts < self.max_attempts

    def is_due(self, now: datetime) -> bool:
        return self.status == JobStatus.PENDING and self.scheduled_at <= now

    def mark_running(self, now: datetime) -> None:
        if self.status != JobStatus.PENDING:
            raise InvalidStateException(f"job {self.id} is {self.status.value}, not pending",
                                        current_status=self.status.value)
        self.status = JobStatus.RUNNING
        self.attempts += 1
        self.started_at = now
        self.updated_at = now

    def mark_completed(self, result: Optional[dict[str, Any]], now: datetime) -> None:
        if self.status != JobStatus.RUNNING:
            raise InvalidStateException(f"job {self.id} is {self.status.value}, not running",
                                        current_status=self.status.value)
        self.status = JobStatus.COMPLETED
        self.result = result or {}
        self.error_message = None
        self.executed_at = now
        self.updated_at = now

    def mark_failed(self, error: str, now: datetime, *, retryable: bool = True,
                    base_minutes: int = BACKOFF_BASE_MINUTES, cap_minutes: int = BACKOFF_CAP_MINUTES) -> bool:
        """
        Record a failed run. Returns True when the job was put back to pending
        for a retry, False when it is now terminally failed (attempts exhausted
        or the error is not retryable).
        """
        if self.status != JobStatus.RUNNING:
            raise InvalidStateException(f"job {self.id} is {self.status.value}, not running",
                                        current_status=self.status.value)
        self.error_message = error
        self.updated_at = now
        if retryable and self.can_retry:
            self.status = JobStatus.PENDING
            self.scheduled_at = now + backoff_delay(self.attempts, base_minutes=base_minutes,
                                                    cap_minutes=cap_minutes)
            return True
        self.status = JobStatus.FAILED
        self.executed_at = now
        return False

    def cancel(self, reason: Optional[str], now: datetime) -> None:
        """pending -> cancelled. A failed job stays failed so operators still see it."""
        if self.status != JobStatus.PENDING:
            raise InvalidStateException(f"job {self.id} is {self.status.value}, cannot cancel",
                                        current_status=self.status.value)
        self.status = JobStatus.CANCELLED
        self.cancelled_at = now
        self.updated_at = now
        if reason:
            self.result = {**(self.result or {}), "cancel_reason": reason}

    def requeue(self, now: datetime) -> None:
        """Operator retry of a terminally failed job with a fresh attempt budget."""
        if self.status != JobStatus.FAILED:
            raise InvalidStateException(f"job {self.id} is {self.status.value}, not failed",
                                        current_status=self.status.value)
        self.status = JobStatus.PENDING
        self.attempts = 0
        self.scheduled_at = now
        self.executed_at = None
        self.updated_at = now
