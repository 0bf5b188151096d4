"""
Append-only payment event log.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class EventType(str, Enum):
    AUTHORIZATION_CREATED = "authorization_created"
    AUTHORIZATION_PENDING_SETUP = "authorization_pending_setup"
    AUTHORIZATION_CONFIRMED = "authorization_confirmed"
    AUTHORIZATION_CANCELLED = "authorization_cancelled"
    AUTHORIZATION_EXPIRED = "authorization_expired"
    CAPTURE_SCHEDULED = "capture_scheduled"
    CAPTURE_ATTEMPTED = "capture_attempted"
    CAPTURE_SUCCEEDED = "capture_succeeded"
    CAPTURE_FAILED = "capture_failed"
    REFUND_INITIATED = "refund_initiated"
    REFUND_COMPLETED = "refund_completed"
    COMPENSATION_RECORDED = "compensation_recorded"
    JOB_FAILED = "job_failed"
    JOB_EXHAUSTED = "job_exhausted"
    RECONCILIATION_ADJUSTED = "reconciliation_adjusted"
    NOTIFICATION_SENT = "notification_sent"


@dataclass(frozen=True)
class EventLogEntry:
    """One audit row. Frozen: entries are never mutated after insert."""

    event_type: EventType
    authorization_id: Optional[int] = None
    booking_id: Optional[int] = None
    user_id: Optional[int] = None
    success: bool = True
    error_message: Optional[str] = None
    requires_attention: bool = False
    payload: dict[str, Any] = field(default_factory=dict)
    processing_time_ms: Optional[int] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "event_type", EventType(self.event_type))
