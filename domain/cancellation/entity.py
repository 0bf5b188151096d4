"""
Cancellation audit rows and the traveler reliability score.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

MAX_RELIABILITY = 100


class AttemptType(str, Enum):
    BOOKING_CANCEL = "booking_cancel"
    TRIP_CANCEL = "trip_cancel"
    NO_SHOW = "no_show"


@dataclass
class CancellationAttempt:
    """Every cancellation request, allowed or denied; allowed trip_cancel rows feed the rate limit."""

    user_id: int
    attempt_type: AttemptType
    allowed: bool
    booking_id: Optional[int] = None
    trip_id: Optional[int] = None
    bucket: Optional[str] = None
    denial_reason: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.attempt_type = AttemptType(self.attempt_type)


@dataclass
class UserReliability:
    user_id: int
    score: int = MAX_RELIABILITY
    cancellation_count: int = 0
    last_cancellation_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def apply_cancellation_penalty(self, penalty: int, now: datetime) -> None:
        self.score = max(0, self.score - max(penalty, 0))
        self.cancellation_count += 1
        self.last_cancellation_at = now
        self.updated_at = now
