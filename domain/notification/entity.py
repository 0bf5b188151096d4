"""
Notification outbox: events written with the state change, delivered later.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

MAX_DELIVERY_ATTEMPTS = 5


class OutboxStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class OutboxMessage:
    event_type: str
    authorization_id: Optional[int]
    booking_id: Optional[int]
    amount_cents: Optional[int] = None
    actor_id: Optional[int] = None
    payload: dict[str, Any] = field(default_factory=dict)
    status: OutboxStatus = OutboxStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = OutboxStatus(self.status)
        if self.payload is None:
            self.payload = {}

    def mark_sent(self, now: datetime) -> None:
        self.status = OutboxStatus.SENT
        self.attempts += 1
        self.sent_at = now
        self.last_error = None

    def mark_attempt_failed(self, error: str, max_attempts: int = MAX_DELIVERY_ATTEMPTS) -> None:
        self.attempts += 1
        self.last_error = error
        if self.attempts >= max_attempts:
            self.status = OutboxStatus.FAILED

    def to_event(self) -> dict[str, Any]:
        """Wire-neutral event handed to the notification sink."""
        return {
            "authorization_id": self.authorization_id,
            "booking_id": self.booking_id,
            "type": self.event_type,
            "actor_id": self.actor_id,
            "amount_cents": self.amount_cents,
            "timestamp": (self.payload or {}).get("occurred_at")
            or (self.created_at.isoformat() if self.created_at else None),
            "payload": self.payload,
        }
