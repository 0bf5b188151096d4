"""
Authorization domain events.

Dataclass events record lifecycle facts for downstream handling (notification
outbox). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import ClassVar, Optional
import uuid


@dataclass
class AuthorizationEvent:
    event_type: ClassVar[str] = "authorization_event"

    authorization_id: int
    booking_id: int
    amount_cents: int
    currency: str
    actor_id: Optional[int] = None
    reason: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict:
        data = asdict(self)
        data["type"] = self.event_type
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


@dataclass
class AuthorizationCreated(AuthorizationEvent):
    event_type: ClassVar[str] = "authorization_created"


@dataclass
class AuthorizationAwaitingSetup(AuthorizationEvent):
    event_type: ClassVar[str] = "authorization_pending_setup"


@dataclass
class AuthorizationConfirmed(AuthorizationEvent):
    event_type: ClassVar[str] = "authorization_confirmed"


@dataclass
class PaymentCaptured(AuthorizationEvent):
    event_type: ClassVar[str] = "capture_succeeded"


@dataclass
class CaptureFailed(AuthorizationEvent):
    event_type: ClassVar[str] = "capture_failed"
    attempts: int = 0
    will_retry: bool = False


@dataclass
class AuthorizationCancelled(AuthorizationEvent):
    event_type: ClassVar[str] = "authorization_cancelled"


@dataclass
class AuthorizationExpired(AuthorizationEvent):
    event_type: ClassVar[str] = "authorization_expired"


@dataclass
class ConfirmationReminder(AuthorizationEvent):
    event_type: ClassVar[str] = "confirmation_reminder"


@dataclass
class CaptureReminder(AuthorizationEvent):
    event_type: ClassVar[str] = "payment_reminder"


@dataclass
class RefundIssued(AuthorizationEvent):
    event_type: ClassVar[str] = "refund_issued"
    refund_percentage: int = 0
    compensation_cents: int = 0
    compensation_percentage: int = 0
