"""
Ports for the booking and notification collaborators.

Both live outside this service; the engine only reads booking snapshots,
reports payment milestones back, and hands notification events off.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import BaseModel


class CollaboratorError(Exception):
    """A collaborator call failed after its own retries."""

    def __init__(self, message: str, *, service: str, status_code: Optional[int] = None) -> None:
        self.service = service
        self.status_code = status_code
        super().__init__(message)


class BookingSnapshot(BaseModel):
    booking_id: int
    trip_id: int
    sender_id: int
    traveler_id: int
    amount_cents: int
    currency: str = "CAD"
    status: str = "accepted"
    trip_departure_at: Optional[datetime] = None
    # Traveler's payable gateway account; None until onboarding completes
    destination_account: Optional[str] = None


class TripSnapshot(BaseModel):
    trip_id: int
    traveler_id: int
    departure_at: Optional[datetime] = None
    status: str = "active"


@runtime_checkable
class BookingCollaborator(Protocol):

    async def get_booking(self, booking_id: int) -> BookingSnapshot: ...

    async def get_trip(self, trip_id: int) -> TripSnapshot: ...

    async def list_trip_bookings(self, trip_id: int) -> list[BookingSnapshot]: ...

    async def mark_payment_authorized(self, booking_id: int, authorization_id: int) -> None: ...

    async def mark_payment_confirmed(self, booking_id: int, authorization_id: int) -> None: ...

    async def mark_payment_captured(self, booking_id: int, authorization_id: int) -> None: ...

    async def mark_payment_expired(self, booking_id: int, authorization_id: int) -> None: ...

    async def mark_payment_cancelled(self, booking_id: int, authorization_id: int) -> None: ...

    async def mark_cancelled(self, booking_id: int, cancellation_type: str, reason: Optional[str]) -> None: ...


@runtime_checkable
class NotificationSink(Protocol):

    async def publish(self, event: dict[str, Any]) -> None: ...
