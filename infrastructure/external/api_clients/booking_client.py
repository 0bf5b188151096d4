"""
Booking service client.

The booking service owns bookings and trips; this engine reads snapshots and
reports payment milestones back through its internal REST endpoints.
"""
from typing import Any, Optional

from application.ports.collaborators import BookingSnapshot, CollaboratorError, TripSnapshot
from core.logging_config import get_logger
from domain.common.exceptions import NotFoundException
from .base import APIError, BaseAPIClient, NotFoundError

logger = get_logger(__name__)


class BookingHttpClient(BaseAPIClient):
    """BookingCollaborator over HTTP."""

    service_name = "booking"

    async def _call(self, method: str, endpoint: str, *, resource: str, identifier: int,
                    json_data: Optional[dict[str, Any]] = None) -> Any:
        try:
            if method == "GET":
                response = await self.get(endpoint)
            else:
                response = await self.post(endpoint, json_data=json_data)
        except NotFoundError as exc:
            raise NotFoundException(resource, identifier) from exc
        except APIError as exc:
            raise CollaboratorError(str(exc), service=self.service_name, status_code=exc.status_code) from exc
        return response.json() if response.raw_content else None

    async def get_booking(self, booking_id: int) -> BookingSnapshot:
        data = await self._call("GET", f"/internal/bookings/{booking_id}", resource="booking", identifier=booking_id)
        return BookingSnapshot.model_validate(data)

    async def get_trip(self, trip_id: int) -> TripSnapshot:
        data = await self._call("GET", f"/internal/trips/{trip_id}", resource="trip", identifier=trip_id)
        return TripSnapshot.model_validate(data)

    async def list_trip_bookings(self, trip_id: int) -> list[BookingSnapshot]:
        data = await self._call("GET", f"/internal/trips/{trip_id}/bookings", resource="trip", identifier=trip_id)
        items = data.get("items", []) if isinstance(data, dict) else (data or [])
        return [BookingSnapshot.model_validate(item) for item in items]

    async def _payment_event(self, booking_id: int, authorization_id: int, event: str) -> None:
        await self._call(
            "POST",
            f"/internal/bookings/{booking_id}/payment-events",
            resource="booking",
            identifier=booking_id,
            json_data={"event": event, "authorization_id": authorization_id},
        )
        logger.debug("booking_payment_event_sent", booking_id=booking_id, event=event)

    async def mark_payment_authorized(self, booking_id: int, authorization_id: int) -> None:
        await self._payment_event(booking_id, authorization_id, "authorized")

    async def mark_payment_confirmed(self, booking_id: int, authorization_id: int) -> None:
        await self._payment_event(booking_id, authorization_id, "confirmed")

    async def mark_payment_captured(self, booking_id: int, authorization_id: int) -> None:
        await self._payment_event(booking_id, authorization_id, "captured")

    async def mark_payment_expired(self, booking_id: int, authorization_id: int) -> None:
        await self._payment_event(booking_id, authorization_id, "expired")

    async def mark_payment_cancelled(self, booking_id: int, authorization_id: int) -> None:
        await self._payment_event(booking_id, authorization_id, "cancelled")

    async def mark_cancelled(self, booking_id: int, cancellation_type: str, reason: Optional[str]) -> None:
        await self._call(
            "POST",
            f"/internal/bookings/{booking_id}/cancel",
            resource="booking",
            identifier=booking_id,
            json_data={"cancellation_type": cancellation_type, "reason": reason},
        )
