import json

import httpx
import pytest
import structlog

from application.ports.collaborators import CollaboratorError
from domain.common.exceptions import NotFoundException
from infrastructure.external.api_clients import BookingHttpClient, NotificationHttpClient

BOOKING = {
    "booking_id": 5,
    "trip_id": 9,
    "sender_id": 101,
    "traveler_id": 202,
    "amount_cents": 10000,
    "currency": "CAD",
    "trip_departure_at": "2026-03-12T09:00:00+00:00",
    "destination_account": "acct_traveler",
}


class Recorder:
    """MockTransport handler that replays queued responses."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def booking_client(handler, **kwargs) -> BookingHttpClient:
    return BookingHttpClient("http://booking.test/", retry_delay=0.01, max_retries=2, auth_token="svc-token",
                             transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.asyncio
async def test_get_booking_parses_snapshot():
    handler = Recorder(httpx.Response(200, json=BOOKING))
    async with booking_client(handler) as client:
        snapshot = await client.get_booking(5)

    assert snapshot.booking_id == 5
    assert snapshot.trip_departure_at.year == 2026
    request = handler.requests[0]
    assert request.url.path == "/internal/bookings/5"
    assert request.headers["authorization"] == "Bearer svc-token"


@pytest.mark.asyncio
async def test_missing_booking_maps_to_not_found():
    handler = Recorder(httpx.Response(404, json={"message": "no such booking"}))
    async with booking_client(handler) as client:
        with pytest.raises(NotFoundException):
            await client.get_booking(5)
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_transient_errors_are_retried():
    handler = Recorder(httpx.Response(503), httpx.Response(502), httpx.Response(200, json=BOOKING))
    async with booking_client(handler) as client:
        snapshot = await client.get_booking(5)
    assert snapshot.sender_id == 101
    assert len(handler.requests) == 3


@pytest.mark.asyncio
async def test_persistent_server_error_becomes_collaborator_error():
    handler = Recorder(httpx.Response(500, json={"message": "boom"}))
    async with booking_client(handler) as client:
        with pytest.raises(CollaboratorError) as exc_info:
            await client.get_trip(9)
    assert exc_info.value.status_code == 500
    assert exc_info.value.service == "booking"
    assert len(handler.requests) == 3


@pytest.mark.asyncio
async def test_trip_bookings_accept_paginated_payload():
    handler = Recorder(httpx.Response(200, json={"items": [BOOKING], "total": 1}))
    async with booking_client(handler) as client:
        bookings = await client.list_trip_bookings(9)
    assert [b.booking_id for b in bookings] == [5]


@pytest.mark.asyncio
async def test_payment_milestone_is_posted():
    handler = Recorder(httpx.Response(204))
    async with booking_client(handler) as client:
        await client.mark_payment_captured(5, 77)
        await client.mark_cancelled(5, "sender", "changed plans")

    first, second = handler.requests
    assert first.method == "POST"
    assert first.url.path == "/internal/bookings/5/payment-events"
    assert json.loads(first.content) == {"event": "captured", "authorization_id": 77}
    assert second.url.path == "/internal/bookings/5/cancel"
    assert json.loads(second.content) == {"cancellation_type": "sender", "reason": "changed plans"}


@pytest.mark.asyncio
async def test_request_id_is_propagated():
    handler = Recorder(httpx.Response(200, json=BOOKING))
    structlog.contextvars.bind_contextvars(request_id="req-123")
    try:
        async with booking_client(handler) as client:
            await client.get_booking(5)
    finally:
        structlog.contextvars.unbind_contextvars("request_id")
    assert handler.requests[0].headers["x-request-id"] == "req-123"


@pytest.mark.asyncio
async def test_notification_publish_posts_event():
    handler = Recorder(httpx.Response(202))
    client = NotificationHttpClient("http://notify.test", retry_delay=0.01, max_retries=1,
                                    transport=httpx.MockTransport(handler))
    try:
        await client.publish({"type": "capture_succeeded", "authorization_id": 1})
    finally:
        await client.close()
    assert handler.requests[0].url.path == "/internal/events/payments"
    assert json.loads(handler.requests[0].content)["type"] == "capture_succeeded"


@pytest.mark.asyncio
async def test_notification_rejection_is_not_retried():
    handler = Recorder(httpx.Response(400, json={"message": "bad event"}))
    client = NotificationHttpClient("http://notify.test", retry_delay=0.01, max_retries=3,
                                    transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(CollaboratorError) as exc_info:
            await client.publish({"type": "x"})
    finally:
        await client.close()
    assert exc_info.value.status_code == 400
    assert len(handler.requests) == 1
