"""Pytest bootstrap configuration.

Environment variables are set before any module that reads application
settings is imported. Every test gets its own SQLite file, an in-process
gateway stub, fake booking/notification collaborators and a movable clock.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///./escrowpay-test.db")
os.environ.setdefault("PAYMENT__STRIPE__SECRET_KEY", "sk_test_dummy")

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis

from application.dtos.payments import (
    CANCELED,
    CAPTURABLE,
    CAPTURED,
    REQUIRES_PAYER,
    GatewayAuthorization,
    GatewayAuthorizeRequest,
    GatewayStatus,
)
from application.ports.collaborators import BookingSnapshot, CollaboratorError, TripSnapshot
from domain.common.exceptions import GatewayRejectedException, NotFoundException
from infrastructure.cache import RedisCache
from infrastructure.container import build_payment_services
from infrastructure.database import build_engine, build_session_factory, create_tables
from infrastructure.unit_of_work import make_uow_factory


SENDER_ID = 101
TRAVELER_ID = 202


class FrozenClock:
    """Callable clock that only moves when a test says so."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StubGateway:
    """In-memory manual-capture gateway.

    ``auto_approve`` models the payer finishing card entry right away, so a
    fresh intent is capturable. ``fail_next(op, exc)`` queues an error for
    the next call of that operation.
    """

    provider = "stub"

    def __init__(self, auto_approve: bool = True):
        self.auto_approve = auto_approve
        self.intents: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, Any]] = []
        self._failures: dict[str, list[Exception]] = {}
        self._seq = 0

    def fail_next(self, operation: str, exc: Exception) -> None:
        self._failures.setdefault(operation, []).append(exc)

    def set_status(self, handle: str, status: str, captured: Optional[int] = None) -> None:
        intent = self.intents[handle]
        intent["status"] = status
        if status == CAPTURED:
            intent["captured"] = captured if captured is not None else intent["captured"] or intent["amount"]

    def calls_of(self, operation: str) -> list:
        return [args for name, args in self.calls if name == operation]

    def _maybe_fail(self, operation: str) -> None:
        queued = self._failures.get(operation)
        if queued:
            raise queued.pop(0)

    def _intent(self, handle: str) -> dict[str, Any]:
        intent = self.intents.get(handle)
        if intent is None:
            raise GatewayRejectedException(f"no such intent {handle}", provider=self.provider,
                                           provider_code="resource_missing")
        return intent

    async def authorize(self, req: GatewayAuthorizeRequest) -> GatewayAuthorization:
        self.calls.append(("authorize", req))
        self._maybe_fail("authorize")
        self._seq += 1
        handle = f"pi_stub_{self._seq}"
        status = CAPTURABLE if self.auto_approve else REQUIRES_PAYER
        self.intents[handle] = {"status": status, "amount": req.amount_cents, "captured": 0, "refunded": 0}
        return GatewayAuthorization(handle=handle, status=status, provider=self.provider,
                                    client_secret=f"{handle}_secret", amount_cents=req.amount_cents)

    async def capture(self, handle: str, amount_to_capture_cents: int,
                      idempotency_key: Optional[str] = None) -> GatewayStatus:
        self.calls.append(("capture", (handle, amount_to_capture_cents, idempotency_key)))
        self._maybe_fail("capture")
        intent = self._intent(handle)
        if intent["status"] != CAPTURABLE:
            raise GatewayRejectedException("intent is not capturable", provider=self.provider,
                                           provider_code="payment_intent_unexpected_state")
        intent["status"] = CAPTURED
        intent["captured"] = amount_to_capture_cents
        return GatewayStatus(handle=handle, status=CAPTURED, provider=self.provider,
                             amount_cents=amount_to_capture_cents, reference=f"ch_{handle}")

    async def cancel(self, handle: str, idempotency_key: Optional[str] = None) -> GatewayStatus:
        self.calls.append(("cancel", (handle, idempotency_key)))
        self._maybe_fail("cancel")
        self._intent(handle)["status"] = CANCELED
        return GatewayStatus(handle=handle, status=CANCELED, provider=self.provider)

    async def refund(self, handle: str, amount_cents: int,
                     idempotency_key: Optional[str] = None) -> GatewayStatus:
        self.calls.append(("refund", (handle, amount_cents, idempotency_key)))
        self._maybe_fail("refund")
        intent = self._intent(handle)
        intent["refunded"] += amount_cents
        return GatewayStatus(handle=handle, status="refunded", provider=self.provider,
                             amount_cents=amount_cents, reference=f"re_{handle}_{intent['refunded']}")

    async def retrieve(self, handle: str) -> GatewayAuthorization:
        self.calls.append(("retrieve", handle))
        self._maybe_fail("retrieve")
        intent = self._intent(handle)
        return GatewayAuthorization(handle=handle, status=intent["status"], provider=self.provider,
                                    client_secret=f"{handle}_secret", amount_cents=intent["amount"],
                                    amount_received_cents=intent["captured"])


class FakeBookingCollaborator:
    """Bookings and trips held in dicts; callbacks are recorded in order."""

    def __init__(self, clock: FrozenClock):
        self._clock = clock
        self.bookings: dict[int, BookingSnapshot] = {}
        self.trips: dict[int, TripSnapshot] = {}
        self.callbacks: list[tuple[str, int, Any]] = []
        self.fail_callbacks = False

    def add_booking(
        self,
        booking_id: int,
        *,
        trip_id: int = 1,
        sender_id: int = SENDER_ID,
        traveler_id: int = TRAVELER_ID,
        amount_cents: int = 10000,
        departure_in: Optional[timedelta] = timedelta(days=10),
        destination_account: Optional[str] = "acct_traveler",
    ) -> BookingSnapshot:
        departure = self._clock() + departure_in if departure_in is not None else None
        snapshot = BookingSnapshot(
            booking_id=booking_id,
            trip_id=trip_id,
            sender_id=sender_id,
            traveler_id=traveler_id,
            amount_cents=amount_cents,
            trip_departure_at=departure,
            destination_account=destination_account,
        )
        self.bookings[booking_id] = snapshot
        self.trips.setdefault(trip_id, TripSnapshot(trip_id=trip_id, traveler_id=traveler_id,
                                                    departure_at=departure))
        return snapshot

    def move_departure(self, booking_id: int, departure_in: timedelta) -> None:
        snapshot = self.bookings[booking_id]
        self.bookings[booking_id] = snapshot.model_copy(
            update={"trip_departure_at": self._clock() + departure_in}
        )

    def events_for(self, booking_id: int) -> list[str]:
        return [name for name, bid, _ in self.callbacks if bid == booking_id]

    async def get_booking(self, booking_id: int) -> BookingSnapshot:
        snapshot = self.bookings.get(booking_id)
        if snapshot is None:
            raise NotFoundException("booking", booking_id)
        return snapshot

    async def get_trip(self, trip_id: int) -> TripSnapshot:
        trip = self.trips.get(trip_id)
        if trip is None:
            raise NotFoundException("trip", trip_id)
        return trip

    async def list_trip_bookings(self, trip_id: int) -> list[BookingSnapshot]:
        return [b for b in self.bookings.values() if b.trip_id == trip_id]

    async def _record(self, name: str, booking_id: int, value: Any) -> None:
        if self.fail_callbacks:
            raise CollaboratorError("booking service down", service="booking", status_code=503)
        self.callbacks.append((name, booking_id, value))

    async def mark_payment_authorized(self, booking_id: int, authorization_id: int) -> None:
        await self._record("authorized", booking_id, authorization_id)

    async def mark_payment_confirmed(self, booking_id: int, authorization_id: int) -> None:
        await self._record("confirmed", booking_id, authorization_id)

    async def mark_payment_captured(self, booking_id: int, authorization_id: int) -> None:
        await self._record("captured", booking_id, authorization_id)

    async def mark_payment_expired(self, booking_id: int, authorization_id: int) -> None:
        await self._record("expired", booking_id, authorization_id)

    async def mark_payment_cancelled(self, booking_id: int, authorization_id: int) -> None:
        await self._record("payment_cancelled", booking_id, authorization_id)

    async def mark_cancelled(self, booking_id: int, cancellation_type: str, reason: Optional[str]) -> None:
        await self._record("booking_cancelled", booking_id, cancellation_type)
        snapshot = self.bookings.get(booking_id)
        if snapshot is not None:
            self.bookings[booking_id] = snapshot.model_copy(update={"status": "cancelled"})


class FakeNotificationSink:
    def __init__(self):
        self.events: list[dict[str, Any]] = []
        self.failures_left = 0

    @property
    def types(self) -> list[str]:
        return [e["type"] for e in self.events]

    async def publish(self, event: dict[str, Any]) -> None:
        if self.failures_left > 0:
            self.failures_left -= 1
            raise CollaboratorError("notification service down", service="notification", status_code=503)
        self.events.append(event)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def booking(clock) -> FakeBookingCollaborator:
    return FakeBookingCollaborator(clock)


@pytest.fixture
def sink() -> FakeNotificationSink:
    return FakeNotificationSink()


@pytest_asyncio.fixture
async def engine(tmp_path):
    db_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}")
    await create_tables(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def uow_factory(engine):
    return make_uow_factory(build_session_factory(engine))


@pytest_asyncio.fixture
async def redis_client():
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def cache(redis_client) -> RedisCache:
    return RedisCache(redis_client, namespace="test", default_ttl=60)


@pytest.fixture
def services(uow_factory, gateway, booking, sink, cache, clock):
    return build_payment_services(
        uow_factory=uow_factory,
        gateway=gateway,
        booking=booking,
        sink=sink,
        cache=cache,
        clock=clock,
    )
