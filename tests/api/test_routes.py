import httpx
import pytest
import pytest_asyncio

from domain.common.exceptions import GatewayRejectedException
from main import app

SENDER = {"X-Actor-Id": "101"}
TRAVELER = {"X-Actor-Id": "202"}
ADMIN = {"X-Actor-Id": "1", "X-Actor-Role": "admin"}


@pytest_asyncio.fixture
async def client(services):
    app.state.payment_services = services
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    del app.state.payment_services


async def create(client, booking, booking_id=1):
    booking.add_booking(booking_id)
    response = await client.post("/api/v1/authorizations", json={"booking_id": booking_id}, headers=SENDER)
    assert response.status_code == 201
    return response.json()["data"]


class TestCallerIdentity:
    @pytest.mark.asyncio
    async def test_missing_actor_header(self, client):
        response = await client.get("/api/v1/authorizations/1")
        assert response.status_code == 401
        body = response.json()
        assert body["data"] is None
        assert body["error"]["type"] == "HTTPError"

    @pytest.mark.asyncio
    async def test_non_integer_actor(self, client):
        response = await client.get("/api/v1/authorizations/1", headers={"X-Actor-Id": "abc"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_admin_routes_need_operator_role(self, client):
        response = await client.get("/api/v1/admin/authorizations", headers=SENDER)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_services_not_ready(self):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            response = await http.get("/api/v1/authorizations/1", headers=SENDER)
            health = await http.get("/health")
        assert response.status_code == 503
        assert health.json()["data"]["payment_services"] == "unavailable"


class TestAuthorizationRoutes:
    @pytest.mark.asyncio
    async def test_create_and_fetch(self, client, booking):
        created = await create(client, booking)

        assert created["status"] == "pending"
        assert created["amount_cents"] == 10000
        assert created["platform_fee_cents"] == 500
        assert created["confirmation_deadline"].endswith("Z")

        response = await client.get(f"/api/v1/authorizations/{created['id']}", headers=SENDER)
        body = response.json()
        assert body["code"] == 0
        assert body["data"]["id"] == created["id"]

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client, booking):
        booking.add_booking(1)
        response = await client.post("/api/v1/authorizations", json={"booking_id": 1},
                                     headers={**SENDER, "X-Request-ID": "trace-1"})
        assert response.headers["X-Request-ID"] == "trace-1"

    @pytest.mark.asyncio
    async def test_duplicate_authorization_conflicts(self, client, booking):
        await create(client, booking)
        response = await client.post("/api/v1/authorizations", json={"booking_id": 1}, headers=SENDER)

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["request_id"]
        assert error["timestamp"].endswith("Z")

    @pytest.mark.asyncio
    async def test_invalid_body_is_422(self, client):
        response = await client.post("/api/v1/authorizations", json={"booking_id": 0}, headers=SENDER)
        assert response.status_code == 422
        assert response.json()["error"]["field"] == "booking_id"

    @pytest.mark.asyncio
    async def test_confirm_then_capture(self, client, booking):
        created = await create(client, booking)
        base = f"/api/v1/authorizations/{created['id']}"

        confirmed = await client.post(f"{base}/confirm", headers=SENDER)
        assert confirmed.json()["data"]["status"] == "confirmed"

        captured = await client.post(f"{base}/capture", headers=SENDER)
        data = captured.json()["data"]
        assert data["authorization"]["status"] == "captured"
        assert data["already_captured"] is False

        again = await client.post(f"{base}/capture", headers=SENDER)
        assert again.json()["data"]["already_captured"] is True

    @pytest.mark.asyncio
    async def test_wrong_actor_is_forbidden(self, client, booking):
        created = await create(client, booking)
        response = await client.post(f"/api/v1/authorizations/{created['id']}/confirm", headers=TRAVELER)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_capture_before_confirmation_is_invalid_state(self, client, booking):
        created = await create(client, booking)
        response = await client.post(f"/api/v1/authorizations/{created['id']}/capture", headers=SENDER)
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_cancel_with_reason(self, client, booking):
        created = await create(client, booking)
        response = await client.post(f"/api/v1/authorizations/{created['id']}/cancel",
                                     json={"reason": "changed plans"}, headers=SENDER)
        data = response.json()["data"]
        assert data["status"] == "cancelled"
        assert data["cancellation_reason"] == "changed plans"

    @pytest.mark.asyncio
    async def test_unknown_authorization(self, client):
        response = await client.get("/api/v1/authorizations/999", headers=SENDER)
        assert response.status_code == 404


class TestCancellationRoutes:
    @pytest.mark.asyncio
    async def test_preview_then_cancel(self, client, booking):
        created = await create(client, booking)
        await client.post(f"/api/v1/authorizations/{created['id']}/confirm", headers=SENDER)

        preview = await client.post("/api/v1/cancellations/bookings/1/preview", headers=SENDER)
        assert preview.json()["data"]["bucket"] == "early"

        response = await client.post("/api/v1/cancellations/bookings/1", json={"reason": "sick"}, headers=SENDER)
        assert response.status_code == 200
        assert response.json()["data"]["refund_cents"] == 9680

    @pytest.mark.asyncio
    async def test_second_trip_cancellation_is_rate_limited(self, client, booking):
        booking.add_booking(1, trip_id=1)
        booking.add_booking(2, trip_id=2)
        for booking_id in (1, 2):
            await client.post("/api/v1/authorizations", json={"booking_id": booking_id}, headers=SENDER)

        first = await client.post("/api/v1/cancellations/trips/1", headers=TRAVELER)
        second = await client.post("/api/v1/cancellations/trips/2", headers=TRAVELER)

        assert first.status_code == 200
        assert second.status_code == 429
        assert second.json()["error"]["details"]["limit"] == 1


class TestDeliveryCodeRoutes:
    @pytest.mark.asyncio
    async def test_issue_and_verify(self, client):
        issued = await client.post("/api/v1/delivery-codes/bookings/3", headers=TRAVELER)
        assert issued.status_code == 201
        code = issued.json()["data"]["code"]

        verified = await client.post("/api/v1/delivery-codes/bookings/3/verify", json={"code": code},
                                     headers=SENDER)
        assert verified.json()["data"] == {"booking_id": 3, "verified": True}


class TestAdminRoutes:
    @pytest.mark.asyncio
    async def test_paginated_listing(self, client, booking):
        for booking_id in (1, 2, 3):
            await create(client, booking, booking_id)

        response = await client.get("/api/v1/admin/authorizations",
                                    params={"status": "pending", "page": 1, "size": 2}, headers=ADMIN)

        data = response.json()["data"]
        assert len(data["items"]) == 2
        assert (data["total"], data["page"], data["size"], data["pages"]) == (3, 1, 2, 2)

    @pytest.mark.asyncio
    async def test_timeline_and_force_capture(self, client, booking):
        created = await create(client, booking)
        await client.post(f"/api/v1/authorizations/{created['id']}/confirm", headers=SENDER)

        forced = await client.post(f"/api/v1/admin/authorizations/{created['id']}/force-capture",
                                   json={"reason": "support ticket"}, headers=ADMIN)
        assert forced.json()["message"] == "support ticket"
        assert forced.json()["data"]["authorization"]["capture_reason"] == "admin"

        timeline = await client.get(f"/api/v1/admin/authorizations/{created['id']}/timeline", headers=ADMIN)
        types = [entry["event_type"] for entry in timeline.json()["data"]]
        assert "capture_succeeded" in types

    @pytest.mark.asyncio
    async def test_configuration_update(self, client):
        response = await client.put("/api/v1/admin/config/max_hold_days", json={"value": 6}, headers=ADMIN)
        assert response.json()["data"]["value"] == 6

        fetched = await client.get("/api/v1/admin/config/max_hold_days", headers=ADMIN)
        assert fetched.json()["data"]["source"] == "stored"

        rejected = await client.put("/api/v1/admin/config/max_hold_days", json={"value": "six"}, headers=ADMIN)
        assert rejected.status_code == 422

    @pytest.mark.asyncio
    async def test_job_stats(self, client, booking):
        await create(client, booking)
        response = await client.get("/api/v1/admin/jobs/stats", headers=ADMIN)
        assert response.status_code == 200
        run = await client.post("/api/v1/admin/jobs/run", headers=ADMIN)
        assert run.json()["data"]["processed"] == 0

    @pytest.mark.asyncio
    async def test_declined_capture_surfaces_for_operators(self, client, booking, gateway):
        created = await create(client, booking)
        base = f"/api/v1/authorizations/{created['id']}"
        await client.post(f"{base}/confirm", headers=SENDER)
        gateway.fail_next("capture", GatewayRejectedException("card declined", provider="stub"))

        response = await client.post(f"{base}/capture", headers=SENDER)
        assert response.status_code == 402

        attention = await client.get("/api/v1/admin/events/attention", headers=ADMIN)
        entries = attention.json()["data"]
        assert entries[0]["event_type"] == "capture_failed"
        assert entries[0]["requires_attention"] is True
