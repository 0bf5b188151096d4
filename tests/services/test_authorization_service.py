from datetime import timedelta

import pytest

from application.dtos.payments import CAPTURED
from domain.authorization import AuthorizationStatus, CaptureReason
from domain.common.exceptions import (
    ConflictException,
    GatewayRejectedException,
    GatewayUnavailableException,
    InvalidStateException,
    NotFoundException,
    UnauthorizedActorException,
)
from domain.ledger import EscrowStatus, TransactionStatus, TransactionType
from domain.scheduling import JobStatus, JobType

pytestmark = pytest.mark.asyncio


async def pending_jobs(uow_factory, authorization_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.jobs.list_for_authorization(authorization_id, statuses=[JobStatus.PENDING])


async def create_confirmed(services, booking, booking_id=1, **booking_kwargs):
    snapshot = booking.add_booking(booking_id, **booking_kwargs)
    authorization = await services.authorizations.create_for_booking(booking_id, actor_id=snapshot.sender_id)
    return await services.authorizations.confirm(authorization.id, snapshot.sender_id)


class TestCreate:
    async def test_reserves_funds_and_schedules_confirmation_jobs(self, services, booking, gateway, uow_factory,
                                                                  clock):
        snapshot = booking.add_booking(1)
        authorization = await services.authorizations.create_for_booking(1, actor_id=snapshot.sender_id)

        assert authorization.status == AuthorizationStatus.PENDING
        assert authorization.platform_fee_cents == 500
        assert authorization.gateway_handle == "pi_stub_1"
        assert authorization.confirmation_deadline == clock() + timedelta(hours=4)

        request = gateway.calls_of("authorize")[0]
        assert request.manual_capture is True
        assert request.application_fee_cents == 500
        assert request.destination_account == "acct_traveler"
        assert request.request_strong_authentication is False

        jobs = {job.job_type: job for job in await pending_jobs(uow_factory, authorization.id)}
        assert jobs[JobType.PAYMENT_EXPIRY].scheduled_at == authorization.confirmation_deadline
        assert jobs[JobType.PAYMENT_EXPIRY].payload == {"expiry_type": "confirmation"}
        assert jobs[JobType.CONFIRMATION_REMINDER].scheduled_at == clock() + timedelta(hours=2)

        async with uow_factory(readonly=True) as uow:
            auth_tx = await uow.transactions.get_for_authorization(authorization.id, TransactionType.AUTHORIZATION)
            escrow = await uow.escrows.get_for_authorization(authorization.id)
        assert auth_tx.status == TransactionStatus.AUTHORIZED
        assert auth_tx.net_amount_cents == 9500
        assert escrow.amount_held_cents == 10000
        assert booking.events_for(1) == ["authorized"]

    async def test_second_live_authorization_for_booking_conflicts(self, services, booking):
        booking.add_booking(1)
        await services.authorizations.create_for_booking(1)
        with pytest.raises(ConflictException):
            await services.authorizations.create_for_booking(1)

    async def test_new_authorization_allowed_after_previous_closed(self, services, booking, gateway):
        snapshot = booking.add_booking(1)
        first = await services.authorizations.create_for_booking(1)
        await services.authorizations.cancel(first.id, snapshot.sender_id, "changed mind")

        second = await services.authorizations.create_for_booking(1)
        assert second.id != first.id
        keys = [req.idempotency_key for req in gateway.calls_of("authorize")]
        assert keys[0] != keys[1]

    async def test_large_amounts_request_strong_authentication(self, services, booking, gateway):
        booking.add_booking(1, amount_cents=60000)
        await services.authorizations.create_for_booking(1)
        assert gateway.calls_of("authorize")[0].request_strong_authentication is True

    async def test_stranger_cannot_create(self, services, booking):
        booking.add_booking(1)
        with pytest.raises(UnauthorizedActorException):
            await services.authorizations.create_for_booking(1, actor_id=999)

    async def test_unpayable_payee_waits_for_gateway_setup(self, services, booking, gateway, uow_factory):
        booking.add_booking(1, destination_account=None)
        authorization = await services.authorizations.create_for_booking(1)

        assert authorization.status == AuthorizationStatus.PENDING_GATEWAY_SETUP
        assert authorization.gateway_handle is None
        assert gateway.calls_of("authorize") == []
        job_types = {job.job_type for job in await pending_jobs(uow_factory, authorization.id)}
        assert job_types == {JobType.PAYMENT_EXPIRY}

    async def test_activate_payee_resumes_waiting_authorizations(self, services, booking, uow_factory):
        snapshot = booking.add_booking(1, destination_account=None)
        authorization = await services.authorizations.create_for_booking(1)

        resumed = await services.authorizations.activate_payee(snapshot.traveler_id, "acct_new")

        assert [a.id for a in resumed] == [authorization.id]
        assert resumed[0].status == AuthorizationStatus.PENDING
        assert resumed[0].gateway_handle is not None
        job_types = sorted(job.job_type.value for job in await pending_jobs(uow_factory, authorization.id))
        assert job_types == ["confirmation_reminder", "payment_expiry"]

    async def test_callback_failure_does_not_undo_creation(self, services, booking):
        booking.add_booking(1)
        booking.fail_callbacks = True
        authorization = await services.authorizations.create_for_booking(1)
        assert (await services.authorizations.get(authorization.id)).status == AuthorizationStatus.PENDING


class TestConfirm:
    async def test_confirm_schedules_capture_window(self, services, booking, uow_factory, clock):
        authorization = await create_confirmed(services, booking)

        assert authorization.status == AuthorizationStatus.CONFIRMED
        assert authorization.expires_at == clock() + timedelta(days=7)
        assert authorization.auto_capture_at == authorization.expires_at - timedelta(hours=1)

        jobs = {job.job_type: job for job in await pending_jobs(uow_factory, authorization.id)}
        assert set(jobs) == {JobType.AUTO_CAPTURE, JobType.PAYMENT_REMINDER, JobType.PAYMENT_EXPIRY}
        assert jobs[JobType.AUTO_CAPTURE].scheduled_at == authorization.auto_capture_at
        assert jobs[JobType.AUTO_CAPTURE].priority == 1
        assert jobs[JobType.PAYMENT_EXPIRY].payload == {"expiry_type": "capture"}
        assert jobs[JobType.PAYMENT_REMINDER].scheduled_at == authorization.auto_capture_at - timedelta(hours=24)

        async with uow_factory(readonly=True) as uow:
            escrow = await uow.escrows.get_for_authorization(authorization.id)
        assert escrow.status == EscrowStatus.HELD
        assert booking.events_for(1) == ["authorized", "confirmed"]

    async def test_only_payer_confirms(self, services, booking):
        snapshot = booking.add_booking(1)
        authorization = await services.authorizations.create_for_booking(1)
        with pytest.raises(UnauthorizedActorException):
            await services.authorizations.confirm(authorization.id, snapshot.traveler_id)

    async def test_confirm_requires_gateway_authorization(self, services, booking, gateway):
        gateway.auto_approve = False
        snapshot = booking.add_booking(1)
        authorization = await services.authorizations.create_for_booking(1)
        with pytest.raises(InvalidStateException):
            await services.authorizations.confirm(authorization.id, snapshot.sender_id)

    async def test_confirm_after_deadline_rejected(self, services, booking, clock):
        snapshot = booking.add_booking(1)
        authorization = await services.authorizations.create_for_booking(1)
        clock.advance(hours=4)
        with pytest.raises(InvalidStateException):
            await services.authorizations.confirm(authorization.id, snapshot.sender_id)

    async def test_departure_too_close_rejected(self, services, booking):
        snapshot = booking.add_booking(1, departure_in=timedelta(hours=48))
        authorization = await services.authorizations.create_for_booking(1)
        with pytest.raises(InvalidStateException):
            await services.authorizations.confirm(authorization.id, snapshot.sender_id)

    async def test_auto_capture_disabled_schedules_expiry_only(self, services, booking, uow_factory):
        await services.config.set("enable_auto_capture", False)
        authorization = await create_confirmed(services, booking)
        job_types = {job.job_type for job in await pending_jobs(uow_factory, authorization.id)}
        assert job_types == {JobType.PAYMENT_EXPIRY}


class TestCapture:
    async def test_manual_capture_moves_money_once(self, services, booking, gateway, uow_factory):
        authorization = await create_confirmed(services, booking)

        outcome = await services.authorizations.capture(authorization.id, CaptureReason.MANUAL,
                                                        actor_id=authorization.payer_id)
        assert outcome.already_captured is False
        assert outcome.authorization.status == AuthorizationStatus.CAPTURED
        assert outcome.authorization.capture_reason == CaptureReason.MANUAL

        again = await services.authorizations.capture(authorization.id)
        assert again.already_captured is True
        assert len(gateway.calls_of("capture")) == 1

        async with uow_factory(readonly=True) as uow:
            capture_tx = await uow.transactions.get_for_authorization(authorization.id, TransactionType.CAPTURE)
            escrow = await uow.escrows.get_for_authorization(authorization.id)
        assert capture_tx.gateway_fee_cents == 320
        assert capture_tx.net_amount_cents == 9500
        assert escrow.status == EscrowStatus.RELEASED
        assert await pending_jobs(uow_factory, authorization.id) == []
        assert booking.events_for(1)[-1] == "captured"

    async def test_only_payer_captures_manually(self, services, booking):
        authorization = await create_confirmed(services, booking)
        with pytest.raises(UnauthorizedActorException):
            await services.authorizations.capture(authorization.id, CaptureReason.MANUAL,
                                                  actor_id=authorization.payee_id)

    async def test_pending_authorization_cannot_be_captured(self, services, booking):
        booking.add_booking(1)
        authorization = await services.authorizations.create_for_booking(1)
        with pytest.raises(InvalidStateException):
            await services.authorizations.capture(authorization.id)

    async def test_capture_after_window_rejected(self, services, booking, clock):
        authorization = await create_confirmed(services, booking)
        clock.advance(days=7)
        with pytest.raises(InvalidStateException):
            await services.authorizations.capture(authorization.id)

    async def test_transient_failure_schedules_backoff_retry(self, services, booking, gateway, uow_factory, clock):
        authorization = await create_confirmed(services, booking)
        gateway.fail_next("capture", GatewayUnavailableException("timeout", provider="stub"))

        with pytest.raises(GatewayUnavailableException):
            await services.authorizations.capture(authorization.id)

        current = await services.authorizations.get(authorization.id)
        assert current.status == AuthorizationStatus.FAILED
        assert current.capture_attempts == 1
        assert current.last_error == "timeout"
        retries = [job for job in await pending_jobs(uow_factory, authorization.id) if job.payload.get("retry")]
        assert len(retries) == 1
        assert retries[0].scheduled_at == clock() + timedelta(minutes=10)

    async def test_decline_is_not_retried(self, services, booking, gateway, uow_factory):
        authorization = await create_confirmed(services, booking)
        gateway.fail_next("capture", GatewayRejectedException("card_declined", provider="stub"))

        with pytest.raises(GatewayRejectedException):
            await services.authorizations.capture(authorization.id)

        retries = [job for job in await pending_jobs(uow_factory, authorization.id) if job.payload.get("retry")]
        assert retries == []
        timeline = await services.authorizations.timeline(authorization.id)
        failure = [e for e in timeline if e.event_type.value == "capture_failed"][0]
        assert failure.requires_attention is True

    async def test_failed_capture_that_succeeded_remotely_is_recorded(self, services, booking, gateway):
        authorization = await create_confirmed(services, booking)
        gateway.fail_next("capture", GatewayUnavailableException("lost response", provider="stub"))
        with pytest.raises(GatewayUnavailableException):
            await services.authorizations.capture(authorization.id)
        gateway.set_status(authorization.gateway_handle, CAPTURED)

        outcome = await services.authorizations.capture(authorization.id)

        assert outcome.authorization.status == AuthorizationStatus.CAPTURED
        assert len(gateway.calls_of("capture")) == 1

    async def test_capture_on_pickup(self, services, booking):
        authorization = await create_confirmed(services, booking)
        result = await services.authorizations.capture_on_pickup(1, actor_id=authorization.payee_id)
        assert result == {"captured": True, "already_captured": False, "authorization_id": authorization.id}

    async def test_capture_on_pickup_can_be_disabled(self, services, booking):
        await create_confirmed(services, booking)
        await services.config.set("capture_on_pickup_confirmation", False)
        result = await services.authorizations.capture_on_pickup(1)
        assert result["skipped"] is True
        assert result["reason"] == "capture_on_pickup_disabled"

    async def test_capture_on_pickup_skips_unconfirmed(self, services, booking):
        booking.add_booking(1)
        await services.authorizations.create_for_booking(1)
        result = await services.authorizations.capture_on_pickup(1)
        assert result["skipped"] is True
        assert result["current_status"] == "pending"


class TestCancelAndExpire:
    async def test_cancel_voids_reservation(self, services, booking, gateway, uow_factory):
        authorization = await create_confirmed(services, booking)

        cancelled = await services.authorizations.cancel(authorization.id, authorization.payer_id, "plans changed")

        assert cancelled.status == AuthorizationStatus.CANCELLED
        assert cancelled.cancellation_reason == "plans changed"
        assert gateway.calls_of("cancel")[0][0] == authorization.gateway_handle
        assert await pending_jobs(uow_factory, authorization.id) == []
        async with uow_factory(readonly=True) as uow:
            escrow = await uow.escrows.get_for_authorization(authorization.id)
        assert escrow.status == EscrowStatus.REFUNDED

    async def test_cancel_terminal_rejected(self, services, booking):
        authorization = await create_confirmed(services, booking)
        await services.authorizations.capture(authorization.id)
        with pytest.raises(InvalidStateException):
            await services.authorizations.cancel(authorization.id, authorization.payer_id)

    async def test_stranger_cannot_cancel(self, services, booking):
        authorization = await create_confirmed(services, booking)
        with pytest.raises(UnauthorizedActorException):
            await services.authorizations.cancel(authorization.id, 999)

    async def test_expire_before_deadline_is_a_no_op(self, services, booking):
        booking.add_booking(1)
        authorization = await services.authorizations.create_for_booking(1)
        assert await services.authorizations.expire(authorization.id, expiry_type="confirmation") is None

    async def test_expire_survives_gateway_outage(self, services, booking, gateway, clock):
        booking.add_booking(1)
        authorization = await services.authorizations.create_for_booking(1)
        clock.advance(hours=5)
        gateway.fail_next("cancel", GatewayUnavailableException("down", provider="stub"))

        expired = await services.authorizations.expire(authorization.id, expiry_type="confirmation")

        assert expired.status == AuthorizationStatus.EXPIRED
        timeline = await services.authorizations.timeline(authorization.id)
        assert [e for e in timeline if e.event_type.value == "authorization_expired"][0].requires_attention


class TestQueries:
    async def test_client_secret_for_payer_only(self, services, booking):
        snapshot = booking.add_booking(1)
        authorization = await services.authorizations.create_for_booking(1)

        secret = await services.authorizations.get_client_secret(authorization.id, snapshot.sender_id)

        assert secret["client_secret"] == f"{authorization.gateway_handle}_secret"
        assert secret["requires_strong_authentication"] is False
        with pytest.raises(UnauthorizedActorException):
            await services.authorizations.get_client_secret(authorization.id, snapshot.traveler_id)

    async def test_missing_authorization(self, services):
        with pytest.raises(NotFoundException):
            await services.authorizations.get(12345)

    async def test_page_and_statistics(self, services, booking):
        captured = await create_confirmed(services, booking, 1)
        await services.authorizations.capture(captured.id)
        booking.add_booking(2, trip_id=2)
        await services.authorizations.create_for_booking(2)

        items, total = await services.authorizations.page_by_status(None, page=1, size=1)
        assert total == 2
        assert len(items) == 1
        pending, pending_total = await services.authorizations.page_by_status(AuthorizationStatus.PENDING)
        assert pending_total == 1
        assert pending[0].booking_id == 2

        stats = await services.authorizations.statistics()
        assert stats["total"] == 2
        assert stats["by_status"] == {"captured": 1, "pending": 1}
        assert stats["captured_volume_cents"] == 10000
        assert stats["capture_rate"] == 0.5


class TestConcurrentWriters:
    async def test_confirm_loses_to_cancel_committed_meanwhile(self, services, booking, gateway, monkeypatch):
        snapshot = booking.add_booking(1)
        authorization = await services.authorizations.create_for_booking(1, actor_id=snapshot.sender_id)
        retrieve = gateway.retrieve

        async def cancel_after_answer(handle):
            monkeypatch.setattr(gateway, "retrieve", retrieve)
            answer = await retrieve(handle)
            await services.authorizations.cancel(authorization.id, snapshot.sender_id, "changed plans")
            return answer

        monkeypatch.setattr(gateway, "retrieve", cancel_after_answer)
        with pytest.raises(ConflictException):
            await services.authorizations.confirm(authorization.id, snapshot.sender_id)

        current = await services.authorizations.get(authorization.id)
        assert current.status == AuthorizationStatus.CANCELLED
        assert current.confirmed_at is None
        assert current.expires_at is None

    async def test_capture_write_loses_to_cancel_committed_meanwhile(self, services, booking, uow_factory, clock):
        authorization = await create_confirmed(services, booking)
        stale = await services.authorizations.get(authorization.id)
        await services.authorizations.cancel(authorization.id, authorization.payer_id, "changed plans")

        with pytest.raises(ConflictException):
            await services.authorizations.record_gateway_capture(
                stale, CaptureReason.MANUAL, clock(), None, reference="ch_late", started=0.0,
            )

        current = await services.authorizations.get(authorization.id)
        assert current.status == AuthorizationStatus.CANCELLED
        assert current.captured_at is None
        async with uow_factory(readonly=True) as uow:
            assert await uow.transactions.get_for_authorization(authorization.id, TransactionType.CAPTURE) is None
            escrow = await uow.escrows.get_for_authorization(authorization.id)
        assert escrow.amount_released_cents == 0
