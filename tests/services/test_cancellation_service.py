from datetime import timedelta

import pytest
from sqlalchemy import select

from domain.authorization import AuthorizationStatus
from domain.common.exceptions import (
    ConflictException,
    GatewayRejectedException,
    GatewayUnavailableException,
    InvalidStateException,
    LimitExceededException,
    UnauthorizedActorException,
)
from domain.ledger import EscrowStatus, TransactionStatus, TransactionType
from infrastructure.models import CancellationAttemptModel

pytestmark = pytest.mark.asyncio


async def confirmed(services, booking, booking_id=1, **booking_kwargs):
    snapshot = booking.add_booking(booking_id, **booking_kwargs)
    authorization = await services.authorizations.create_for_booking(booking_id)
    return await services.authorizations.confirm(authorization.id, snapshot.sender_id)


async def transactions_by_type(uow_factory, booking_id):
    async with uow_factory(readonly=True) as uow:
        rows = await uow.transactions.list_for_booking(booking_id)
    return {tx.type: tx for tx in rows}


async def denied_attempts(uow_factory, user_id):
    async with uow_factory(readonly=True) as uow:
        result = await uow.session.execute(
            select(CancellationAttemptModel).where(
                CancellationAttemptModel.user_id == user_id,
                CancellationAttemptModel.allowed.is_(False),
            )
        )
        return result.scalars().all()


class TestSenderCancellation:
    async def test_confirmed_booking_far_ahead_is_early(self, services, booking, gateway, uow_factory):
        authorization = await confirmed(services, booking)

        result = await services.cancellations.cancel_booking(1, authorization.payer_id, "no longer needed")

        assert result["bucket"] == "early"
        assert result["refund_cents"] == 9680
        assert result["compensation_cents"] == 0
        assert result["retained_cents"] == 320
        assert result["authorization_status"] == "cancelled"
        handle, amount, _ = gateway.calls_of("capture")[0]
        assert (handle, amount) == (authorization.gateway_handle, 320)
        assert gateway.calls_of("cancel") == []

        txs = await transactions_by_type(uow_factory, 1)
        assert txs[TransactionType.REFUND].amount_cents == 9680
        assert txs[TransactionType.REFUND].status == TransactionStatus.COMPLETED
        assert TransactionType.COMPENSATION not in txs
        async with uow_factory(readonly=True) as uow:
            escrow = await uow.escrows.get_for_authorization(authorization.id)
        assert escrow.status == EscrowStatus.PARTIALLY_REFUNDED
        assert booking.bookings[1].status == "cancelled"
        assert booking.events_for(1)[-1] == "booking_cancelled"

    async def test_unconfirmed_booking_is_always_free(self, services, booking, gateway):
        snapshot = booking.add_booking(1, departure_in=timedelta(hours=80))
        authorization = await services.authorizations.create_for_booking(1)
        booking.move_departure(1, timedelta(hours=2))

        result = await services.cancellations.cancel_booking(1, snapshot.sender_id)

        assert result["bucket"] == "free"
        assert result["refund_cents"] == 10000
        assert gateway.calls_of("cancel")[0][0] == authorization.gateway_handle
        assert gateway.calls_of("capture") == []

    async def test_late_cancellation_captures_compensation(self, services, booking, gateway, uow_factory):
        authorization = await confirmed(services, booking)
        booking.move_departure(1, timedelta(hours=12))

        result = await services.cancellations.cancel_booking(1, authorization.payer_id)

        assert result["bucket"] == "late"
        assert result["refund_cents"] == 4840
        assert result["compensation_cents"] == 4840
        assert result["retained_cents"] == 320
        handle, amount, _ = gateway.calls_of("capture")[0]
        assert (handle, amount) == (authorization.gateway_handle, 5160)

        txs = await transactions_by_type(uow_factory, 1)
        assert txs[TransactionType.REFUND].amount_cents == 4840
        assert txs[TransactionType.COMPENSATION].amount_cents == 4840
        assert txs[TransactionType.COMPENSATION].user_id == authorization.payee_id
        async with uow_factory(readonly=True) as uow:
            escrow = await uow.escrows.get_for_authorization(authorization.id)
        assert escrow.status == EscrowStatus.PARTIALLY_REFUNDED

    async def test_captured_booking_is_refunded_once(self, services, booking, gateway, uow_factory):
        authorization = await confirmed(services, booking)
        await services.authorizations.capture(authorization.id)

        result = await services.cancellations.cancel_booking(1, authorization.payer_id)

        assert result["bucket"] == "early"
        assert result["refund_cents"] == 9680
        assert result["authorization_status"] == "captured"
        handle, amount, _ = gateway.calls_of("refund")[0]
        assert (handle, amount) == (authorization.gateway_handle, 9680)

        with pytest.raises(InvalidStateException):
            await services.cancellations.cancel_booking(1, authorization.payer_id)
        assert len(gateway.calls_of("refund")) == 1
        denied = await denied_attempts(uow_factory, authorization.payer_id)
        assert len(denied) == 1
        assert denied[0].attempt_type == "booking_cancel"

    async def test_only_sender_cancels_booking(self, services, booking):
        authorization = await confirmed(services, booking)
        with pytest.raises(UnauthorizedActorException):
            await services.cancellations.cancel_booking(1, authorization.payee_id)

    async def test_already_cancelled_booking_rejected(self, services, booking, uow_factory):
        authorization = await confirmed(services, booking)
        await services.authorizations.cancel(authorization.id, authorization.payer_id)
        with pytest.raises(InvalidStateException):
            await services.cancellations.cancel_booking(1, authorization.payer_id)
        assert len(await denied_attempts(uow_factory, authorization.payer_id)) == 1


class TestSettlementRecovery:
    async def test_booking_callback_failure_keeps_settlement(self, services, booking, gateway, uow_factory):
        authorization = await confirmed(services, booking)
        booking.move_departure(1, timedelta(hours=12))
        booking.fail_callbacks = True

        result = await services.cancellations.cancel_booking(1, authorization.payer_id)

        assert result["bucket"] == "late"
        assert result["authorization_status"] == "cancelled"
        txs = await transactions_by_type(uow_factory, 1)
        assert txs[TransactionType.REFUND].status == TransactionStatus.COMPLETED
        assert txs[TransactionType.COMPENSATION].amount_cents == 4840
        assert (await services.authorizations.get(authorization.id)).status == AuthorizationStatus.CANCELLED
        assert booking.bookings[1].status != "cancelled"

    async def test_gateway_refusal_abandons_recorded_decision(self, services, booking, gateway, uow_factory):
        authorization = await confirmed(services, booking)
        booking.move_departure(1, timedelta(hours=12))
        gateway.fail_next("capture", GatewayRejectedException("card_declined", provider="stub"))

        with pytest.raises(GatewayRejectedException):
            await services.cancellations.cancel_booking(1, authorization.payer_id)

        txs = await transactions_by_type(uow_factory, 1)
        assert txs[TransactionType.REFUND].status == TransactionStatus.FAILED
        assert txs[TransactionType.COMPENSATION].status == TransactionStatus.FAILED
        assert (await services.authorizations.get(authorization.id)).status == AuthorizationStatus.CONFIRMED

        result = await services.cancellations.cancel_booking(1, authorization.payer_id)
        assert result["authorization_status"] == "cancelled"
        txs = await transactions_by_type(uow_factory, 1)
        assert txs[TransactionType.REFUND].status == TransactionStatus.COMPLETED

    async def test_lost_local_write_is_finished_by_reconciliation(self, services, booking, gateway, uow_factory,
                                                                  clock, monkeypatch):
        authorization = await confirmed(services, booking)
        booking.move_departure(1, timedelta(hours=12))

        async def lost_write(*args, **kwargs):
            raise ConflictException("database went away", resource="payment_authorization")

        monkeypatch.setattr(services.cancellations, "_apply", lost_write)
        with pytest.raises(ConflictException):
            await services.cancellations.cancel_booking(1, authorization.payer_id)
        monkeypatch.undo()

        assert gateway.intents[authorization.gateway_handle]["captured"] == 5160
        assert (await services.authorizations.get(authorization.id)).status == AuthorizationStatus.CONFIRMED
        txs = await transactions_by_type(uow_factory, 1)
        assert txs[TransactionType.REFUND].status == TransactionStatus.PENDING

        clock.advance(minutes=11)
        summary = await services.reconciliation.reconcile()

        assert summary.settled == 1
        assert summary.captured == 0
        assert summary.adjustments[0]["action"] == "settlement_completed"
        assert (await services.authorizations.get(authorization.id)).status == AuthorizationStatus.CANCELLED
        txs = await transactions_by_type(uow_factory, 1)
        assert TransactionType.CAPTURE not in txs
        assert (txs[TransactionType.REFUND].amount_cents, txs[TransactionType.REFUND].status) == (
            4840, TransactionStatus.COMPLETED)
        assert txs[TransactionType.COMPENSATION].amount_cents == 4840
        async with uow_factory(readonly=True) as uow:
            escrow = await uow.escrows.get_for_authorization(authorization.id)
        assert escrow.status == EscrowStatus.PARTIALLY_REFUNDED
        assert escrow.amount_refunded_cents == 4840
        assert booking.events_for(1)[-1] == "booking_cancelled"

    async def test_unanswered_void_is_abandoned_when_hold_survives(self, services, booking, gateway, uow_factory,
                                                                   clock):
        authorization = await confirmed(services, booking)
        booking.move_departure(1, timedelta(hours=12))
        gateway.fail_next("capture", GatewayUnavailableException("timeout", provider="stub"))

        with pytest.raises(GatewayUnavailableException):
            await services.cancellations.cancel_booking(1, authorization.payer_id)
        txs = await transactions_by_type(uow_factory, 1)
        assert txs[TransactionType.REFUND].status == TransactionStatus.PENDING
        with pytest.raises(ConflictException):
            await services.cancellations.cancel_booking(1, authorization.payer_id)

        clock.advance(minutes=11)
        summary = await services.reconciliation.reconcile()

        assert summary.abandoned == 1
        txs = await transactions_by_type(uow_factory, 1)
        assert txs[TransactionType.REFUND].status == TransactionStatus.FAILED
        assert (await services.authorizations.get(authorization.id)).status == AuthorizationStatus.CONFIRMED


class TestPreview:
    async def test_preview_has_no_side_effects(self, services, booking, gateway):
        authorization = await confirmed(services, booking)
        booking.move_departure(1, timedelta(hours=30))

        preview = await services.cancellations.preview(1, authorization.payer_id)

        assert preview["bucket"] == "early"
        assert preview["actor"] == "sender"
        assert preview["refund_cents"] == 9680
        assert preview["hours_before_departure"] == 30
        assert gateway.calls_of("cancel") == []
        assert (await services.authorizations.get(authorization.id)).status == AuthorizationStatus.CONFIRMED

    async def test_preview_for_stranger_rejected(self, services, booking):
        await confirmed(services, booking)
        with pytest.raises(UnauthorizedActorException):
            await services.cancellations.preview(1, 999)


class TestNoShow:
    async def test_no_show_compensates_traveler(self, services, booking, gateway, uow_factory):
        authorization = await confirmed(services, booking)

        result = await services.cancellations.report_no_show(1, authorization.payee_id, "sender absent")

        assert result["bucket"] == "no_show"
        assert result["refund_cents"] == 0
        assert result["compensation_cents"] == 4840
        handle, amount, _ = gateway.calls_of("capture")[0]
        assert amount == 10000
        txs = await transactions_by_type(uow_factory, 1)
        assert txs[TransactionType.COMPENSATION].amount_cents == 4840

    async def test_sender_cannot_report_no_show(self, services, booking):
        authorization = await confirmed(services, booking)
        with pytest.raises(UnauthorizedActorException):
            await services.cancellations.report_no_show(1, authorization.payer_id)

    async def test_no_show_needs_confirmed_payment(self, services, booking, uow_factory):
        snapshot = booking.add_booking(1)
        await services.authorizations.create_for_booking(1)
        with pytest.raises(InvalidStateException):
            await services.cancellations.report_no_show(1, snapshot.traveler_id)
        assert len(await denied_attempts(uow_factory, snapshot.traveler_id)) == 1


class TestTripCancellation:
    async def test_trip_cancellation_refunds_and_lowers_reliability(self, services, booking, gateway, uow_factory):
        first = await confirmed(services, booking, 1, trip_id=1)
        await confirmed(services, booking, 2, trip_id=1, sender_id=303)

        result = await services.cancellations.cancel_trip(1, first.payee_id, "car broke down")

        assert [b["booking_id"] for b in result["bookings"]] == [1, 2]
        assert all(b["bucket"] == "early" and b["refund_cents"] == 9680 for b in result["bookings"])
        assert result["reliability_score"] == 95
        assert result["cancellation_count"] == 1
        assert [amount for _, amount, _ in gateway.calls_of("capture")] == [320, 320]
        async with uow_factory(readonly=True) as uow:
            reliability = await uow.reliability.get(first.payee_id)
        assert reliability.score == 95

    async def test_second_trip_in_window_is_refused(self, services, booking, uow_factory, clock):
        first = await confirmed(services, booking, 1, trip_id=1)
        await confirmed(services, booking, 2, trip_id=2)
        await services.cancellations.cancel_trip(1, first.payee_id)

        with pytest.raises(LimitExceededException) as exc_info:
            await services.cancellations.cancel_trip(2, first.payee_id)

        assert exc_info.value.details["limit"] == 1
        denied = await denied_attempts(uow_factory, first.payee_id)
        assert [d.attempt_type for d in denied] == ["trip_cancel"]
        async with uow_factory(readonly=True) as uow:
            reliability = await uow.reliability.get(first.payee_id)
        assert reliability.score == 95

    async def test_trip_without_live_bookings_is_free(self, services, booking, uow_factory):
        snapshot = booking.add_booking(1, trip_id=1)
        result = await services.cancellations.cancel_trip(1, snapshot.traveler_id)
        assert result == {"trip_id": 1, "bookings": [], "reliability_penalty": 0}
        async with uow_factory(readonly=True) as uow:
            assert await uow.reliability.get(snapshot.traveler_id) is None

    async def test_only_traveler_cancels_trip(self, services, booking):
        snapshot = booking.add_booking(1, trip_id=1)
        with pytest.raises(UnauthorizedActorException):
            await services.cancellations.cancel_trip(1, snapshot.sender_id)
