"""
Cancellation / refund engine.

A cancellation runs in three steps. The decision is recorded first as a
``refund_initiated`` audit entry with pending refund/compensation rows.
Money then moves at the gateway (void, partial capture or refund). Finally
the authorization, ledger rows, escrow and audit are written in one unit of
work and the booking service is told after commit.

When the final write fails after the gateway moved money, the pending rows
stay behind and reconciliation finishes the settlement from the recorded
decision. A refused gateway call marks them failed.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from application.ports.collaborators import BookingCollaborator, BookingSnapshot, CollaboratorError
from application.ports.payment_gateway import PaymentGateway
from application.services.authorization_service import idempotency_key
from application.services.configuration_service import PaymentConfigurationService
from application.services.event_recorder import emit, record_event
from application.services.job_queue import JobQueue
from core.logging_config import get_logger
from domain.audit import EventLogEntry, EventType
from domain.authorization import deadlines
from domain.authorization.entity import AuthorizationStatus, PaymentAuthorization
from domain.authorization.events import AuthorizationCancelled, RefundIssued
from domain.authorization.money import RefundSplit
from domain.cancellation import (
    AttemptType,
    CancellationActor,
    CancellationAttempt,
    CancellationBucket,
    CancellationDecision,
    UserReliability,
    classify,
)
from domain.common.exceptions import (
    BusinessException,
    ConflictException,
    GatewayRejectedException,
    GatewayUnavailableException,
    InvalidStateException,
    LimitExceededException,
    NotFoundException,
    UnauthorizedActorException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.ledger import Transaction, TransactionStatus, TransactionType
from shared.clock import utcnow

logger = get_logger(__name__)

_CLOSED = (AuthorizationStatus.CANCELLED, AuthorizationStatus.EXPIRED)


@dataclass
class _Settlement:
    authorization: PaymentAuthorization
    decision: CancellationDecision
    gateway_reference: Optional[str] = None


class CancellationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        config: PaymentConfigurationService,
        booking: BookingCollaborator,
        queue: Optional[JobQueue] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._config = config
        self._booking = booking
        self._clock = clock
        self._queue = queue or JobQueue(clock=clock)

    # ------------------------------------------------------------------
    # public operations
    # ------------------------------------------------------------------

    async def preview(self, booking_id: int, actor_id: int, *, no_show: bool = False) -> dict[str, Any]:
        """Decision the engine would take right now, without side effects."""
        snapshot = await self._booking.get_booking(booking_id)
        authorization = await self._live_authorization(booking_id)
        actor = self._actor_for(snapshot, actor_id)
        decision = await self._decide(actor, authorization, snapshot, no_show=no_show)
        return {"booking_id": booking_id, "authorization_id": authorization.id, "actor": actor.value,
                **decision.to_dict()}

    async def cancel_booking(self, booking_id: int, actor_id: int, reason: Optional[str] = None) -> dict[str, Any]:
        """Sender cancels one booking."""
        snapshot = await self._booking.get_booking(booking_id)
        if actor_id != snapshot.sender_id:
            raise UnauthorizedActorException(actor_id, required="sender")
        try:
            authorization = await self._live_authorization(booking_id)
            decision = await self._decide(CancellationActor.SENDER, authorization, snapshot)
            await self._begin_settlement(authorization, decision, actor_id, reason, cancellation_type="sender")
            settlement = await self._move_money(authorization, decision)
            async with self._uow_factory() as uow:
                await self._apply(uow, settlement, actor_id, reason, cancellation_type="sender")
                await uow.cancellation_attempts.record(CancellationAttempt(
                    user_id=actor_id, attempt_type=AttemptType.BOOKING_CANCEL, allowed=True,
                    booking_id=booking_id, trip_id=snapshot.trip_id, bucket=decision.bucket.value,
                    created_at=self._clock(),
                ))
        except (BusinessException, CollaboratorError) as exc:
            await self._record_denied(actor_id, AttemptType.BOOKING_CANCEL, exc,
                                      booking_id=booking_id, trip_id=snapshot.trip_id)
            raise

        logger.info("booking_cancelled", booking_id=booking_id, actor_id=actor_id, bucket=decision.bucket.value,
                    refund_cents=decision.split.refund_cents,
                    compensation_cents=decision.split.compensation_cents)
        await self._notify_booking(booking_id, "sender", reason)
        return self._result(settlement)

    async def report_no_show(self, booking_id: int, actor_id: Optional[int], reason: Optional[str] = None,
                             *, system: bool = False) -> dict[str, Any]:
        """Sender did not show up: no refund, traveler compensated from escrow."""
        snapshot = await self._booking.get_booking(booking_id)
        if not system and actor_id != snapshot.traveler_id:
            raise UnauthorizedActorException(actor_id, required="traveler")
        reporter = actor_id if actor_id is not None else snapshot.traveler_id
        try:
            authorization = await self._live_authorization(booking_id)
            decision = await self._decide(CancellationActor.TRAVELER, authorization, snapshot, no_show=True)
            await self._begin_settlement(authorization, decision, actor_id, reason or "no_show",
                                         cancellation_type="no_show")
            settlement = await self._move_money(authorization, decision)
            async with self._uow_factory() as uow:
                await self._apply(uow, settlement, actor_id, reason or "no_show", cancellation_type="no_show")
                await uow.cancellation_attempts.record(CancellationAttempt(
                    user_id=reporter, attempt_type=AttemptType.NO_SHOW, allowed=True,
                    booking_id=booking_id, trip_id=snapshot.trip_id, bucket=decision.bucket.value,
                    created_at=self._clock(),
                ))
        except (BusinessException, CollaboratorError) as exc:
            await self._record_denied(reporter, AttemptType.NO_SHOW, exc, booking_id=booking_id,
                                      trip_id=snapshot.trip_id)
            raise

        logger.info("no_show_recorded", booking_id=booking_id, compensation_cents=decision.split.compensation_cents)
        await self._notify_booking(booking_id, "no_show", reason or "no_show")
        return self._result(settlement)

    async def cancel_trip(self, trip_id: int, actor_id: int, reason: Optional[str] = None) -> dict[str, Any]:
        """
        Traveler cancels a whole trip.

        Every affected sender is refunded; with at least one live booking the
        traveler's rolling allowance is checked first and the reliability
        score is lowered afterwards.
        """
        trip = await self._booking.get_trip(trip_id)
        if actor_id != trip.traveler_id:
            raise UnauthorizedActorException(actor_id, required="traveler")

        affected: list[tuple[BookingSnapshot, PaymentAuthorization]] = []
        for snapshot in await self._booking.list_trip_bookings(trip_id):
            async with self._uow_factory(readonly=True) as uow:
                authorization = await uow.authorizations.get_latest_for_booking(snapshot.booking_id)
            if authorization is not None and authorization.status not in _CLOSED:
                affected.append((snapshot, authorization))

        if not affected:
            logger.info("trip_cancelled_without_bookings", trip_id=trip_id, traveler_id=actor_id)
            return {"trip_id": trip_id, "bookings": [], "reliability_penalty": 0}

        now = self._clock()
        limit = await self._config.get_int("traveler_cancellation_limit")
        window_days = await self._config.get_int("traveler_cancellation_window_days")
        penalty = await self._config.get_int("traveler_cancellation_reliability_penalty")

        try:
            await self._check_allowance(actor_id, now, limit, window_days)
            settlements = []
            for snapshot, authorization in affected:
                decision = await self._decide(CancellationActor.TRAVELER, authorization, snapshot)
                await self._begin_settlement(authorization, decision, actor_id, reason, cancellation_type="traveler")
                settlements.append(await self._move_money(authorization, decision))

            async with self._uow_factory() as uow:
                for settlement in settlements:
                    await self._apply(uow, settlement, actor_id, reason, cancellation_type="traveler")
                await uow.cancellation_attempts.record(CancellationAttempt(
                    user_id=actor_id, attempt_type=AttemptType.TRIP_CANCEL, allowed=True, trip_id=trip_id,
                    created_at=now,
                ))
                reliability = await uow.reliability.get(actor_id) or UserReliability(user_id=actor_id)
                reliability.apply_cancellation_penalty(penalty, now)
                await uow.reliability.save(reliability)
        except (BusinessException, CollaboratorError) as exc:
            await self._record_denied(actor_id, AttemptType.TRIP_CANCEL, exc, trip_id=trip_id)
            raise

        logger.info("trip_cancelled", trip_id=trip_id, traveler_id=actor_id, bookings=len(settlements),
                    reliability_score=reliability.score)
        for settlement in settlements:
            await self._notify_booking(settlement.authorization.booking_id, "traveler", reason)
        return {
            "trip_id": trip_id,
            "bookings": [self._result(s) for s in settlements],
            "reliability_penalty": penalty,
            "reliability_score": reliability.score,
            "cancellation_count": reliability.cancellation_count,
        }

    # ------------------------------------------------------------------
    # unfinished settlements
    # ------------------------------------------------------------------

    async def pending_settlement_started_at(self, authorization_id: int) -> Optional[datetime]:
        """When an unfinished settlement was recorded, or None."""
        async with self._uow_factory(readonly=True) as uow:
            refund = await self._pending_refund(uow, authorization_id)
        return refund.created_at if refund is not None else None

    async def complete_settlement(self, authorization_id: int, gateway_reference: Optional[str] = None
                                  ) -> dict[str, Any]:
        """
        Finish a settlement whose money already moved at the gateway.

        The decision recorded before the gateway call is replayed as-is; it is
        never re-classified against the current clock.
        """
        async with self._uow_factory(readonly=True) as uow:
            authorization = await uow.authorizations.get_by_id(authorization_id)
            if authorization is None:
                raise NotFoundException("payment_authorization", authorization_id)
            intent = await self._recorded_intent(uow, authorization_id)
        if intent is None:
            raise InvalidStateException("no unfinished cancellation settlement",
                                        current_status=authorization.status.value)

        payload = intent.payload
        cancellation_type = payload["cancellation_type"]
        settlement = _Settlement(authorization, _decision_from(payload), gateway_reference)
        async with self._uow_factory() as uow:
            await self._apply(uow, settlement, intent.user_id, payload.get("reason"),
                              cancellation_type=cancellation_type)

        logger.warning("cancellation_settlement_completed", authorization_id=authorization_id,
                       booking_id=authorization.booking_id, bucket=payload["bucket"])
        await self._notify_booking(authorization.booking_id, cancellation_type, payload.get("reason"))
        return self._result(settlement)

    async def abandon_settlement(self, authorization_id: int, error: str) -> None:
        """Mark pending settlement rows failed; the gateway never moved the money."""
        async with self._uow_factory() as uow:
            rows = await self._pending_rows(uow, authorization_id)
            for row in rows:
                row.set_status(TransactionStatus.FAILED, self._clock())
                row.description = f"{row.description} [abandoned: {error}]"
                await uow.transactions.update(row)
        if rows:
            logger.warning("cancellation_settlement_abandoned", authorization_id=authorization_id, error=error)

    # ------------------------------------------------------------------
    # steps
    # ------------------------------------------------------------------

    async def _check_allowance(self, traveler_id: int, now: datetime, limit: int, window_days: int) -> None:
        since = now - timedelta(days=window_days)
        async with self._uow_factory(readonly=True) as uow:
            used = await uow.cancellation_attempts.count_allowed(traveler_id, AttemptType.TRIP_CANCEL, since)
            oldest = await uow.cancellation_attempts.oldest_allowed_since(traveler_id, AttemptType.TRIP_CANCEL,
                                                                           since)
        if used >= limit:
            next_allowed = (oldest + timedelta(days=window_days)).isoformat() if oldest else None
            raise LimitExceededException(
                f"traveler may cancel at most {limit} trip(s) with bookings every {window_days} days",
                limit=limit,
                window_days=window_days,
                next_allowed_at=next_allowed,
            )

    async def _decide(self, actor: CancellationActor, authorization: PaymentAuthorization,
                      snapshot: BookingSnapshot, *, no_show: bool = False) -> CancellationDecision:
        departure = snapshot.trip_departure_at or authorization.trip_departure_at
        hours = deadlines.hours_until(self._clock(), departure)
        policy = await self._config.cancellation_policy()
        return classify(actor, authorization, hours, policy, no_show=no_show)

    async def _begin_settlement(self, authorization: PaymentAuthorization, decision: CancellationDecision,
                                actor_id: Optional[int], reason: Optional[str], *, cancellation_type: str) -> None:
        """Pending ledger rows plus the recorded decision, committed before any money moves."""
        now = self._clock()
        async with self._uow_factory() as uow:
            current = await self._same_version(uow, authorization)
            if await self._pending_refund(uow, current.id) is not None:
                raise ConflictException("a cancellation settlement is already in progress",
                                        resource="payment_authorization", resource_id=current.id)
            for row in self._ledger_rows(current, decision, now):
                await uow.transactions.create(row)
            await record_event(uow, EventType.REFUND_INITIATED, current, user_id=actor_id,
                               payload={"cancellation_type": cancellation_type, "reason": reason,
                                        **decision.to_dict()})

    async def _move_money(self, authorization: PaymentAuthorization, decision: CancellationDecision) -> _Settlement:
        """Gateway side of a settlement; runs outside any unit of work."""
        captured = authorization.status == AuthorizationStatus.CAPTURED
        try:
            reference = await self._gateway_settle(authorization, decision.split, captured)
        except GatewayRejectedException as exc:
            await self.abandon_settlement(authorization.id, exc.message)
            raise
        except GatewayUnavailableException as exc:
            # An unanswered void or capture may have landed; reconciliation looks at it.
            # Refunds replay safely under the same idempotency key.
            if captured:
                await self.abandon_settlement(authorization.id, exc.message)
            raise
        return _Settlement(authorization, decision, reference)

    async def _gateway_settle(self, authorization: PaymentAuthorization, split: RefundSplit,
                              captured: bool) -> Optional[str]:
        handle = authorization.gateway_handle
        if not handle:
            return None

        if captured:
            if split.refund_cents == 0:
                return None
            status = await self._gateway.refund(
                handle, split.refund_cents,
                idempotency_key=idempotency_key("refund", authorization.id, split.refund_cents),
            )
            return status.reference or status.handle

        keep = split.amount_cents - split.refund_cents
        if keep == 0:
            status = await self._gateway.cancel(handle, idempotency_key=idempotency_key("cancel", authorization.id))
        else:
            # Partial capture keeps compensation + fees; the rest of the hold is released to the payer
            status = await self._gateway.capture(
                handle, keep, idempotency_key=idempotency_key("cancel-capture", authorization.id, keep)
            )
        return status.reference or status.handle

    async def _apply(self, uow: AbstractUnitOfWork, settlement: _Settlement, actor_id: Optional[int],
                     reason: Optional[str], *, cancellation_type: str) -> None:
        decision = settlement.decision
        split = decision.split
        now = self._clock()

        current = await self._same_version(uow, settlement.authorization)
        rows = await self._pending_rows(uow, current.id)
        if not rows:
            raise ConflictException("cancellation settlement is no longer pending",
                                    resource="payment_authorization", resource_id=current.id)

        was_captured = current.status == AuthorizationStatus.CAPTURED
        if not was_captured:
            current.cancel(reason or f"{cancellation_type}_cancellation", now=now)
            current = await uow.authorizations.update(current)
            auth_tx = await uow.transactions.get_for_authorization(current.id, TransactionType.AUTHORIZATION)
            if auth_tx is not None:
                auth_tx.set_status(TransactionStatus.CANCELLED, now)
                await uow.transactions.update(auth_tx)

        for row in rows:
            row.gateway_reference = settlement.gateway_reference
            row.set_status(TransactionStatus.COMPLETED, now)
            await uow.transactions.update(row)
        if split.compensation_cents:
            await record_event(uow, EventType.COMPENSATION_RECORDED, current, user_id=current.payee_id,
                               payload={"compensation_cents": split.compensation_cents,
                                        "bucket": decision.bucket.value})

        escrow = await uow.escrows.get_for_authorization(current.id)
        if escrow is not None:
            escrow.settle_cancellation(split.refund_cents, split.compensation_cents,
                                       notes=f"{cancellation_type}:{decision.bucket.value}", now=now)
            await uow.escrows.update(escrow)

        await self._queue.cancel_for_authorization(uow, current.id, f"{cancellation_type}_cancellation")

        if not was_captured:
            await emit(uow, AuthorizationCancelled(
                authorization_id=current.id,
                booking_id=current.booking_id,
                amount_cents=current.amount_cents,
                currency=current.currency,
                actor_id=actor_id,
                reason=reason,
            ), extra={"cancellation_type": cancellation_type, "bucket": decision.bucket.value})
        await emit(uow, RefundIssued(
            authorization_id=current.id,
            booking_id=current.booking_id,
            amount_cents=split.refund_cents,
            currency=current.currency,
            actor_id=actor_id,
            reason=decision.bucket.value,
            refund_percentage=split.refund_percentage,
            compensation_cents=split.compensation_cents,
            compensation_percentage=split.compensation_percentage,
        ), extra=decision.to_dict())
        settlement.authorization = current

    async def _notify_booking(self, booking_id: int, cancellation_type: str, reason: Optional[str]) -> None:
        """Booking status follows the committed payment outcome; failures are logged only."""
        try:
            await self._booking.mark_cancelled(booking_id, cancellation_type, reason)
        except CollaboratorError as exc:
            logger.warning("booking_callback_failed", callback="mark_cancelled", booking_id=booking_id,
                           error=str(exc))

    async def _record_denied(self, user_id: int, attempt_type: AttemptType, exc: Exception, *,
                             booking_id: Optional[int] = None, trip_id: Optional[int] = None) -> None:
        denial = getattr(exc, "message", None) or str(exc)
        async with self._uow_factory() as uow:
            await uow.cancellation_attempts.record(CancellationAttempt(
                user_id=user_id, attempt_type=attempt_type, allowed=False, booking_id=booking_id,
                trip_id=trip_id, denial_reason=denial[:500], created_at=self._clock(),
            ))
        logger.warning("cancellation_denied", user_id=user_id, attempt_type=attempt_type.value,
                       booking_id=booking_id, trip_id=trip_id, error=denial)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _live_authorization(self, booking_id: int) -> PaymentAuthorization:
        async with self._uow_factory(readonly=True) as uow:
            authorization = await uow.authorizations.get_latest_for_booking(booking_id)
            refund = None
            if authorization is not None and authorization.status == AuthorizationStatus.CAPTURED:
                refund = await uow.transactions.get_for_authorization(authorization.id, TransactionType.REFUND)
        if authorization is None:
            raise NotFoundException("payment_authorization", f"booking:{booking_id}")
        if authorization.status in _CLOSED:
            raise InvalidStateException(f"booking payment is already {authorization.status.value}",
                                        current_status=authorization.status.value)
        if refund is not None and refund.status == TransactionStatus.COMPLETED:
            raise InvalidStateException("captured payment has already been settled by a cancellation",
                                        current_status=authorization.status.value)
        return authorization

    @staticmethod
    def _actor_for(snapshot: BookingSnapshot, actor_id: int) -> CancellationActor:
        if actor_id == snapshot.sender_id:
            return CancellationActor.SENDER
        if actor_id == snapshot.traveler_id:
            return CancellationActor.TRAVELER
        raise UnauthorizedActorException(actor_id, required="sender or traveler")

    @staticmethod
    def _result(settlement: _Settlement) -> dict[str, Any]:
        authorization = settlement.authorization
        return {
            "booking_id": authorization.booking_id,
            "authorization_id": authorization.id,
            "authorization_status": authorization.status.value,
            **settlement.decision.to_dict(),
        }

    @staticmethod
    async def _same_version(uow: AbstractUnitOfWork, read: PaymentAuthorization) -> PaymentAuthorization:
        current = await uow.authorizations.get_by_id(read.id)
        if current is None:
            raise NotFoundException("payment_authorization", read.id)
        if current.version != read.version:
            raise ConflictException("authorization was modified concurrently",
                                    resource="payment_authorization", resource_id=read.id)
        return current

    @staticmethod
    async def _pending_refund(uow: AbstractUnitOfWork, authorization_id: int) -> Optional[Transaction]:
        refund = await uow.transactions.get_for_authorization(authorization_id, TransactionType.REFUND)
        return refund if refund is not None and refund.status == TransactionStatus.PENDING else None

    async def _pending_rows(self, uow: AbstractUnitOfWork, authorization_id: int) -> list[Transaction]:
        refund = await self._pending_refund(uow, authorization_id)
        if refund is None:
            return []
        rows = [refund]
        compensation = await uow.transactions.get_for_authorization(authorization_id, TransactionType.COMPENSATION)
        if compensation is not None and compensation.status == TransactionStatus.PENDING:
            rows.append(compensation)
        return rows

    async def _recorded_intent(self, uow: AbstractUnitOfWork, authorization_id: int) -> Optional[EventLogEntry]:
        if await self._pending_refund(uow, authorization_id) is None:
            return None
        entries = await uow.events.timeline(authorization_id)
        intents = [e for e in entries if e.event_type == EventType.REFUND_INITIATED]
        return intents[-1] if intents else None

    @staticmethod
    def _ledger_rows(authorization: PaymentAuthorization, decision: CancellationDecision,
                     now: datetime) -> list[Transaction]:
        split = decision.split
        rows = [Transaction(
            id=None,
            authorization_id=authorization.id,
            booking_id=authorization.booking_id,
            user_id=authorization.payer_id,
            type=TransactionType.REFUND,
            status=TransactionStatus.PENDING,
            amount_cents=split.refund_cents,
            currency=authorization.currency,
            gateway_fee_cents=split.retained_cents,
            net_amount_cents=split.refund_cents,
            description=f"{decision.bucket.value} cancellation refund ({split.refund_percentage}%)",
            created_at=now,
        )]
        if split.compensation_cents:
            rows.append(Transaction(
                id=None,
                authorization_id=authorization.id,
                booking_id=authorization.booking_id,
                user_id=authorization.payee_id,
                type=TransactionType.COMPENSATION,
                status=TransactionStatus.PENDING,
                amount_cents=split.compensation_cents,
                currency=authorization.currency,
                net_amount_cents=split.compensation_cents,
                description=f"{decision.bucket.value} cancellation compensation ({split.compensation_percentage}%)",
                created_at=now,
            ))
        return rows


def _decision_from(payload: dict[str, Any]) -> CancellationDecision:
    """Rebuild a decision from its ``to_dict`` form."""
    split = RefundSplit(
        amount_cents=payload["amount_cents"],
        refund_cents=payload["refund_cents"],
        compensation_cents=payload["compensation_cents"],
        retained_cents=payload["retained_cents"],
        refund_percentage=payload["refund_percentage"],
        compensation_percentage=payload["compensation_percentage"],
    )
    return CancellationDecision(CancellationBucket(payload["bucket"]), split, payload["hours_before_departure"])
