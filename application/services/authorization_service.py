"""
Application service for the deferred-capture authorization lifecycle.

Every operation follows the same shape: read the aggregate in one unit of
work, talk to the gateway with no unit of work open, then write the outcome
in a second unit of work that re-checks the version read first. Booking
callbacks run after commit and never undo a money-state change.
"""
from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from application.dtos.payments import GatewayAuthorizeRequest
from application.ports.collaborators import BookingCollaborator, CollaboratorError
from application.ports.payment_gateway import PaymentGateway
from application.services.configuration_service import PaymentConfigurationService
from application.services.event_recorder import emit, record_event
from application.services.job_queue import JobQueue
from core.logging_config import get_logger
from domain.audit import EventType
from domain.authorization import deadlines, money
from domain.authorization.entity import (
    AuthorizationStatus,
    CAPTURABLE_STATUSES,
    CaptureReason,
    PaymentAuthorization,
)
from domain.authorization.events import (
    AuthorizationAwaitingSetup,
    AuthorizationCancelled,
    AuthorizationConfirmed,
    AuthorizationCreated,
    AuthorizationExpired,
    CaptureFailed,
    PaymentCaptured,
)
from domain.common.exceptions import (
    ConflictException,
    GatewayRejectedException,
    GatewayUnavailableException,
    InvalidStateException,
    NotFoundException,
    UnauthorizedActorException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.ledger import EscrowAccount, Transaction, TransactionStatus, TransactionType
from domain.scheduling import JobType, backoff_delay
from shared.clock import utcnow

logger = get_logger(__name__)

CONFIRMATION_JOB_TYPES = (JobType.PAYMENT_EXPIRY, JobType.CONFIRMATION_REMINDER)


def idempotency_key(*parts: Any) -> str:
    """Stable key derived from business identifiers (no timestamp)"""
    base = "|".join(str(p) for p in parts)
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


@dataclass
class CaptureOutcome:
    authorization: PaymentAuthorization
    already_captured: bool = False
    transaction_id: Optional[int] = None


class AuthorizationService:
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
    # create / destination setup
    # ------------------------------------------------------------------

    async def create_for_booking(self, booking_id: int, actor_id: Optional[int] = None) -> PaymentAuthorization:
        """Reserve the booking amount; enters pending_gateway_setup when the payee is not payable yet."""
        snapshot = await self._booking.get_booking(booking_id)
        if actor_id is not None and actor_id not in (snapshot.sender_id, snapshot.traveler_id):
            raise UnauthorizedActorException(actor_id, required="sender or traveler")

        async with self._uow_factory(readonly=True) as uow:
            existing = await uow.authorizations.get_active_for_booking(booking_id)
            previous = await uow.authorizations.get_latest_for_booking(booking_id)
        if existing is not None:
            raise ConflictException(
                "booking already has an active payment authorization",
                resource="payment_authorization",
                resource_id=existing.id,
            )

        now = self._clock()
        fee = money.platform_fee(
            snapshot.amount_cents,
            await self._config.get_float("platform_fee_percentage"),
            await self._config.get_int("minimum_platform_fee_cents"),
        )
        deadline = deadlines.confirmation_deadline(now, await self._config.get_int("confirmation_deadline_hours"))

        handle: Optional[str] = None
        status = AuthorizationStatus.PENDING_GATEWAY_SETUP
        if snapshot.destination_account:
            handle = await self._authorize_at_gateway(
                booking_id=booking_id,
                amount_cents=snapshot.amount_cents,
                currency=snapshot.currency,
                destination=snapshot.destination_account,
                fee_cents=fee,
                payer_id=snapshot.sender_id,
                # A re-authorization after a cancelled one must not replay the old intent
                generation=f"after:{previous.id}" if previous else "first",
            )
            status = AuthorizationStatus.PENDING

        authorization = PaymentAuthorization(
            id=None,
            booking_id=booking_id,
            payer_id=snapshot.sender_id,
            payee_id=snapshot.traveler_id,
            amount_cents=snapshot.amount_cents,
            currency=snapshot.currency,
            platform_fee_cents=fee,
            status=status,
            confirmation_deadline=deadline,
            gateway_handle=handle,
            destination_account=snapshot.destination_account,
            trip_departure_at=snapshot.trip_departure_at,
            created_at=now,
            updated_at=now,
            metadata={"trip_id": snapshot.trip_id},
        )

        try:
            async with self._uow_factory() as uow:
                authorization = await uow.authorizations.create(authorization)
                await uow.transactions.create(
                    Transaction(
                        id=None,
                        authorization_id=authorization.id,
                        booking_id=booking_id,
                        user_id=authorization.payer_id,
                        type=TransactionType.AUTHORIZATION,
                        status=TransactionStatus.AUTHORIZED if handle else TransactionStatus.PENDING,
                        amount_cents=authorization.amount_cents,
                        currency=authorization.currency,
                        platform_fee_cents=fee,
                        net_amount_cents=authorization.payee_amount_cents,
                        gateway_reference=handle,
                        description="Funds reserved with manual capture",
                        created_at=now,
                    )
                )
                await uow.escrows.create(
                    EscrowAccount(
                        id=None,
                        booking_id=booking_id,
                        authorization_id=authorization.id,
                        amount_held_cents=authorization.amount_cents,
                        currency=authorization.currency,
                    )
                )
                await self._schedule_confirmation_jobs(uow, authorization)
                event_cls = AuthorizationCreated if handle else AuthorizationAwaitingSetup
                await emit(uow, event_cls(
                    authorization_id=authorization.id,
                    booking_id=booking_id,
                    amount_cents=authorization.amount_cents,
                    currency=authorization.currency,
                    actor_id=actor_id,
                ), extra={"platform_fee_cents": fee, "gateway_handle": handle})
        except ConflictException:
            # Lost the race to another creator; release our reservation
            if handle:
                await self._best_effort_gateway_cancel(handle, booking_id=booking_id)
            raise

        logger.info(
            "authorization_created",
            authorization_id=authorization.id,
            booking_id=booking_id,
            status=authorization.status.value,
            amount_cents=authorization.amount_cents,
            platform_fee_cents=fee,
        )
        await self._callback("mark_payment_authorized", booking_id, authorization.id)
        return authorization

    async def attach_destination(self, authorization_id: int, destination_account: str) -> PaymentAuthorization:
        """pending_gateway_setup -> pending once the payee's account is payable."""
        authorization = await self._load(authorization_id)
        if authorization.status != AuthorizationStatus.PENDING_GATEWAY_SETUP:
            raise InvalidStateException(
                "authorization is not waiting for gateway setup",
                current_status=authorization.status.value,
            )
        handle = await self._authorize_at_gateway(
            booking_id=authorization.booking_id,
            amount_cents=authorization.amount_cents,
            currency=authorization.currency,
            destination=destination_account,
            fee_cents=authorization.platform_fee_cents,
            payer_id=authorization.payer_id,
            generation=f"authorization:{authorization.id}",
        )
        now = self._clock()
        deadline = deadlines.confirmation_deadline(now, await self._config.get_int("confirmation_deadline_hours"))

        async with self._uow_factory() as uow:
            current = await self._reload_same_version(uow, authorization)
            current.attach_gateway_handle(handle, destination_account, confirmation_deadline=deadline, now=now)
            current = await uow.authorizations.update(current)
            await self._set_authorization_transaction(uow, current, TransactionStatus.AUTHORIZED, reference=handle)
            await self._queue.cancel_for_authorization(uow, current.id, "gateway_setup_completed",
                                                       CONFIRMATION_JOB_TYPES)
            await self._schedule_confirmation_jobs(uow, current)
            await emit(uow, AuthorizationCreated(
                authorization_id=current.id,
                booking_id=current.booking_id,
                amount_cents=current.amount_cents,
                currency=current.currency,
                reason="gateway_setup_completed",
            ), extra={"gateway_handle": handle})

        logger.info("authorization_destination_attached", authorization_id=current.id, booking_id=current.booking_id)
        return current

    async def activate_payee(self, payee_id: int, destination_account: str) -> list[PaymentAuthorization]:
        """Attach a newly payable account to every authorization waiting on this payee."""
        async with self._uow_factory(readonly=True) as uow:
            waiting = await uow.authorizations.list_payee_pending_setup(payee_id)
        activated = []
        for authorization in waiting:
            try:
                activated.append(await self.attach_destination(authorization.id, destination_account))
            except (GatewayRejectedException, GatewayUnavailableException, ConflictException) as exc:
                logger.warning(
                    "authorization_activation_failed",
                    authorization_id=authorization.id,
                    payee_id=payee_id,
                    error=exc.message,
                )
        return activated

    # ------------------------------------------------------------------
    # confirm
    # ------------------------------------------------------------------

    async def confirm(self, authorization_id: int, actor_id: int) -> PaymentAuthorization:
        authorization = await self._load(authorization_id)
        if actor_id != authorization.payer_id:
            raise UnauthorizedActorException(actor_id, required="payer")
        now = self._clock()
        if not authorization.can_be_confirmed(now):
            if authorization.status == AuthorizationStatus.PENDING:
                raise InvalidStateException(
                    "confirmation deadline has passed",
                    current_status=authorization.status.value,
                    details={"confirmation_deadline": authorization.confirmation_deadline.isoformat()},
                )
            raise InvalidStateException(
                f"cannot confirm an authorization in status {authorization.status.value}",
                current_status=authorization.status.value,
            )

        remote = await self._gateway.retrieve(authorization.gateway_handle)
        if not remote.is_capturable:
            raise InvalidStateException(
                "payment method has not been authorized at the gateway yet",
                current_status=authorization.status.value,
                details={"gateway_status": remote.status},
            )

        departure = await self._current_departure(authorization)
        window = deadlines.capture_window(
            now,
            departure,
            lead_hours=await self._config.get_int("auto_capture_hours_before_trip"),
            max_hold_days=await self._config.get_int("max_hold_days"),
            safety_margin_hours=await self._config.get_int("auto_capture_safety_margin_hours"),
        )
        auto_capture_enabled = await self._config.get_bool("enable_auto_capture")
        reminder_hours = await self._config.get_int("payment_reminder_hours_before_capture")
        max_attempts = await self._config.get_int("max_capture_attempts")

        async with self._uow_factory() as uow:
            current = await self._reload_same_version(uow, authorization)
            current.trip_departure_at = departure
            current.confirm(expires_at=window.expires_at, auto_capture_at=window.auto_capture_at, now=now)
            current = await uow.authorizations.update(current)

            escrow = await uow.escrows.get_for_authorization(current.id)
            if escrow is not None:
                escrow.hold(now)
                await uow.escrows.update(escrow)
            await self._set_authorization_transaction(uow, current, TransactionStatus.CONFIRMED)

            await self._queue.cancel_for_authorization(uow, current.id, "authorization_confirmed",
                                                       CONFIRMATION_JOB_TYPES)
            if auto_capture_enabled:
                job = await self._queue.schedule(uow, JobType.AUTO_CAPTURE, current, window.auto_capture_at,
                                                 max_attempts=max_attempts)
                if job is not None:
                    await record_event(uow, EventType.CAPTURE_SCHEDULED, current,
                                       payload={"job_id": job.id, "scheduled_at": job.scheduled_at.isoformat()})
                await self._queue.schedule(uow, JobType.PAYMENT_REMINDER, current,
                                           window.auto_capture_at - timedelta(hours=reminder_hours))
            await self._queue.schedule(uow, JobType.PAYMENT_EXPIRY, current, window.expires_at,
                                       payload={"expiry_type": "capture"})
            await emit(uow, AuthorizationConfirmed(
                authorization_id=current.id,
                booking_id=current.booking_id,
                amount_cents=current.amount_cents,
                currency=current.currency,
                actor_id=actor_id,
            ), extra={
                "expires_at": window.expires_at.isoformat(),
                "auto_capture_at": window.auto_capture_at.isoformat(),
            })

        logger.info(
            "authorization_confirmed",
            authorization_id=current.id,
            booking_id=current.booking_id,
            expires_at=window.expires_at.isoformat(),
            auto_capture_at=window.auto_capture_at.isoformat(),
        )
        await self._callback("mark_payment_confirmed", current.booking_id, current.id)
        return current

    # ------------------------------------------------------------------
    # capture
    # ------------------------------------------------------------------

    async def capture(
        self,
        authorization_id: int,
        reason: CaptureReason = CaptureReason.MANUAL,
        *,
        actor_id: Optional[int] = None,
        schedule_retry: bool = True,
    ) -> CaptureOutcome:
        """
        Capture the full authorized amount.

        Idempotent: an already captured authorization is returned unchanged
        without touching the gateway. A gateway failure is recorded on the
        authorization (status failed, attempts + 1) before the typed error is
        raised; transient failures get a backoff retry job when
        ``schedule_retry`` is set and attempts remain.
        """
        reason = CaptureReason(reason)
        authorization = await self._load(authorization_id)
        if reason == CaptureReason.MANUAL and actor_id is not None and actor_id != authorization.payer_id:
            raise UnauthorizedActorException(actor_id, required="payer")
        if authorization.status == AuthorizationStatus.CAPTURED:
            logger.info("capture_already_done", authorization_id=authorization.id)
            return CaptureOutcome(authorization, already_captured=True)

        now = self._clock()
        if authorization.status not in CAPTURABLE_STATUSES:
            raise InvalidStateException(
                f"cannot capture an authorization in status {authorization.status.value}",
                current_status=authorization.status.value,
            )
        if authorization.capture_window_elapsed(now):
            raise InvalidStateException(
                "capture window has expired",
                current_status=authorization.status.value,
                details={"expires_at": authorization.expires_at.isoformat()},
            )

        # A previous attempt may have succeeded remotely before we lost the response
        if authorization.status == AuthorizationStatus.FAILED:
            try:
                remote = await self._gateway.retrieve(authorization.gateway_handle)
            except GatewayUnavailableException:
                remote = None
            if remote is not None and remote.is_captured:
                return await self.record_gateway_capture(authorization, reason, now, actor_id,
                                                         reference=remote.handle, started=time.monotonic(),
                                                         amount_cents=remote.amount_received_cents)

        started = time.monotonic()
        try:
            result = await self._gateway.capture(
                authorization.gateway_handle,
                authorization.amount_cents,
                idempotency_key=idempotency_key("capture", authorization.id, authorization.amount_cents,
                                                authorization.capture_attempts),
            )
        except (GatewayRejectedException, GatewayUnavailableException) as exc:
            await self._record_capture_failure(authorization, exc, now, actor_id, schedule_retry, started)
            raise
        return await self.record_gateway_capture(authorization, reason, now, actor_id,
                                                 reference=result.reference or result.handle, started=started)

    async def capture_on_pickup(self, booking_id: int, actor_id: Optional[int] = None) -> dict[str, Any]:
        """Capture when the traveler confirms pickup, if enabled."""
        if not await self._config.get_bool("capture_on_pickup_confirmation"):
            return {"captured": False, "skipped": True, "reason": "capture_on_pickup_disabled"}
        async with self._uow_factory(readonly=True) as uow:
            authorization = await uow.authorizations.get_latest_for_booking(booking_id)
        if authorization is None:
            raise NotFoundException("payment_authorization", f"booking:{booking_id}")
        if actor_id is not None and actor_id not in (authorization.payer_id, authorization.payee_id):
            raise UnauthorizedActorException(actor_id, required="booking party")
        if authorization.status not in CAPTURABLE_STATUSES | {AuthorizationStatus.CAPTURED}:
            return {
                "captured": False,
                "skipped": True,
                "reason": "not_capturable",
                "current_status": authorization.status.value,
            }
        outcome = await self.capture(authorization.id, CaptureReason.AUTO_PICKUP)
        return {
            "captured": True,
            "already_captured": outcome.already_captured,
            "authorization_id": outcome.authorization.id,
        }

    async def record_gateway_capture(
        self,
        authorization: PaymentAuthorization,
        reason: CaptureReason,
        now: datetime,
        actor_id: Optional[int],
        *,
        reference: Optional[str],
        started: float,
        amount_cents: Optional[int] = None,
    ) -> CaptureOutcome:
        """
        Persist a capture the gateway already performed.

        ``amount_cents`` is what the gateway reports as received; None means
        the full authorized amount. A partial amount is booked as-is and
        flagged for operators.
        """
        captured = authorization.amount_cents if amount_cents is None else amount_cents
        platform_fee = min(authorization.platform_fee_cents, captured)
        gateway_fee = money.gateway_fee(
            captured,
            await self._config.get_float("gateway_fee_percentage"),
            await self._config.get_int("gateway_fixed_fee_cents"),
        )
        partial = captured != authorization.amount_cents
        async with self._uow_factory() as uow:
            current = await uow.authorizations.get_by_id(authorization.id)
            if current is None:
                raise NotFoundException("payment_authorization", authorization.id)
            if current.status == AuthorizationStatus.CAPTURED:
                return CaptureOutcome(current, already_captured=True)
            if current.version != authorization.version:
                raise ConflictException(
                    "authorization changed while capturing",
                    resource="payment_authorization",
                    resource_id=authorization.id,
                )
            if reason == CaptureReason.RECONCILIATION:
                current.reconcile_captured(now=now)
            else:
                current.mark_captured(reason, now=now)
            current = await uow.authorizations.update(current)

            transaction = await uow.transactions.create(
                Transaction(
                    id=None,
                    authorization_id=current.id,
                    booking_id=current.booking_id,
                    user_id=current.payee_id,
                    type=TransactionType.CAPTURE,
                    status=TransactionStatus.CAPTURED,
                    amount_cents=captured,
                    currency=current.currency,
                    platform_fee_cents=platform_fee,
                    gateway_fee_cents=gateway_fee,
                    net_amount_cents=captured - platform_fee,
                    gateway_reference=reference,
                    description=f"Captured ({reason.value})",
                    created_at=now,
                    processed_at=now,
                )
            )
            await self._set_authorization_transaction(uow, current, TransactionStatus.COMPLETED)
            escrow = await uow.escrows.get_for_authorization(current.id)
            if escrow is not None:
                escrow.release(captured - platform_fee, notes=f"capture:{reason.value}", now=now)
                await uow.escrows.update(escrow)
            await self._queue.cancel_for_authorization(uow, current.id, "payment_captured")
            await emit(uow, PaymentCaptured(
                authorization_id=current.id,
                booking_id=current.booking_id,
                amount_cents=captured,
                currency=current.currency,
                actor_id=actor_id,
                reason=reason.value,
            ), extra={"transaction_id": transaction.id, "gateway_reference": reference,
                      "authorized_cents": current.amount_cents},
                requires_attention=partial,
                processing_time_ms=int((time.monotonic() - started) * 1000))

        logger.info(
            "payment_captured",
            authorization_id=current.id,
            booking_id=current.booking_id,
            amount_cents=captured,
            partial=partial,
            reason=reason.value,
        )
        await self._callback("mark_payment_captured", current.booking_id, current.id)
        return CaptureOutcome(current, transaction_id=transaction.id)

    async def _record_capture_failure(
        self,
        authorization: PaymentAuthorization,
        exc: GatewayRejectedException | GatewayUnavailableException,
        now: datetime,
        actor_id: Optional[int],
        schedule_retry: bool,
        started: float,
    ) -> None:
        max_attempts = await self._config.get_int("max_capture_attempts")
        base = await self._config.get_int("retry_backoff_base_minutes")
        cap = await self._config.get_int("retry_backoff_cap_minutes")
        transient = isinstance(exc, GatewayUnavailableException)

        async with self._uow_factory() as uow:
            current = await self._reload_same_version(uow, authorization)
            attempts = current.record_capture_failure(exc.message, now=now)
            current = await uow.authorizations.update(current)

            retry_job = None
            if schedule_retry and transient and attempts < max_attempts:
                retry_at = now + backoff_delay(attempts, base_minutes=base, cap_minutes=cap)
                if current.expires_at is None or retry_at < current.expires_at:
                    retry_job = await self._queue.schedule(
                        uow, JobType.AUTO_CAPTURE, current, retry_at,
                        payload={"retry": True, "capture_attempt": attempts + 1},
                        max_attempts=max_attempts,
                    )
            exhausted = attempts >= max_attempts
            await emit(uow, CaptureFailed(
                authorization_id=current.id,
                booking_id=current.booking_id,
                amount_cents=current.amount_cents,
                currency=current.currency,
                actor_id=actor_id,
                reason=exc.message,
                attempts=attempts,
                will_retry=retry_job is not None,
            ), success=False, error=exc.message, requires_attention=exhausted or not transient,
                extra={"error_type": exc.error_type, "retry_job_id": retry_job.id if retry_job else None},
                processing_time_ms=int((time.monotonic() - started) * 1000))

        logger.warning(
            "payment_capture_failed",
            authorization_id=authorization.id,
            attempts=attempts,
            error_type=exc.error_type,
            error=exc.message,
            will_retry=retry_job is not None,
        )

    # ------------------------------------------------------------------
    # cancel / expire
    # ------------------------------------------------------------------

    async def cancel(
        self,
        authorization_id: int,
        actor_id: Optional[int],
        reason: Optional[str] = None,
        *,
        system: bool = False,
    ) -> PaymentAuthorization:
        authorization = await self._load(authorization_id)
        if not system and actor_id not in (authorization.payer_id, authorization.payee_id):
            raise UnauthorizedActorException(actor_id, required="payer or payee")
        if authorization.is_terminal:
            raise InvalidStateException(
                f"cannot cancel an authorization in status {authorization.status.value}",
                current_status=authorization.status.value,
            )

        if authorization.gateway_handle:
            await self._gateway.cancel(
                authorization.gateway_handle,
                idempotency_key=idempotency_key("cancel", authorization.id),
            )

        now = self._clock()
        async with self._uow_factory() as uow:
            current = await self._reload_same_version(uow, authorization)
            current.cancel(reason, now=now)
            current = await uow.authorizations.update(current)
            await self._settle_voided(uow, current, now, notes=f"cancelled:{reason or 'unspecified'}")
            await self._queue.cancel_for_authorization(uow, current.id, "authorization_cancelled")
            await emit(uow, AuthorizationCancelled(
                authorization_id=current.id,
                booking_id=current.booking_id,
                amount_cents=current.amount_cents,
                currency=current.currency,
                actor_id=actor_id,
                reason=reason,
            ), extra={"by_system": system})

        logger.info("authorization_cancelled", authorization_id=current.id, booking_id=current.booking_id,
                    actor_id=actor_id, reason=reason)
        await self._callback("mark_payment_cancelled", current.booking_id, current.id)
        return current

    async def expire(self, authorization_id: int, *, expiry_type: str, note: Optional[str] = None
                     ) -> Optional[PaymentAuthorization]:
        """
        Expire when the named deadline has elapsed.

        Returns None when the authorization moved on and there is nothing to
        expire. The remote cancel is best-effort: local state expires even
        if the gateway cannot be reached.
        """
        authorization = await self._load(authorization_id)
        now = self._clock()
        if not self._expiry_applies(authorization, expiry_type, now):
            return None

        remote_cancelled = True
        if authorization.gateway_handle:
            remote_cancelled = await self._best_effort_gateway_cancel(
                authorization.gateway_handle, booking_id=authorization.booking_id,
                key=idempotency_key("expire", authorization.id),
            )

        reason = note or (
            "confirmation deadline missed" if expiry_type == "confirmation" else "capture window elapsed"
        )
        async with self._uow_factory() as uow:
            current = await self._reload_same_version(uow, authorization)
            current.expire(now=now, note=reason)
            current = await uow.authorizations.update(current)
            await self._settle_voided(uow, current, now, notes=f"expired:{expiry_type}")
            await self._queue.cancel_for_authorization(uow, current.id, "authorization_expired")
            await emit(uow, AuthorizationExpired(
                authorization_id=current.id,
                booking_id=current.booking_id,
                amount_cents=current.amount_cents,
                currency=current.currency,
                reason=reason,
            ), requires_attention=not remote_cancelled,
                extra={"expiry_type": expiry_type, "gateway_cancelled": remote_cancelled})

        logger.info("authorization_expired", authorization_id=current.id, booking_id=current.booking_id,
                    expiry_type=expiry_type, gateway_cancelled=remote_cancelled)
        await self._callback("mark_payment_expired", current.booking_id, current.id)
        return current

    @staticmethod
    def _expiry_applies(authorization: PaymentAuthorization, expiry_type: str, now: datetime) -> bool:
        if expiry_type == "confirmation":
            return (
                authorization.status in (AuthorizationStatus.PENDING, AuthorizationStatus.PENDING_GATEWAY_SETUP)
                and authorization.confirmation_elapsed(now)
            )
        return authorization.status in CAPTURABLE_STATUSES and authorization.capture_window_elapsed(now)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    async def get(self, authorization_id: int, actor_id: Optional[int] = None) -> PaymentAuthorization:
        authorization = await self._load(authorization_id)
        if actor_id is not None and actor_id not in (authorization.payer_id, authorization.payee_id):
            raise UnauthorizedActorException(actor_id, required="payer or payee")
        return authorization

    async def get_client_secret(self, authorization_id: int, actor_id: int) -> dict[str, Any]:
        authorization = await self._load(authorization_id)
        if actor_id != authorization.payer_id:
            raise UnauthorizedActorException(actor_id, required="payer")
        if not authorization.gateway_handle:
            raise InvalidStateException(
                "payment is waiting for the traveler's payout account",
                current_status=authorization.status.value,
            )
        remote = await self._gateway.retrieve(authorization.gateway_handle)
        threshold = await self._config.get_int("large_amount_threshold_cents")
        enabled = await self._config.get_bool("require_3ds_for_large_amounts")
        return {
            "authorization_id": authorization.id,
            "client_secret": remote.client_secret,
            "gateway_status": remote.status,
            "requires_strong_authentication": money.requires_strong_authentication(
                authorization.amount_cents, threshold, enabled
            ),
        }

    async def page_by_status(self, status: Optional[AuthorizationStatus] = None, page: int = 1,
                             size: int = 20) -> tuple[list[PaymentAuthorization], int]:
        async with self._uow_factory(readonly=True) as uow:
            items = await uow.authorizations.list_by_status(status, skip=(page - 1) * size, limit=size)
            total = await uow.authorizations.count(status)
        return items, total

    async def timeline(self, authorization_id: int) -> list:
        await self._load(authorization_id)
        async with self._uow_factory(readonly=True) as uow:
            return await uow.events.timeline(authorization_id)

    async def requiring_attention(self, limit: int = 50) -> list:
        """Newest event-log entries flagged for an operator"""
        async with self._uow_factory(readonly=True) as uow:
            return await uow.events.list_requiring_attention(limit)

    async def statistics(self) -> dict[str, Any]:
        async with self._uow_factory(readonly=True) as uow:
            by_status = await uow.authorizations.count_by_status()
            volume = await uow.authorizations.captured_volume_cents()
            to_confirm = await uow.authorizations.average_minutes_to_confirm()
            to_capture = await uow.authorizations.average_minutes_to_capture()
            attention = await uow.events.count_requiring_attention()
        total = sum(by_status.values())
        captured = by_status.get(AuthorizationStatus.CAPTURED.value, 0)
        return {
            "total": total,
            "by_status": by_status,
            "captured_volume_cents": volume,
            "capture_rate": round(captured / total, 4) if total else 0.0,
            "average_minutes_to_confirm": to_confirm,
            "average_minutes_to_capture": to_capture,
            "events_requiring_attention": attention,
        }

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _load(self, authorization_id: int) -> PaymentAuthorization:
        async with self._uow_factory(readonly=True) as uow:
            authorization = await uow.authorizations.get_by_id(authorization_id)
        if authorization is None:
            raise NotFoundException("payment_authorization", authorization_id)
        return authorization

    @staticmethod
    async def _reload_same_version(uow: AbstractUnitOfWork, read: PaymentAuthorization) -> PaymentAuthorization:
        current = await uow.authorizations.get_by_id(read.id)
        if current is None:
            raise NotFoundException("payment_authorization", read.id)
        if current.version != read.version:
            raise ConflictException(
                "authorization was modified concurrently",
                resource="payment_authorization",
                resource_id=read.id,
            )
        return current

    async def _authorize_at_gateway(self, *, booking_id: int, amount_cents: int, currency: str,
                                    destination: str, fee_cents: int, payer_id: int, generation: str) -> str:
        threshold = await self._config.get_int("large_amount_threshold_cents")
        strong = money.requires_strong_authentication(
            amount_cents, threshold, await self._config.get_bool("require_3ds_for_large_amounts")
        )
        request = GatewayAuthorizeRequest(
            amount_cents=amount_cents,
            currency=currency,
            destination_account=destination,
            application_fee_cents=fee_cents,
            manual_capture=True,
            request_strong_authentication=strong,
            idempotency_key=idempotency_key("authorize", booking_id, amount_cents, currency, destination,
                                            generation),
            metadata={"booking_id": str(booking_id), "payer_id": str(payer_id)},
        )
        result = await self._gateway.authorize(request)
        logger.info("gateway_authorization_created", booking_id=booking_id, handle=result.handle,
                    status=result.status)
        return result.handle

    async def _best_effort_gateway_cancel(self, handle: str, *, booking_id: int, key: Optional[str] = None) -> bool:
        try:
            await self._gateway.cancel(handle, idempotency_key=key)
            return True
        except (GatewayRejectedException, GatewayUnavailableException) as exc:
            logger.warning("gateway_cancel_failed", handle=handle, booking_id=booking_id,
                           error_type=exc.error_type, error=exc.message)
            return False

    async def _schedule_confirmation_jobs(self, uow: AbstractUnitOfWork, authorization: PaymentAuthorization) -> None:
        await self._queue.schedule(uow, JobType.PAYMENT_EXPIRY, authorization, authorization.confirmation_deadline,
                                   payload={"expiry_type": "confirmation"})
        if authorization.status == AuthorizationStatus.PENDING and await self._config.get_bool(
            "send_confirmation_reminders"
        ):
            hours = await self._config.get_int("reminder_hours_before_expiry")
            await self._queue.schedule(uow, JobType.CONFIRMATION_REMINDER, authorization,
                                       authorization.confirmation_deadline - timedelta(hours=hours))

    @staticmethod
    async def _set_authorization_transaction(uow: AbstractUnitOfWork, authorization: PaymentAuthorization,
                                             status: TransactionStatus, reference: Optional[str] = None) -> None:
        transaction = await uow.transactions.get_for_authorization(authorization.id, TransactionType.AUTHORIZATION)
        if transaction is None:
            return
        transaction.set_status(status, authorization.updated_at)
        if reference:
            transaction.gateway_reference = reference
        await uow.transactions.update(transaction)

    async def _settle_voided(self, uow: AbstractUnitOfWork, authorization: PaymentAuthorization,
                             now: datetime, *, notes: str) -> None:
        """Reservation released in full: nothing captured, everything back to the payer."""
        await self._set_authorization_transaction(uow, authorization, TransactionStatus.CANCELLED)
        escrow = await uow.escrows.get_for_authorization(authorization.id)
        if escrow is not None:
            escrow.settle_cancellation(escrow.remaining_cents, 0, notes=notes, now=now)
            await uow.escrows.update(escrow)

    async def _current_departure(self, authorization: PaymentAuthorization) -> Optional[datetime]:
        try:
            snapshot = await self._booking.get_booking(authorization.booking_id)
        except CollaboratorError as exc:
            logger.warning("booking_lookup_failed", booking_id=authorization.booking_id, error=str(exc))
            return authorization.trip_departure_at
        return snapshot.trip_departure_at or authorization.trip_departure_at

    async def _callback(self, method: str, booking_id: int, authorization_id: int) -> None:
        try:
            await getattr(self._booking, method)(booking_id, authorization_id)
        except CollaboratorError as exc:
            logger.warning("booking_callback_failed", callback=method, booking_id=booking_id,
                           authorization_id=authorization_id, error=str(exc))
