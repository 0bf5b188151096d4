"""
Reconciliation pass: converge local authorization state with the gateway.

Covers the crash window between a gateway call and the local commit. Rows
are only touched once they have been quiet for ``min_age_minutes`` so an
in-flight request is never second-guessed.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from application.dtos.payments import GatewayAuthorization
from application.ports.payment_gateway import PaymentGateway
from application.services.authorization_service import AuthorizationService, idempotency_key
from application.services.cancellation_service import CancellationService
from application.services.event_recorder import record_event
from core.logging_config import get_logger
from domain.audit import EventType
from domain.authorization.entity import AuthorizationStatus, CaptureReason, PaymentAuthorization
from domain.common.exceptions import (
    ConflictException,
    GatewayRejectedException,
    GatewayUnavailableException,
    InvalidStateException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from shared.clock import utcnow

logger = get_logger(__name__)

OPEN_STATUSES = (AuthorizationStatus.PENDING, AuthorizationStatus.CONFIRMED, AuthorizationStatus.FAILED)
CLOSED_STATUSES = (AuthorizationStatus.CANCELLED, AuthorizationStatus.EXPIRED)


@dataclass
class ReconciliationSummary:
    checked: int = 0
    captured: int = 0
    closed: int = 0
    recancelled: int = 0
    settled: int = 0
    abandoned: int = 0
    unchanged: int = 0
    skipped: int = 0
    adjustments: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "captured": self.captured,
            "closed": self.closed,
            "recancelled": self.recancelled,
            "settled": self.settled,
            "abandoned": self.abandoned,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "adjustments": list(self.adjustments),
        }


class ReconciliationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        authorizations: AuthorizationService,
        cancellations: Optional[CancellationService] = None,
        *,
        min_age_minutes: int = 10,
        lookback_hours: int = 48,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._authorizations = authorizations
        self._cancellations = cancellations
        self._min_age = timedelta(minutes=min_age_minutes)
        self._lookback = timedelta(hours=lookback_hours)
        self._clock = clock

    async def reconcile(self, limit: int = 100) -> ReconciliationSummary:
        now = self._clock()
        quiet_since = now - self._min_age
        async with self._uow_factory(readonly=True) as uow:
            candidates = await uow.authorizations.list_for_reconciliation(OPEN_STATUSES, quiet_since, limit=limit)
            candidates += await uow.authorizations.list_for_reconciliation(
                CLOSED_STATUSES, quiet_since, updated_after=now - self._lookback, limit=limit
            )

        summary = ReconciliationSummary()
        for authorization in candidates:
            summary.checked += 1
            try:
                await self._reconcile_one(authorization, summary)
            except GatewayUnavailableException as exc:
                summary.skipped += 1
                logger.warning("reconciliation_gateway_unavailable", authorization_id=authorization.id,
                               error=exc.message)
            except (ConflictException, InvalidStateException, GatewayRejectedException) as exc:
                # Someone else moved the row, or the gateway refused: next pass looks again
                summary.skipped += 1
                logger.warning("reconciliation_row_skipped", authorization_id=authorization.id,
                               error_type=exc.error_type, error=exc.message)

        logger.info("reconciliation_finished", **{k: v for k, v in summary.to_dict().items() if k != "adjustments"})
        return summary

    async def _reconcile_one(self, authorization: PaymentAuthorization, summary: ReconciliationSummary) -> None:
        remote = await self._gateway.retrieve(authorization.gateway_handle)
        status = authorization.status

        started_at = await self._settlement_started_at(authorization) if status in OPEN_STATUSES else None
        if started_at is not None:
            if started_at > self._clock() - self._min_age:
                # Cancellation still in flight
                summary.skipped += 1
                return
            await self._finish_settlement(authorization, remote, summary)
            return

        if remote.is_captured and status in OPEN_STATUSES:
            # Covers a capture that landed before the local confirm as well
            await self._authorizations.record_gateway_capture(
                authorization, CaptureReason.RECONCILIATION, self._clock(), None,
                reference=remote.handle, started=0.0, amount_cents=remote.amount_received_cents,
            )
            summary.captured += 1
            await self._note(summary, authorization, "captured", remote.status)
            return

        if remote.is_canceled and status in OPEN_STATUSES:
            now = self._clock()
            kind, deadline = authorization.active_deadline()
            if now >= deadline:
                await self._authorizations.expire(authorization.id, expiry_type=kind,
                                                  note="cancelled at gateway after deadline")
            else:
                await self._authorizations.cancel(authorization.id, None, "cancelled at gateway", system=True)
            summary.closed += 1
            await self._note(summary, authorization, "closed", remote.status)
            return

        if remote.is_capturable and status in CLOSED_STATUSES:
            await self._gateway.cancel(authorization.gateway_handle,
                                       idempotency_key=idempotency_key("recancel", authorization.id))
            summary.recancelled += 1
            await self._note(summary, authorization, "gateway_recancelled", remote.status)
            return

        summary.unchanged += 1

    async def _settlement_started_at(self, authorization: PaymentAuthorization) -> Optional[datetime]:
        if self._cancellations is None:
            return None
        return await self._cancellations.pending_settlement_started_at(authorization.id)

    async def _finish_settlement(self, authorization: PaymentAuthorization, remote: GatewayAuthorization,
                                 summary: ReconciliationSummary) -> None:
        """A cancellation recorded its decision but never wrote the outcome."""
        if remote.is_captured or remote.is_canceled:
            await self._cancellations.complete_settlement(authorization.id, remote.handle)
            summary.settled += 1
            await self._note(summary, authorization, "settlement_completed", remote.status)
        elif remote.is_capturable:
            await self._cancellations.abandon_settlement(authorization.id, "gateway still holds the funds")
            summary.abandoned += 1
            await self._note(summary, authorization, "settlement_abandoned", remote.status)
        else:
            summary.unchanged += 1

    async def _note(self, summary: ReconciliationSummary, authorization: PaymentAuthorization, action: str,
                    remote_status: str) -> None:
        adjustment = {
            "authorization_id": authorization.id,
            "local_status": authorization.status.value,
            "gateway_status": remote_status,
            "action": action,
        }
        summary.adjustments.append(adjustment)
        async with self._uow_factory() as uow:
            await record_event(uow, EventType.RECONCILIATION_ADJUSTED, authorization,
                               payload=adjustment, requires_attention=True)
        logger.warning("reconciliation_adjusted", **adjustment)
