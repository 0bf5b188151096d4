"""
Audit and outbox writes shared by the payment services.

Both rows are added to the caller's unit of work, so they commit or roll
back together with the state change they describe.
"""
from __future__ import annotations

from typing import Any, Optional

from core.logging_config import get_logger
from domain.audit import EventLogEntry, EventType
from domain.authorization.entity import PaymentAuthorization
from domain.authorization.events import AuthorizationEvent
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.notification import OutboxMessage

logger = get_logger(__name__)

# Notification events that have no dedicated audit type
_AUDIT_TYPE_OVERRIDES = {
    "confirmation_reminder": EventType.NOTIFICATION_SENT,
    "payment_reminder": EventType.NOTIFICATION_SENT,
    "refund_issued": EventType.REFUND_COMPLETED,
}


async def record_event(
    uow: AbstractUnitOfWork,
    event_type: EventType,
    authorization: Optional[PaymentAuthorization] = None,
    *,
    user_id: Optional[int] = None,
    success: bool = True,
    error: Optional[str] = None,
    requires_attention: bool = False,
    payload: Optional[dict[str, Any]] = None,
    processing_time_ms: Optional[int] = None,
    authorization_id: Optional[int] = None,
    booking_id: Optional[int] = None,
) -> EventLogEntry:
    entry = EventLogEntry(
        event_type=event_type,
        authorization_id=authorization.id if authorization else authorization_id,
        booking_id=authorization.booking_id if authorization else booking_id,
        user_id=user_id,
        success=success,
        error_message=error,
        requires_attention=requires_attention,
        payload=payload or {},
        processing_time_ms=processing_time_ms,
    )
    saved = await uow.events.append(entry)
    if requires_attention:
        logger.warning(
            "payment_event_requires_attention",
            event_type=event_type.value,
            authorization_id=entry.authorization_id,
            error=error,
        )
    return saved


async def emit(
    uow: AbstractUnitOfWork,
    event: AuthorizationEvent,
    *,
    success: bool = True,
    error: Optional[str] = None,
    requires_attention: bool = False,
    extra: Optional[dict[str, Any]] = None,
    processing_time_ms: Optional[int] = None,
) -> None:
    """Write the audit row and queue the notification for one transition."""
    payload = event.to_payload()
    if extra:
        payload.update(extra)
    audit_type = _AUDIT_TYPE_OVERRIDES.get(event.event_type) or EventType(event.event_type)
    await record_event(
        uow,
        audit_type,
        user_id=event.actor_id,
        success=success,
        error=error,
        requires_attention=requires_attention,
        payload=payload,
        processing_time_ms=processing_time_ms,
        authorization_id=event.authorization_id,
        booking_id=event.booking_id,
    )
    await uow.outbox.add(
        OutboxMessage(
            event_type=event.event_type,
            authorization_id=event.authorization_id,
            booking_id=event.booking_id,
            amount_cents=event.amount_cents,
            actor_id=event.actor_id,
            payload=payload,
        )
    )
