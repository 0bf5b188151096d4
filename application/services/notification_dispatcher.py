"""
Outbox drain: hands queued payment notifications to the notification sink.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from application.ports.collaborators import CollaboratorError, NotificationSink
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.notification import MAX_DELIVERY_ATTEMPTS, OutboxStatus
from shared.clock import utcnow

logger = get_logger(__name__)


@dataclass
class DispatchSummary:
    sent: int = 0
    retried: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {"sent": self.sent, "retried": self.retried, "failed": self.failed}


class NotificationDispatcher:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        sink: NotificationSink,
        *,
        max_attempts: int = MAX_DELIVERY_ATTEMPTS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._sink = sink
        self._max_attempts = max_attempts
        self._clock = clock

    async def dispatch_pending(self, limit: int = 100) -> DispatchSummary:
        async with self._uow_factory(readonly=True) as uow:
            messages = await uow.outbox.list_pending(limit=limit)

        summary = DispatchSummary()
        for message in messages:
            try:
                await self._sink.publish(message.to_event())
            except CollaboratorError as exc:
                message.mark_attempt_failed(str(exc), max_attempts=self._max_attempts)
                if message.status == OutboxStatus.FAILED:
                    summary.failed += 1
                    logger.error("notification_delivery_abandoned", outbox_id=message.id,
                                 event_type=message.event_type, attempts=message.attempts, error=str(exc))
                else:
                    summary.retried += 1
                    logger.warning("notification_delivery_failed", outbox_id=message.id,
                                   event_type=message.event_type, attempts=message.attempts, error=str(exc))
            else:
                message.mark_sent(self._clock())
                summary.sent += 1

            async with self._uow_factory() as uow:
                await uow.outbox.save(message)

        if messages:
            logger.info("notifications_dispatched", **summary.to_dict())
        return summary

    async def pending_count(self) -> int:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.outbox.count_pending()
